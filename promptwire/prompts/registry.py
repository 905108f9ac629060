"""Process-wide record of users with an open prompt.

At most one prompt may be open per user. The registry is an explicit
object so the bot (and tests) can inject their own; get_prompt_registry()
returns the shared default.
"""

import threading
from typing import TYPE_CHECKING, Dict, List, Optional

import structlog

from ..security import mask

if TYPE_CHECKING:
    from .session import PromptSession

logger = structlog.get_logger("promptwire.prompts")


class PromptRegistry:
    """Maps user identity to the session currently prompting them."""

    def __init__(self):
        self._open: Dict[str, Optional["PromptSession"]] = {}
        # Uncontended under the event loop; guards multi-threaded hosts.
        self._lock = threading.Lock()

    def try_acquire(self, user_id: str, session: Optional["PromptSession"] = None) -> bool:
        """Mark ``user_id`` as prompted. False if a prompt is already open."""
        with self._lock:
            if user_id in self._open:
                return False
            self._open[user_id] = session
        logger.debug("prompt_registry_acquired", user=mask(user_id))
        return True

    def release(self, user_id: str, owner: Optional["PromptSession"] = None) -> None:
        """Drop the entry for ``user_id``. Safe to call when none exists.

        With ``owner`` given, an entry registered by a different session
        is left alone.
        """
        with self._lock:
            existed = user_id in self._open
            if existed and owner is not None and self._open[user_id] not in (None, owner):
                return
            self._open.pop(user_id, None)
        if existed:
            logger.debug("prompt_registry_released", user=mask(user_id))

    def get(self, user_id: str) -> Optional["PromptSession"]:
        """The session prompting ``user_id``, if one was registered with it."""
        return self._open.get(user_id)

    def open_users(self) -> List[str]:
        with self._lock:
            return list(self._open)

    def close_all(self) -> int:
        """Ask every registered session to close. Returns how many were asked."""
        with self._lock:
            sessions = [s for s in self._open.values() if s is not None]
        for session in sessions:
            session.close()
        return len(sessions)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._open

    def __len__(self) -> int:
        return len(self._open)


_registry: Optional[PromptRegistry] = None


def get_prompt_registry() -> PromptRegistry:
    """Get or create the global PromptRegistry instance."""
    global _registry
    if _registry is None:
        _registry = PromptRegistry()
    return _registry
