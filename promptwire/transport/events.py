"""First-matching-event waiters for incoming transport events.

The receive loop dispatches every message and reaction here before any
command routing. A waiter registered with wait_for() gets the first
event of its kind that passes its check; each event is consumed by at
most one waiter, oldest waiter first.
"""

import asyncio
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

logger = structlog.get_logger("promptwire.transport")

MESSAGE = "message"
REACTION = "reaction"

_Waiter = Tuple[Callable[[Any], bool], asyncio.Future]


class EventHub:
    """Routes events to coroutines waiting for them."""

    def __init__(self):
        self._waiters: Dict[str, List[_Waiter]] = defaultdict(list)

    async def wait_for(
        self,
        kind: str,
        check: Callable[[Any], bool],
        timeout: Optional[float] = None,
    ) -> Optional[Any]:
        """Wait for the next ``kind`` event passing ``check``.

        Args:
            kind: Event kind (``MESSAGE`` or ``REACTION``).
            check: Predicate applied to each dispatched event.
            timeout: Seconds to wait; None waits forever.

        Returns:
            The event, or None if the deadline passed first.
        """
        future = asyncio.get_running_loop().create_future()
        waiter = (check, future)
        self._waiters[kind].append(waiter)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self._discard(kind, waiter)

    def dispatch(self, kind: str, event: Any) -> bool:
        """Hand ``event`` to the oldest matching waiter.

        Returns:
            True if a waiter consumed the event.
        """
        for waiter in list(self._waiters.get(kind, ())):
            check, future = waiter
            if future.done():
                continue
            try:
                matched = check(event)
            except Exception as e:
                logger.warning("event_check_error", kind=kind, error=str(e))
                continue
            if matched:
                future.set_result(event)
                self._discard(kind, waiter)
                return True
        return False

    def waiting(self, kind: str) -> int:
        """Number of pending waiters for ``kind``."""
        return sum(1 for _, future in self._waiters.get(kind, ()) if not future.done())

    def _discard(self, kind: str, waiter: _Waiter) -> None:
        waiters = self._waiters.get(kind)
        if waiters and waiter in waiters:
            waiters.remove(waiter)
