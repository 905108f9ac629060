"""Input channels a prompt can wait on.

Each channel yields the first qualifying event from the prompted user
within a deadline, or None. Filtering by user identity happens here,
so the session only ever sees events from the user it is asking.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

import structlog

from ..exceptions import TransportError
from ..models import IncomingMessage, MessageRef, ReactionEvent
from ..security import mask
from ..transport.base import BaseTransport
from .validation import Candidate

logger = structlog.get_logger("promptwire.prompts")


class InputKind(str, Enum):
    """Closed set of input channel kinds."""
    MESSAGE = "message"
    REACTION = "reaction"


class InputChannel(ABC):
    """Source of answers for one prompt.

    Args:
        transport: Transport delivering the events.
        user_id: The only user whose events count.
    """

    kind: InputKind

    def __init__(self, transport: BaseTransport, user_id: str):
        self.transport = transport
        self.user_id = user_id

    def is_target(self, user_id: str) -> bool:
        return user_id == self.user_id

    @abstractmethod
    async def next(self, timeout: Optional[float]) -> Optional[Any]:
        """Wait up to ``timeout`` seconds for the next qualifying event."""
        ...

    @abstractmethod
    def candidate(self, event: Any) -> Candidate:
        """The value validated for ``event``."""
        ...

    def result(self, event: Any) -> Any:
        """The value a successful prompt returns for ``event``."""
        return self.candidate(event)


class MessageInput(InputChannel):
    """Text messages from the user in one conversation."""

    kind = InputKind.MESSAGE

    def __init__(self, transport: BaseTransport, channel_id: str, user_id: str):
        super().__init__(transport, user_id)
        self.channel_id = channel_id

    async def next(self, timeout: Optional[float]) -> Optional[IncomingMessage]:
        return await self.transport.await_next_message(self.channel_id, self.is_target, timeout)

    def candidate(self, event: IncomingMessage) -> str:
        return event.text


class ReactionInput(InputChannel):
    """Reactions from the user on the prompt message."""

    kind = InputKind.REACTION

    def __init__(self, transport: BaseTransport, message_ref: MessageRef, user_id: str):
        super().__init__(transport, user_id)
        self.message_ref = message_ref

    async def next(self, timeout: Optional[float]) -> Optional[ReactionEvent]:
        return await self.transport.await_next_reaction(self.message_ref, self.is_target, timeout)

    def candidate(self, event: ReactionEvent):
        return event.emoji


class ReactionScrubber(InputChannel):
    """ReactionInput decorator that removes other users' reactions.

    While the wrapped channel waits, reactions that anyone but the
    prompted user adds to the prompt message are removed again. Removal
    is best effort: failures and transports that cannot remove foreign
    reactions leave the reaction in place.
    """

    kind = InputKind.REACTION

    def __init__(self, inner: ReactionInput):
        super().__init__(inner.transport, inner.user_id)
        self.inner = inner
        self.removed = 0

    async def next(self, timeout: Optional[float]) -> Optional[ReactionEvent]:
        scrub = asyncio.create_task(self._scrub())
        try:
            return await self.inner.next(timeout)
        finally:
            scrub.cancel()

    def candidate(self, event: ReactionEvent):
        return self.inner.candidate(event)

    def result(self, event: ReactionEvent):
        return self.inner.result(event)

    async def _scrub(self) -> None:
        def is_other(user_id: str) -> bool:
            return not self.inner.is_target(user_id)

        while True:
            evt = await self.transport.await_next_reaction(self.inner.message_ref, is_other, None)
            if evt is not None:
                await self.remove(evt)

    async def remove(self, evt: ReactionEvent) -> bool:
        """Remove one foreign reaction. Returns whether it was removed."""
        try:
            removed = await self.transport.remove_reaction(evt.target, evt.emoji.name, evt.user_id)
        except TransportError as e:
            logger.debug("reaction_scrub_failed", user=mask(evt.user_id), error=str(e))
            return False
        if removed:
            self.removed += 1
        return removed
