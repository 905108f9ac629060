"""Transport contract consumed by the prompt engine.

Concrete transports implement the five outgoing operations; incoming
events are fed to dispatch_message() / dispatch_reaction() by whatever
receive loop the transport runs, and prompts pick them up through
await_next_message() / await_next_reaction().
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..models import IncomingMessage, MessageRef, ReactionEvent
from .events import MESSAGE, REACTION, EventHub

UserPredicate = Callable[[str], bool]


class BaseTransport(ABC):
    """Abstract chat transport.

    Subclasses own the wire protocol. The EventHub-backed waiters are
    shared so every transport gets the same first-matching-event
    semantics.
    """

    def __init__(self):
        self.events = EventHub()

    @abstractmethod
    async def send(self, channel_id: str, content: str) -> MessageRef:
        """Send ``content`` to ``channel_id`` and return the new message."""
        ...

    @abstractmethod
    async def edit(self, ref: MessageRef, content: str) -> MessageRef:
        """Replace the content of a previously sent message."""
        ...

    @abstractmethod
    async def delete(self, ref: MessageRef) -> bool:
        """Delete a message. False if it is not deletable or already gone."""
        ...

    @abstractmethod
    async def add_reaction(self, ref: MessageRef, emoji: str) -> None:
        """React to ``ref`` with ``emoji``."""
        ...

    @abstractmethod
    async def remove_reaction(self, ref: MessageRef, emoji: str, user_id: str) -> bool:
        """Remove ``user_id``'s ``emoji`` reaction. False if not possible."""
        ...

    async def await_next_message(
        self,
        channel_id: str,
        predicate: UserPredicate,
        timeout: Optional[float],
    ) -> Optional[IncomingMessage]:
        """First message in ``channel_id`` whose author passes ``predicate``."""
        def check(msg: IncomingMessage) -> bool:
            return msg.channel_id == channel_id and predicate(msg.author)

        return await self.events.wait_for(MESSAGE, check, timeout)

    async def await_next_reaction(
        self,
        ref: MessageRef,
        predicate: UserPredicate,
        timeout: Optional[float],
    ) -> Optional[ReactionEvent]:
        """First reaction added to ``ref`` by a user passing ``predicate``."""
        def check(evt: ReactionEvent) -> bool:
            return evt.target == ref and not evt.removed and predicate(evt.user_id)

        return await self.events.wait_for(REACTION, check, timeout)

    def dispatch_message(self, msg: IncomingMessage) -> bool:
        """Offer an incoming message to waiting prompts. True if consumed."""
        return self.events.dispatch(MESSAGE, msg)

    def dispatch_reaction(self, evt: ReactionEvent) -> bool:
        """Offer an incoming reaction to waiting prompts. True if consumed."""
        return self.events.dispatch(REACTION, evt)
