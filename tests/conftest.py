"""Shared fixtures: an in-memory transport driving the real EventHub."""

import asyncio
import itertools

import pytest

from promptwire.exceptions import TransportError
from promptwire.models import Emoji, IncomingMessage, MessageRef, ReactionEvent
from promptwire.prompts import PromptRegistry, PromptSession
from promptwire.transport.base import BaseTransport
from promptwire.transport.events import MESSAGE, REACTION

BOT = "+15559990000"
USER = "+15550001111"


class FakeTransport(BaseTransport):
    """Records every outgoing call; incoming events are injected by tests."""

    def __init__(self, account: str = BOT):
        super().__init__()
        self.account = account
        self._clock = itertools.count(1_700_000_000_000)
        self.sent = []  # (channel_id, content)
        self.sent_refs = []
        self.edits = []  # (ref, content)
        self.deleted = []
        self.reactions = []  # (ref, emoji)
        self.removed_reactions = []  # (ref, emoji, user_id)
        self.fail_edits = False
        self.fail_deletes = False

    async def send(self, channel_id, content):
        self.sent.append((channel_id, content))
        ref = MessageRef(channel_id=channel_id, timestamp=next(self._clock), author=self.account)
        self.sent_refs.append(ref)
        return ref

    async def edit(self, ref, content):
        if self.fail_edits:
            raise TransportError("edit failed", status=500)
        self.edits.append((ref, content))
        return ref

    async def delete(self, ref):
        if self.fail_deletes:
            raise TransportError("delete failed", status=500)
        self.deleted.append(ref)
        return True

    async def add_reaction(self, ref, emoji):
        self.reactions.append((ref, emoji))

    async def remove_reaction(self, ref, emoji, user_id):
        self.removed_reactions.append((ref, emoji, user_id))
        return True

    # --- Test helpers ---

    def incoming(self, text, author=USER, channel_id=None):
        ref = MessageRef(
            channel_id=channel_id or author,
            timestamp=next(self._clock),
            author=author,
        )
        return IncomingMessage(ref=ref, text=text)

    async def wait_for_waiters(self, kind, count=1):
        """Yield to the loop until ``count`` waiters of ``kind`` are pending."""
        for _ in range(500):
            if self.events.waiting(kind) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} pending {kind} waiter(s)")

    async def user_says(self, text, author=USER, channel_id=None):
        await self.wait_for_waiters(MESSAGE)
        return self.dispatch_message(self.incoming(text, author, channel_id))

    async def user_reacts(self, target, emoji, author=USER, waiters=1, removed=False):
        await self.wait_for_waiters(REACTION, waiters)
        return self.dispatch_reaction(
            ReactionEvent(emoji=Emoji(name=emoji), user_id=author, target=target, removed=removed)
        )


async def finish(task, timeout=2):
    """Await a prompt task without letting a broken test hang."""
    return await asyncio.wait_for(task, timeout)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def registry():
    return PromptRegistry()


@pytest.fixture
def make_session(transport, registry):
    """Factory for sessions triggered by USER in a direct chat."""
    def _make(trigger=None, **kwargs):
        kwargs.setdefault("timeout_minutes", 1)
        kwargs.setdefault("max_retries", 0)
        kwargs.setdefault("scrub_reactions", False)
        if trigger is None:
            trigger = transport.incoming("/report")
        return PromptSession(transport, trigger, registry=registry, **kwargs)
    return _make


@pytest.fixture
def finish_task():
    return finish
