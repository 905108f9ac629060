"""Tests for typed-answer prompts."""

import asyncio
import re

import pytest

from promptwire.models import PromptState
from promptwire.transport.events import MESSAGE

USER = "+15550001111"
OTHER = "+15550002222"
GROUP = "group.c29tZWdyb3Vw"


class TestResolve:

    @pytest.mark.asyncio
    async def test_valid_answer_resolves(self, transport, registry, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(session.message("Pick a or b", ["a", "b"]))

        assert await transport.user_says("a") is True
        assert await finish_task(task) == "a"

        assert transport.sent == [(USER, "Pick a or b")]
        assert session.state is PromptState.RESOLVED
        assert session.retry_count == 0
        assert USER not in registry
        # Question stays for the caller; the typed answer is cleaned up
        assert session.ui_message is not None
        assert [ref.author for ref in transport.deleted] == [USER]

    @pytest.mark.asyncio
    async def test_registry_holds_session_while_waiting(self, transport, registry, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(session.message("Anything?", []))
        await transport.wait_for_waiters(MESSAGE)

        assert registry.get(USER) is session
        assert session.active is True

        await transport.user_says("whatever")
        assert await finish_task(task) == "whatever"
        assert session.active is False

    @pytest.mark.asyncio
    async def test_pattern_accepts_matching_text(self, transport, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(session.message("Version?", re.compile(r"^\d+\.\d+$")))
        await transport.user_says("2.7")
        assert await finish_task(task) == "2.7"

    @pytest.mark.asyncio
    async def test_other_users_are_ignored(self, transport, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(session.message("Pick", ["a"]))

        assert await transport.user_says("a", author=OTHER, channel_id=USER) is False
        assert not task.done()
        assert await transport.user_says("a") is True
        assert await finish_task(task) == "a"

    @pytest.mark.asyncio
    async def test_other_channels_are_ignored(self, transport, make_session, finish_task):
        trigger = transport.incoming("/report", channel_id=GROUP)
        session = make_session(trigger)
        task = asyncio.create_task(session.message("Pick", ["a"]))

        assert await transport.user_says("a") is False  # direct chat, not the group
        assert await transport.user_says("a", channel_id=GROUP) is True
        assert await finish_task(task) == "a"
        assert transport.sent[0] == (GROUP, "Pick")


class TestRetry:

    @pytest.mark.asyncio
    async def test_invalid_answer_edits_same_message(self, transport, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(session.message("Pick a or b", ["a", "b"]))

        await transport.user_says("c")
        await transport.user_says("b")
        assert await finish_task(task) == "b"

        assert len(transport.sent) == 1
        assert len(transport.edits) == 1
        ref, content = transport.edits[0]
        assert ref == session.ui_message
        assert content == "`c` is not a valid choice! Please try again.\n\nPick a or b"
        assert session.retry_count == 1

    @pytest.mark.asyncio
    async def test_custom_error_replaces_value(self, transport, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(
            session.message("Number?", r"^\d+$", "Sorry, {VALUE} is not a number")
        )
        await transport.user_says("ten")
        await transport.user_says("10")
        assert await finish_task(task) == "10"
        assert transport.edits[0][1] == "Sorry, ten is not a number\n\nNumber?"

    @pytest.mark.asyncio
    async def test_edit_failure_keeps_prompt_running(self, transport, make_session, finish_task):
        transport.fail_edits = True
        session = make_session()
        task = asyncio.create_task(session.message("Pick", ["a"]))
        await transport.user_says("x")
        await transport.user_says("a")
        assert await finish_task(task) == "a"

    @pytest.mark.asyncio
    async def test_input_cleanup_failure_is_ignored(self, transport, make_session, finish_task):
        transport.fail_deletes = True
        session = make_session()
        task = asyncio.create_task(session.message("Pick", ["a"]))
        await transport.user_says("a")
        assert await finish_task(task) == "a"

    @pytest.mark.asyncio
    async def test_max_retries_cancels(self, transport, registry, make_session, finish_task):
        session = make_session(max_retries=2)
        task = asyncio.create_task(session.message("Pick", ["a"]))
        for answer in ("x", "y", "z"):
            await transport.user_says(answer)

        assert await finish_task(task) is None
        assert session.state is PromptState.CANCELLED
        assert transport.sent[-1] == (USER, "Too many invalid answers, the prompt was cancelled!")
        assert USER not in registry


class TestCancel:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("keyword", ["q", "Qu", "QUIT"])
    async def test_cancel_keyword(self, transport, registry, make_session, finish_task, keyword):
        session = make_session()
        task = asyncio.create_task(session.message("Pick", ["a"]))
        await transport.wait_for_waiters(MESSAGE)
        ui = session.ui_message

        await transport.user_says(keyword)
        assert await finish_task(task) is None

        assert session.state is PromptState.CANCELLED
        assert transport.sent[-1] == (USER, "Successfully cancelled the prompt!")
        assert ui in transport.deleted
        assert session.ui_message is None
        assert USER not in registry

    @pytest.mark.asyncio
    async def test_cancel_keyword_wins_over_valid_choice(self, transport, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(session.message("Pick", ["q", "r"]))
        await transport.user_says("q")
        assert await finish_task(task) is None

    @pytest.mark.asyncio
    async def test_close_stops_waiting_prompt(self, transport, registry, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(session.message("Pick", ["a"]))
        await transport.wait_for_waiters(MESSAGE)

        assert session.close() is True
        assert await finish_task(task) is None
        assert session.state is PromptState.CANCELLED
        assert transport.sent[-1] == (USER, "Successfully cancelled the prompt!")
        await asyncio.sleep(0.01)
        assert transport.events.waiting(MESSAGE) == 0
        assert USER not in registry

    @pytest.mark.asyncio
    async def test_task_cancellation_deletes_ui_without_notice(self, transport, registry, make_session):
        session = make_session()
        task = asyncio.create_task(session.message("Pick", ["a"]))
        await transport.wait_for_waiters(MESSAGE)
        ui = session.ui_message

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert ui in transport.deleted
        assert session.ui_message is None
        assert session.state is PromptState.CANCELLED
        assert transport.sent == [(USER, "Pick")]
        assert USER not in registry

    def test_close_without_prompt_returns_false(self, make_session):
        assert make_session().close() is False


class TestTimeout:

    @pytest.mark.asyncio
    async def test_timeout_ends_prompt(self, transport, registry, make_session, finish_task):
        session = make_session(timeout_minutes=0.0005)
        result = await finish_task(session.message("Pick", ["a"]))

        assert result is None
        assert session.state is PromptState.TIMED_OUT
        assert transport.sent == [(USER, "Pick"), (USER, "The prompt timed out!")]
        assert len(transport.deleted) == 1
        assert USER not in registry

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_default(self, transport, make_session, finish_task):
        session = make_session(timeout_minutes=10)
        assert await finish_task(session.message("Pick", ["a"], timeout=0.0005)) is None
        assert session.state is PromptState.TIMED_OUT


class TestOnePromptPerUser:

    @pytest.mark.asyncio
    async def test_second_prompt_is_refused(self, transport, registry, make_session, finish_task):
        first = make_session()
        task = asyncio.create_task(first.message("First?", []))
        await transport.wait_for_waiters(MESSAGE)

        second = make_session()
        assert await finish_task(second.message("Second?", [])) is None
        assert transport.sent[-1] == (USER, "You already have another prompt open!")
        assert second.ui_message is None
        assert registry.get(USER) is first

        await transport.user_says("done")
        assert await finish_task(task) == "done"
        assert USER not in registry

    @pytest.mark.asyncio
    async def test_different_users_prompt_concurrently(self, transport, registry, make_session, finish_task):
        mine = make_session()
        theirs = make_session(transport.incoming("/report", author=OTHER))
        t1 = asyncio.create_task(mine.message("Mine?", []))
        t2 = asyncio.create_task(theirs.message("Theirs?", []))
        await transport.wait_for_waiters(MESSAGE, 2)
        assert len(registry) == 2

        await transport.user_says("two", author=OTHER)
        await transport.user_says("one")
        assert await finish_task(t1) == "one"
        assert await finish_task(t2) == "two"


class TestChaining:

    @pytest.mark.asyncio
    async def test_second_prompt_edits_existing_message(self, transport, make_session, finish_task):
        session = make_session()
        t1 = asyncio.create_task(session.message("First?", []))
        await transport.user_says("1")
        await finish_task(t1)

        t2 = asyncio.create_task(session.message("Second?", []))
        await transport.user_says("2")
        assert await finish_task(t2) == "2"

        assert len(transport.sent) == 1
        assert transport.edits == [(session.ui_message, "Second?")]

    @pytest.mark.asyncio
    async def test_initial_false_skips_render(self, transport, make_session, finish_task):
        session = make_session()
        t1 = asyncio.create_task(session.message("Question?", []))
        await transport.user_says("1")
        await finish_task(t1)

        t2 = asyncio.create_task(session.message("Question?", [], initial=False))
        await transport.user_says("2")
        assert await finish_task(t2) == "2"
        assert transport.edits == []

    @pytest.mark.asyncio
    async def test_delete_removes_ui_message(self, transport, registry, make_session, finish_task):
        session = make_session()
        task = asyncio.create_task(session.message("Q?", []))
        await transport.user_says("ok")
        await finish_task(task)
        ui = session.ui_message

        await session.delete()
        await session.delete()
        assert transport.deleted.count(ui) == 1
        assert session.ui_message is None
        assert USER not in registry
