"""Tests for SignalBot event routing."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from promptwire.bot import SignalBot
from promptwire.exceptions import ConfigurationError, ErrorCategory, TransportError
from promptwire.prompts import PromptRegistry
from promptwire.security import _reset_rate_limits
from promptwire.transport.events import MESSAGE, REACTION
from promptwire.transport.signal import group_recipient

BOT = "+15559990000"
USER = "+15550001111"
OTHER = "+15550002222"
GROUP_ID = "promptwire-test-group"


def _config(account=BOT):
    config = MagicMock()
    config.command_prefix = "/"
    config.signal_api_url = "http://127.0.0.1:8080"
    config.signal_account = account
    config.signal_text_mode = "styled"
    config.signal_request_timeout = 15
    config.prompt_timeout_minutes = 1
    config.prompt_max_retries = 0
    config.prompt_scrub_reactions = False
    return config


def _envelope(text, timestamp=1000, source=USER):
    return {
        "envelope": {
            "sourceNumber": source,
            "timestamp": timestamp,
            "dataMessage": {"timestamp": timestamp, "message": text},
        },
        "account": BOT,
    }


def _reaction(emoji, target_ts, source=USER, group_id=None):
    data = {
        "reaction": {
            "emoji": emoji,
            "targetAuthorNumber": BOT,
            "targetSentTimestamp": target_ts,
            "isRemove": False,
        }
    }
    if group_id:
        data["groupInfo"] = {"groupId": group_id}
    return {"envelope": {"sourceNumber": source, "dataMessage": data}}


@pytest.fixture
def bot(transport):
    bot = SignalBot(_config())
    bot.account = BOT
    bot.transport = transport
    bot.prompt_registry = PromptRegistry()
    bot._bot_context.registry = bot.prompt_registry
    bot._bot_context._transport = transport
    _reset_rate_limits()
    with patch("promptwire.bot.is_authorized", return_value=True):
        yield bot
    _reset_rate_limits()


async def _drain(bot, sender=USER):
    tasks = bot.task_manager.active_tasks(sender)
    if tasks:
        await asyncio.wait_for(asyncio.gather(*tasks), 2)


@pytest.mark.asyncio
async def test_command_is_answered_in_same_chat(bot, transport):
    await bot._handle_signal_message(_envelope("/help"))
    await _drain(bot)
    channel, content = transport.sent[0]
    assert channel == USER
    assert "/report" in content


@pytest.mark.asyncio
async def test_unknown_command(bot, transport):
    await bot._handle_signal_message(_envelope("/nope"))
    await _drain(bot)
    assert transport.sent == [(USER, "Unknown command: /nope\nUse /help to see available commands.")]


@pytest.mark.asyncio
async def test_plain_text_is_ignored(bot, transport):
    await bot._handle_signal_message(_envelope("hello there"))
    await _drain(bot)
    assert transport.sent == []


@pytest.mark.asyncio
async def test_duplicate_delivery_is_skipped(bot, transport):
    await bot._handle_signal_message(_envelope("/prompts", timestamp=5))
    await bot._handle_signal_message(_envelope("/prompts", timestamp=5))
    await _drain(bot)
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_unauthorized_sender_is_dropped(bot, transport):
    with patch("promptwire.bot.is_authorized", return_value=False):
        await bot._handle_signal_message(_envelope("/help"))
    await _drain(bot)
    assert transport.sent == []


@pytest.mark.asyncio
async def test_rate_limited_sender_is_told(bot, transport):
    with patch("promptwire.bot.check_rate_limit", return_value=False):
        await bot._handle_signal_message(_envelope("/help"))
    assert transport.sent == [(USER, "Rate limited. Please wait before sending more messages.")]


@pytest.mark.asyncio
async def test_open_prompt_consumes_message(bot, transport, finish_task):
    session = bot._bot_context.new_session(transport.incoming("/report"))
    task = asyncio.create_task(session.message("Name?", []))
    await transport.wait_for_waiters(MESSAGE)

    # Looks like a command, but the open prompt gets it first
    await bot._handle_signal_message(_envelope("/help", timestamp=2000))
    assert await finish_task(task) == "/help"
    await _drain(bot)
    assert transport.sent == [(USER, "Name?")]


@pytest.mark.asyncio
async def test_reaction_reaches_prompt(bot, transport, finish_task):
    session = bot._bot_context.new_session(transport.incoming("/report"))
    task = asyncio.create_task(session.reaction("Ok?", ["👍"]))
    await transport.wait_for_waiters(REACTION)

    await bot._handle_signal_message(_reaction("👍", session.ui_message.timestamp))
    assert (await finish_task(task)).name == "👍"


@pytest.mark.asyncio
async def test_report_command_runs_in_background(bot, transport):
    await bot._handle_signal_message(_envelope("/report", timestamp=1))
    await transport.wait_for_waiters(MESSAGE)
    assert len(bot.task_manager.active_tasks(USER)) == 1

    await bot._handle_signal_message(_envelope("quit", timestamp=2))
    await _drain(bot)
    assert transport.sent[-1] == (USER, "Successfully cancelled the prompt!")
    assert bot.task_manager.active_tasks(USER) == []


@pytest.mark.asyncio
async def test_cancel_command_closes_reaction_prompt(bot, transport, finish_task):
    session = bot._bot_context.new_session(transport.incoming("/report"))
    task = asyncio.create_task(session.reaction("Ok?", ["👍"]))
    await transport.wait_for_waiters(REACTION)

    await bot._handle_signal_message(_envelope("/cancel", timestamp=3))
    assert await finish_task(task) is None
    await _drain(bot)
    assert transport.sent[-1] == (USER, "Successfully cancelled the prompt!")


@pytest.mark.asyncio
async def test_stop_closes_open_prompts(bot, transport, finish_task):
    bot.running = True
    bot.session = MagicMock()
    bot.session.close = AsyncMock()
    session = bot._bot_context.new_session(transport.incoming("/report"))
    task = asyncio.create_task(session.reaction("Ok?", []))
    await transport.wait_for_waiters(REACTION)

    await bot.stop()
    assert await finish_task(task) is None
    bot.session.close.assert_awaited_once()
    assert bot.running is False


@pytest.mark.asyncio
async def test_configured_account_skips_lookup():
    bot = SignalBot(_config(account="+15551112222"))
    bot.session = MagicMock()
    await bot._get_account()
    assert bot.account == "+15551112222"
    bot.session.get.assert_not_called()


@pytest.mark.asyncio
async def test_start_without_account_raises():
    bot = SignalBot(_config(account=None))
    resp = MagicMock()
    resp.status = 200
    resp.json = AsyncMock(return_value=[])
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=resp)
    ctx.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.get = MagicMock(return_value=ctx)
    session.close = AsyncMock()

    with patch("promptwire.bot.aiohttp.ClientSession", return_value=session):
        with pytest.raises(ConfigurationError):
            await bot.start()
    await bot.stop()
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_stop_lets_command_clean_up_its_prompt(bot, transport):
    bot.running = True
    bot.session = MagicMock()
    bot.session.close = AsyncMock()
    await bot._handle_signal_message(_envelope("/report", timestamp=11))
    await transport.wait_for_waiters(MESSAGE)
    ui = transport.sent_refs[0]

    await bot.stop()

    assert ui in transport.deleted
    assert transport.sent[-1] == (USER, "Successfully cancelled the prompt!")
    assert bot.task_manager.active_tasks() == []
    assert USER not in bot.prompt_registry
    bot.session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_stop_cancels_command_that_outlives_grace_period(bot, transport):
    bot.running = True
    bot.session = MagicMock()
    bot.session.close = AsyncMock()
    await bot._handle_signal_message(_envelope("/report", timestamp=12))
    await transport.wait_for_waiters(MESSAGE)
    ui = transport.sent_refs[0]

    with patch("promptwire.bot.SHUTDOWN_GRACE_SECONDS", 0):
        await bot.stop()

    assert ui in transport.deleted
    assert bot.task_manager.active_tasks() == []
    assert USER not in bot.prompt_registry


@pytest.mark.asyncio
async def test_foreign_reaction_reaches_scrubber_when_unauthorized(bot, transport, finish_task):
    bot.config.prompt_scrub_reactions = True
    channel = group_recipient(GROUP_ID)
    session = bot._bot_context.new_session(transport.incoming("/report", channel_id=channel))
    task = asyncio.create_task(session.reaction("Ok?", ["👍"]))
    # prompt waiter plus scrubber waiter
    await transport.wait_for_waiters(REACTION, 2)
    ts = session.ui_message.timestamp

    with patch("promptwire.bot.is_authorized", return_value=False):
        await bot._handle_signal_message(_reaction("👎", ts, source=OTHER, group_id=GROUP_ID))
    for _ in range(100):
        if transport.removed_reactions:
            break
        await asyncio.sleep(0)
    assert transport.removed_reactions == [(session.ui_message, "👎", OTHER)]

    await bot._handle_signal_message(_reaction("👍", ts, group_id=GROUP_ID))
    assert (await finish_task(task)).name == "👍"


class TestSendRetry:

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_once(self, bot, transport):
        transport.send = AsyncMock(side_effect=[TransportError("down", status=503), None])
        with patch("promptwire.bot.SEND_RETRY_DELAY", 0):
            await bot._send_message(USER, "hello")
        assert transport.send.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_second_failure(self, bot, transport):
        transport.send = AsyncMock(side_effect=TransportError("down", status=503))
        with patch("promptwire.bot.SEND_RETRY_DELAY", 0):
            await bot._send_message(USER, "hello")
        assert transport.send.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, bot, transport):
        transport.send = AsyncMock(
            side_effect=TransportError("bad", status=400, category=ErrorCategory.PERMANENT)
        )
        await bot._send_message(USER, "hello")
        assert transport.send.await_count == 1
