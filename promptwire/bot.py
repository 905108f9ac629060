"""Signal bot implementation for promptwire.

Connects to the Signal CLI REST API via WebSocket and feeds every
incoming event to the transport first, so open prompts see their
answers before anything else does. Messages no prompt consumed are
routed as /commands through the handler registry.

Key classes:
    SignalBot: Main bot class -- owns the HTTP session, transport,
        prompt registry and the message processing pipeline.
"""

import asyncio
import hashlib
import json
import time as _time
from collections import OrderedDict
from typing import Optional
from urllib.parse import urlparse

import aiohttp
import structlog

from .commands.base import BotContext, HandlerRegistry
from .commands.core import CoreCommandHandler
from .config import get_config
from .exceptions import ConfigurationError, TransportError
from .models import IncomingMessage, ReactionEvent
from .prompts import get_prompt_registry
from .security import check_rate_limit, is_authorized, mask, sanitize_input
from .task_manager import TaskManager
from .transport import SignalTransport, parse_envelope

logger = structlog.get_logger("promptwire.bot")

DEDUP_WINDOW_SECONDS = 60
SHUTDOWN_GRACE_SECONDS = 5
SEND_RETRY_DELAY = 1


class SignalBot:
    """Signal bot with command handler registry.

    Owns the full message lifecycle: WebSocket connection, event
    deduplication, authorization, prompt dispatch, rate limiting,
    command routing (via HandlerRegistry) and response delivery.

    The transport needs the resolved account, so it is created in
    start() and handed to the BotContext there.
    """

    def __init__(self, config=None):
        self.config = config or get_config()
        self.session: Optional[aiohttp.ClientSession] = None
        self.transport: Optional[SignalTransport] = None
        self.running = False
        self.account: Optional[str] = None
        self._processed_events = OrderedDict()  # Dedup: event_hash -> timestamp

        self.prompt_registry = get_prompt_registry()
        self.task_manager = TaskManager()

        self._bot_context = BotContext(
            config=self.config,
            registry=self.prompt_registry,
            task_manager=self.task_manager,
        )

        self._registry = HandlerRegistry()
        self._core_handler = CoreCommandHandler(self._bot_context)
        self._registry.register(self._core_handler)

    async def start(self):
        """Open the HTTP session, resolve the account, build the transport."""
        self.session = aiohttp.ClientSession()
        self.running = True

        # Warn if non-localhost Signal API is not using HTTPS
        parsed = urlparse(self.config.signal_api_url)
        if (
            parsed.hostname not in ("127.0.0.1", "localhost", "::1")
            and parsed.scheme != "https"
        ):
            logger.warning(
                "insecure_signal_api_url", url=self.config.signal_api_url,
                msg="Non-localhost Signal API should use HTTPS",
            )

        await self._get_account()
        if not self.account:
            raise ConfigurationError(
                "No Signal account registered with the REST API",
                setting_name="signal.account",
            )

        self.transport = SignalTransport(
            self.session,
            self.config.signal_api_url,
            self.account,
            text_mode=self.config.signal_text_mode,
            request_timeout=self.config.signal_request_timeout,
        )
        self._bot_context._transport = self.transport

        logger.info("bot_started", account=mask(self.account))

    async def stop(self):
        """Close open prompts, let their handlers clean up, then cancel what is left.

        Closed prompts delete their UI message and notify the user from
        inside the command task, so the tasks get a grace period before
        being cancelled. The HTTP session stays open until they are done.
        """
        if not self.running:
            return
        self.running = False
        closed = self.prompt_registry.close_all()
        if closed:
            logger.info("prompts_closed_on_shutdown", count=closed)
            pending = await self.task_manager.drain(SHUTDOWN_GRACE_SECONDS)
            if pending:
                logger.warning("command_tasks_still_running", count=pending)
        await self.task_manager.cancel_all()
        if self.session:
            await self.session.close()
        logger.info("bot_stopped")

    async def _get_account(self):
        """Resolve the Signal account: configured value, else ask the API with retry."""
        if self.config.signal_account:
            self.account = self.config.signal_account
            return

        max_attempts = 12
        base_delay = 5
        max_delay = 15

        for attempt in range(1, max_attempts + 1):
            try:
                url = f"{self.config.signal_api_url}/v1/accounts"
                async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                    if resp.status == 200:
                        accounts = await resp.json()
                        if accounts:
                            acct = accounts[0]
                            self.account = acct if isinstance(acct, str) else acct.get("number")
                            logger.info("account_found", account=mask(self.account))
                            return
                        else:
                            logger.warning("no_accounts_registered")
                            return
                    else:
                        logger.warning("account_request_failed", status=resp.status)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                delay = min(base_delay * attempt, max_delay)
                logger.warning(
                    "account_request_error", error=str(e),
                    attempt=attempt, retry_delay=delay,
                )
                if attempt < max_attempts:
                    await asyncio.sleep(delay)

        logger.error("account_request_failed_all_attempts", attempts=max_attempts)

    async def _send_message(self, channel_id: str, message: str):
        """Send a reply, logging (not raising) delivery failures.

        Transient failures (network errors, 5xx) are retried once.
        """
        for attempt in (1, 2):
            try:
                await self.transport.send(channel_id, message)
                return
            except TransportError as e:
                if attempt == 1 and e.is_retryable:
                    logger.warning("send_retry", recipient=mask(channel_id), error=str(e))
                    await asyncio.sleep(SEND_RETRY_DELAY)
                    continue
                logger.error("send_error", recipient=mask(channel_id), error=str(e))
                return

    async def _handle_command(
        self, command: str, args: str, message: IncomingMessage
    ) -> Optional[str]:
        """Route a /command to the handler registry.

        Args:
            command: Command name (without the prefix).
            args: Everything after the command name.
            message: The message carrying the command.

        Returns:
            Response string, or None if the handler replied itself.
        """
        command = command.lower()
        logger.debug("command_routing", command=command, has_args=bool(args))

        handler = self._registry.get(command)
        if handler:
            return await handler(message, args)

        prefix = self.config.command_prefix
        return f"Unknown command: {prefix}{command}\nUse {prefix}help to see available commands."

    async def _run_command(self, command: str, args: str, message: IncomingMessage):
        response = await self._handle_command(command, args, message)
        if response is not None:
            await self._send_message(message.channel_id, response)

    async def _process_message(self, message: IncomingMessage):
        """Route a message that no open prompt consumed.

        Only /commands get a response; any other text is ignored.
        Each command runs as a background task so a handler waiting on
        a prompt never blocks delivery of the answer.
        """
        prefix = self.config.command_prefix
        text = message.text.strip()
        if not text.startswith(prefix):
            logger.debug("message_routing", is_command=False, routing_path="ignored")
            return

        sender = message.author
        if not check_rate_limit(sender):
            logger.warning("rate_limited", sender=mask(sender))
            await self._send_message(
                message.channel_id, "Rate limited. Please wait before sending more messages."
            )
            return

        parts = text[len(prefix):].split(maxsplit=1)
        if not parts:
            return
        command = parts[0]
        args = parts[1] if len(parts) > 1 else ""

        logger.debug("message_routing", is_command=True, routing_path="command")
        self.task_manager.start(
            sender,
            self._run_command(command, args, message),
            description=f"{prefix}{command.lower()}",
        )

    def _is_duplicate(self, key: str) -> bool:
        event_hash = hashlib.sha256(key.encode()).hexdigest()
        if event_hash in self._processed_events:
            return True
        now = _time.time()
        self._processed_events[event_hash] = now

        cutoff = now - DEDUP_WINDOW_SECONDS
        while self._processed_events:
            oldest_key, oldest_time = next(iter(self._processed_events.items()))
            if oldest_time < cutoff:
                self._processed_events.pop(oldest_key)
            else:
                break
        return False

    async def poll_messages(self):
        """Connect via WebSocket to receive messages (json-rpc mode)."""
        if not self.account:
            logger.error("no_account_for_polling")
            return

        ws_base = self.config.signal_api_url.replace(
            "http://", "ws://"
        ).replace("https://", "wss://")
        ws_url = f"{ws_base}/v1/receive/{self.account}"

        reconnect_delay = 5
        MAX_RECONNECT_DELAY = 300

        while self.running:
            try:
                logger.info("websocket_connecting", url=ws_url)
                async with self.session.ws_connect(ws_url, heartbeat=30) as ws:
                    logger.info("websocket_connected")
                    reconnect_delay = 5
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            try:
                                data = json.loads(msg.data)
                                await self._handle_signal_message(data)
                            except json.JSONDecodeError:
                                logger.warning("invalid_json", data=msg.data[:100])
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            logger.error("websocket_error", error=str(ws.exception()))
                            break
                        elif msg.type == aiohttp.WSMsgType.CLOSED:
                            logger.info("websocket_closed")
                            break

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("websocket_exception", error=str(e))
                await asyncio.sleep(reconnect_delay)
                reconnect_delay = min(reconnect_delay * 2, MAX_RECONNECT_DELAY)

    async def _handle_signal_message(self, msg: dict):
        """Handle one payload from the Signal receive WebSocket."""
        try:
            event = parse_envelope(msg, self.account)
            if event is None:
                return

            if isinstance(event, ReactionEvent):
                await self._handle_reaction(event)
                return

            if not event.text.strip():
                return
            if self._is_duplicate(f"{event.ref.timestamp}:{event.author}:{event.text.strip()}"):
                logger.debug("duplicate_message_skipped", timestamp=event.ref.timestamp)
                return

            if not is_authorized(event.author):
                logger.warning("unauthorized_message", sender=mask(event.author))
                return

            text = sanitize_input(event.text.strip())
            if not text:
                return
            event = event.model_copy(update={"text": text})

            logger.info(
                "processing_message",
                source=mask(event.author), length=len(text),
            )
            if self.transport.dispatch_message(event):
                logger.debug("message_routing", is_command=False, routing_path="prompt")
                return
            await self._process_message(event)

        except Exception as e:
            logger.error(
                "message_handling_error", error=str(e), msg=str(msg)[:200]
            )

    async def _handle_reaction(self, event: ReactionEvent):
        """Offer a reaction to waiting prompts.

        Reactions are not filtered by authorization: prompt waiters only
        accept their own user, and the reaction scrubber needs to see
        everyone else's.
        """
        consumed = self.transport.dispatch_reaction(event)
        logger.debug(
            "reaction_received",
            sender=mask(event.user_id),
            removed=event.removed,
            consumed=consumed,
        )

    async def run(self):
        """Main run loop: start, poll messages, stop on exit."""
        await self.start()

        try:
            await self.poll_messages()
        finally:
            await self.stop()
