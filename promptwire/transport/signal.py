"""Signal transport backed by signal-cli-rest-api.

Outgoing operations are REST calls made with aiohttp; incoming events
arrive on the bot's WebSocket receive loop, are converted by
parse_envelope() and fed to the inherited dispatch methods.

Key classes:
    SignalTransport: BaseTransport implementation for one Signal account.

Key functions:
    parse_envelope: Convert a receive payload into an IncomingMessage,
        a ReactionEvent, or None.
    group_recipient: Build the REST recipient id for a group.
"""

import asyncio
import base64
from typing import Dict, Optional, Tuple, Union

import aiohttp
import structlog

from ..exceptions import CleanupError, ErrorCategory, TransportError
from ..models import Emoji, IncomingMessage, MessageRef, ReactionEvent
from ..security import mask
from .base import BaseTransport

logger = structlog.get_logger("promptwire.transport")

GROUP_PREFIX = "group."


def group_recipient(internal_group_id: str) -> str:
    """REST API recipient id for a group, from the id seen in envelopes."""
    encoded = base64.b64encode(internal_group_id.encode()).decode()
    return f"{GROUP_PREFIX}{encoded}"


def parse_envelope(
    data: dict, account: Optional[str] = None
) -> Optional[Union[IncomingMessage, ReactionEvent]]:
    """Convert a signal-cli-rest-api receive payload into an event.

    Handles plain data messages, reactions, and sync messages the
    account sent to itself (note-to-self chats). Anything else
    (receipts, typing indicators, edits of other users' messages)
    yields None.
    """
    envelope = data.get("envelope", {})
    source = (
        envelope.get("sourceNumber")
        or envelope.get("source")
        or envelope.get("sourceUuid")
    )
    data_message = envelope.get("dataMessage")

    sync_message = envelope.get("syncMessage")
    if not data_message and sync_message:
        sent_message = sync_message.get("sentMessage")
        if sent_message:
            destination = (
                sent_message.get("destinationNumber")
                or sent_message.get("destination")
            )
            if destination and destination == account and not sent_message.get("groupInfo"):
                data_message = sent_message
                source = account

    if not data_message or not source:
        return None

    group_info = data_message.get("groupInfo") or {}
    if group_info.get("groupId"):
        channel_id = group_recipient(group_info["groupId"])
    else:
        channel_id = source

    reaction = data_message.get("reaction")
    if reaction:
        target_author = reaction.get("targetAuthorNumber") or reaction.get("targetAuthor")
        target_ts = reaction.get("targetSentTimestamp")
        if not reaction.get("emoji") or not target_author or target_ts is None:
            return None
        return ReactionEvent(
            emoji=Emoji(name=reaction["emoji"]),
            user_id=source,
            target=MessageRef(
                channel_id=channel_id,
                timestamp=int(target_ts),
                author=target_author,
            ),
            removed=bool(reaction.get("isRemove", False)),
        )

    text = data_message.get("message")
    if text is None:
        return None
    timestamp = data_message.get("timestamp") or envelope.get("timestamp", 0)
    return IncomingMessage(
        ref=MessageRef(channel_id=channel_id, timestamp=int(timestamp), author=source),
        text=text,
    )


class SignalTransport(BaseTransport):
    """BaseTransport over the signal-cli-rest-api HTTP interface.

    Args:
        session: Shared aiohttp session (owned by the bot).
        api_url: Base URL of the REST daemon.
        account: Registered number the bot sends as.
        text_mode: ``styled`` to render `monospace` and friends.
        request_timeout: Seconds per REST call.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_url: str,
        account: str,
        text_mode: str = "styled",
        request_timeout: float = 15,
    ):
        super().__init__()
        self.session = session
        self.api_url = api_url.rstrip("/")
        self.account = account
        self.text_mode = text_mode
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        # Signal keeps one reaction per account per message: (channel, timestamp) -> emoji
        self._own_reactions: Dict[Tuple[str, int], str] = {}

    async def _request(self, method: str, path: str, payload: dict, expected=(200, 201, 204)) -> dict:
        url = f"{self.api_url}{path}"
        try:
            async with self.session.request(
                method, url, json=payload, timeout=self._timeout
            ) as resp:
                if resp.status not in expected:
                    body = await resp.text()
                    raise TransportError(
                        f"Signal API {method} {path} failed",
                        status=resp.status,
                        category=(
                            ErrorCategory.PERMANENT if 400 <= resp.status < 500
                            else ErrorCategory.TRANSIENT
                        ),
                        body=body[:200],
                    )
                if resp.content_type == "application/json":
                    return await resp.json() or {}
                return {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Signal API {method} {path} unreachable", error=str(e)
            ) from e

    async def send(self, channel_id: str, content: str) -> MessageRef:
        return await self._send(channel_id, content)

    async def edit(self, ref: MessageRef, content: str) -> MessageRef:
        await self._send(ref.channel_id, content, edit_timestamp=ref.timestamp)
        # Edits keep the original timestamp as the message's identity
        return ref

    async def _send(
        self, channel_id: str, content: str, edit_timestamp: Optional[int] = None
    ) -> MessageRef:
        payload = {
            "message": content,
            "number": self.account,
            "recipients": [channel_id],
            "text_mode": self.text_mode,
        }
        if edit_timestamp is not None:
            payload["edit_timestamp"] = edit_timestamp
        result = await self._request("POST", "/v2/send", payload, expected=(200, 201))
        timestamp = result.get("timestamp")
        if timestamp is None:
            raise TransportError("Signal API did not return a message timestamp")
        logger.debug(
            "message_sent",
            recipient=mask(channel_id),
            edited=edit_timestamp is not None,
            length=len(content),
        )
        return MessageRef(channel_id=channel_id, timestamp=int(timestamp), author=self.account)

    async def delete(self, ref: MessageRef) -> bool:
        if ref.author != self.account:
            # Signal only allows remote-deleting your own messages
            return False
        payload = {"recipient": ref.channel_id, "timestamp": ref.timestamp}
        try:
            await self._request("DELETE", f"/v1/remote-delete/{self.account}", payload)
        except TransportError as e:
            raise CleanupError("Remote delete failed", status=e.status) from e
        self._own_reactions.pop((ref.channel_id, ref.timestamp), None)
        return True

    async def add_reaction(self, ref: MessageRef, emoji: str) -> None:
        """React to ``ref`` as the account.

        A second reaction on the same message replaces the first one on
        Signal, so seeding several options leaves only the last visible.
        """
        key = (ref.channel_id, ref.timestamp)
        await self._request(
            "POST", f"/v1/reactions/{self.account}", self._reaction_payload(ref, emoji)
        )
        previous = self._own_reactions.get(key)
        if previous is not None and previous != emoji:
            logger.info(
                "reaction_replaced",
                previous=previous,
                emoji=emoji,
                reason="Signal keeps one reaction per account per message",
            )
        self._own_reactions[key] = emoji

    async def remove_reaction(self, ref: MessageRef, emoji: str, user_id: str) -> bool:
        if user_id != self.account:
            logger.debug(
                "reaction_removal_unsupported",
                user=mask(user_id),
                reason="Signal only removes the account's own reactions",
            )
            return False
        try:
            await self._request(
                "DELETE", f"/v1/reactions/{self.account}", self._reaction_payload(ref, emoji)
            )
        except TransportError as e:
            raise CleanupError("Reaction removal failed", status=e.status) from e
        if self._own_reactions.get((ref.channel_id, ref.timestamp)) == emoji:
            self._own_reactions.pop((ref.channel_id, ref.timestamp))
        return True

    def _reaction_payload(self, ref: MessageRef, emoji: str) -> dict:
        return {
            "reaction": emoji,
            "recipient": ref.channel_id,
            "target_author": ref.author,
            "timestamp": ref.timestamp,
        }
