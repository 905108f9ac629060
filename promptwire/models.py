"""Pydantic models shared by the prompt engine and the transports.

Enums:
    PromptState

Transport-level models:
    MessageRef, IncomingMessage, Emoji, ReactionEvent

Signal identifies a message by its author and sent timestamp, so a
MessageRef carries both together with the conversation it lives in.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PromptState(str, Enum):
    """Lifecycle state of a PromptSession.

    Flow: IDLE -> AWAITING_INPUT -> VALIDATING -> AWAITING_INPUT (retry)
    | RESOLVED | CANCELLED | TIMED_OUT.
    """
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    VALIDATING = "validating"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class MessageRef(BaseModel):
    """Reference to a message in a conversation."""
    model_config = ConfigDict(frozen=True)

    channel_id: str
    timestamp: int
    author: str


class IncomingMessage(BaseModel):
    """A text message delivered by the transport."""
    model_config = ConfigDict(frozen=True)

    ref: MessageRef
    text: str = ""

    @property
    def author(self) -> str:
        return self.ref.author

    @property
    def channel_id(self) -> str:
        return self.ref.channel_id


class Emoji(BaseModel):
    """An emoji as seen on a reaction.

    Attributes:
        name: The visible emoji (unicode) or the custom emoji's name.
        id: Transport identifier for custom emoji, None for unicode.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    id: Optional[str] = None

    @property
    def identity(self) -> str:
        """Stable identity used for allow-list matching."""
        return self.id or self.name

    def __str__(self) -> str:
        return self.name


class ReactionEvent(BaseModel):
    """A reaction added to (or removed from) a message."""
    model_config = ConfigDict(frozen=True)

    emoji: Emoji
    user_id: str
    target: MessageRef
    removed: bool = Field(default=False, description="True when the user took the reaction back")
