"""Interactive prompt engine.

Ask a single user a question over a chat transport and collect a typed
answer or a reaction, with validation, retries, cancellation, timeouts
and one open prompt per user.
"""

from .channels import InputChannel, InputKind, MessageInput, ReactionInput, ReactionScrubber
from .choice import choose_one, format_choices
from .registry import PromptRegistry, get_prompt_registry
from .session import PromptSession
from .validation import ValidationKind, ValidationSpec, accepts, is_cancel_keyword

__all__ = [
    "InputChannel",
    "InputKind",
    "MessageInput",
    "PromptRegistry",
    "PromptSession",
    "ReactionInput",
    "ReactionScrubber",
    "ValidationKind",
    "ValidationSpec",
    "accepts",
    "choose_one",
    "format_choices",
    "get_prompt_registry",
    "is_cancel_keyword",
]
