"""Custom exception hierarchy for promptwire.

Provides precise error classification across the prompt engine, the
Signal transport and configuration, enabling targeted error handling
and better debugging context.

Prompt errors (PromptAlreadyOpenError, PromptTimeoutError,
PromptCancelledError) are raised inside a PromptSession and turned into
a user notice plus a ``None`` result at its public boundary. Cleanup
errors are logged and swallowed by their callers.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"          # Worth retrying (timeout, connection reset)
    PERMANENT = "permanent"          # Not worth retrying (bad input, refused request)
    INFRASTRUCTURE = "infrastructure"  # Signal daemon missing, env issues


class PromptwireError(Exception):
    """Base exception for all promptwire errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification for retry/escalation decisions.
        module: Originating module name (e.g. "prompts.session").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error is worth retrying."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Prompt engine exceptions
# ---------------------------------------------------------------------------

class PromptError(PromptwireError):
    """Error that terminates a prompt without a result.

    Attributes:
        user_id: The user the prompt was addressed to (if known).
        notice: Text shown to the user when the prompt ends this way.
    """

    notice: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        user_id: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.user_id = user_id
        super().__init__(
            message, category=category, module=module or "prompts.session", **context
        )


class PromptAlreadyOpenError(PromptError):
    """A second prompt was attempted for a user who already has one open."""

    notice = "You already have another prompt open!"


class PromptTimeoutError(PromptError):
    """No qualifying input arrived before the deadline."""

    notice = "The prompt timed out!"


class PromptCancelledError(PromptError):
    """The user typed the cancel keyword or the session was closed."""

    notice = "Successfully cancelled the prompt!"


class PromptRetriesExceededError(PromptCancelledError):
    """Forced cancellation after too many invalid answers.

    Attributes:
        retries: Number of rejected answers before giving up.
    """

    notice = "Too many invalid answers, the prompt was cancelled!"

    def __init__(
        self,
        message: str = "",
        *,
        retries: int = 0,
        user_id: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.retries = retries
        super().__init__(
            message, user_id=user_id, category=category, module=module, **context
        )


# ---------------------------------------------------------------------------
# Transport exceptions
# ---------------------------------------------------------------------------

class TransportError(PromptwireError):
    """Error talking to the chat transport.

    Attributes:
        status: HTTP status returned by the Signal REST API (if any).
    """

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.status = status
        super().__init__(
            message, category=category, module=module or "transport", **context
        )


class CleanupError(TransportError):
    """Deleting a message or removing a reaction failed.

    Never changes the outcome of a prompt; callers log and move on.
    """

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message, status=status, category=category, module=module, **context
        )


# ---------------------------------------------------------------------------
# Configuration exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(PromptwireError):
    """Invalid or missing configuration.

    Defaults to INFRASTRUCTURE because config issues are environmental
    and won't resolve by retrying.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(
            message, category=category, module=module or "config", **context
        )
