"""Base classes for the command handler framework.

Defines the abstractions for registering and dispatching bot
commands. Command handlers are grouped into classes that extend
BaseCommandHandler, then registered with a HandlerRegistry that
maps command names to async callables.

Key classes:
    BotContext: Dependency container shared by all handlers.
    BaseCommandHandler: ABC that handler groups must implement.
    HandlerRegistry: Maps command names to handler callables.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional

import structlog

from ..prompts import PromptSession

if TYPE_CHECKING:
    from ..config import Config
    from ..models import IncomingMessage
    from ..prompts import PromptRegistry
    from ..task_manager import TaskManager
    from ..transport import BaseTransport

logger = structlog.get_logger("promptwire.bot")

# Handler signature: async (message, args) -> Optional[str]
CommandHandler = Callable[["IncomingMessage", str], Awaitable[Optional[str]]]


@dataclass
class BotContext:
    """Dependency container for command handlers.

    The transport is only available once the bot has resolved its
    Signal account in start(); accessing it earlier raises RuntimeError.
    """

    config: "Config"
    registry: "PromptRegistry"
    task_manager: "TaskManager"
    _transport: Optional["BaseTransport"] = field(default=None, repr=False)

    @property
    def transport(self) -> "BaseTransport":
        if self._transport is None:
            raise RuntimeError("Bot not started: transport not available")
        return self._transport

    def new_session(self, trigger: "IncomingMessage") -> PromptSession:
        """Create a PromptSession answering to the author of ``trigger``."""
        return PromptSession(
            self.transport,
            trigger,
            registry=self.registry,
            timeout_minutes=self.config.prompt_timeout_minutes,
            max_retries=self.config.prompt_max_retries,
            scrub_reactions=self.config.prompt_scrub_reactions,
        )


class BaseCommandHandler(ABC):
    """Abstract base class for command handler groups.

    Subclasses implement get_commands() to return a dict mapping
    command names to async handler functions. Each handler receives
    (message, args) and returns an optional response string.

    Args:
        ctx: Shared BotContext dependency container.
    """

    def __init__(self, ctx: BotContext):
        self.ctx = ctx

    @abstractmethod
    def get_commands(self) -> Dict[str, CommandHandler]:
        """Return {command_name: async_handler} mapping.

        Returning None from a handler means nothing more is sent.
        """
        ...

    def get_help_lines(self) -> str:
        """Return help text section for this handler group."""
        return ""


class HandlerRegistry:
    """Maps command names to handler callables."""

    def __init__(self):
        self._handlers: Dict[str, CommandHandler] = {}

    def register(self, handler: BaseCommandHandler) -> None:
        """Register all commands from a BaseCommandHandler subclass.

        Args:
            handler: Handler instance whose get_commands() dict
                will be merged into the registry.
        """
        for cmd_name, method in handler.get_commands().items():
            if cmd_name in self._handlers:
                logger.warning(
                    "command_handler_conflict",
                    command=cmd_name,
                    handler=type(handler).__name__,
                )
            self._handlers[cmd_name] = method

    def get(self, command: str) -> Optional[CommandHandler]:
        """Look up a handler for a command name."""
        return self._handlers.get(command)

    @property
    def command_names(self) -> frozenset:
        """All registered command names."""
        return frozenset(self._handlers.keys())
