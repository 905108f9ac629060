"""Command handler framework for the promptwire bot.

Provides the BaseCommandHandler ABC, BotContext dependency container,
and HandlerRegistry for mapping command names to async handlers.
"""

from .base import BaseCommandHandler, BotContext, HandlerRegistry
from .core import CoreCommandHandler

__all__ = [
    "BaseCommandHandler",
    "BotContext",
    "CoreCommandHandler",
    "HandlerRegistry",
]
