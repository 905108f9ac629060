"""Core command handler for the promptwire bot.

Handles: help, cancel, prompts, report.
"""

from __future__ import annotations

import re
from typing import Optional

import structlog

from ..models import IncomingMessage
from ..security import mask
from .base import BaseCommandHandler

logger = structlog.get_logger("promptwire.bot")

REPORT_PLATFORMS = ("Android", "iOS", "Desktop", "Web")
VERSION_PATTERN = re.compile(r"^\d+(\.\d+){1,3}$")
CONFIRM = "✅"
DISCARD = "❌"


class CoreCommandHandler(BaseCommandHandler):
    """Handles core bot commands."""

    def get_commands(self):
        return {
            "help": self.handle_help,
            "cancel": self.handle_cancel,
            "prompts": self.handle_prompts,
            "report": self.handle_report,
        }

    def get_help_lines(self) -> str:
        prefix = self.ctx.config.command_prefix
        return f"""promptwire Commands:

  {prefix}help - Show this help
  {prefix}report - File a problem report (guided questions)
  {prefix}cancel - Close your open prompt
  {prefix}prompts - Show how many prompts are open

While a question is open, type quit (or just q) to cancel it."""

    async def handle_help(self, message: IncomingMessage, args: str) -> str:
        """Show available commands and usage information.

        Signal usage::

            /help

        Args:
            message: The command message.
            args: Unused.

        Returns:
            Formatted help text listing all available commands.
        """
        return self.get_help_lines()

    async def handle_cancel(self, message: IncomingMessage, args: str) -> Optional[str]:
        """Close the sender's open prompt.

        Typed answers can always be cancelled with "quit"; this is the
        way out of a reaction prompt short of waiting for the timeout.

        Signal usage::

            /cancel

        Returns:
            None when a prompt was closed (the prompt reports it
            itself), otherwise a message saying nothing was open.
        """
        session = self.ctx.registry.get(message.author)
        if session is not None and session.close():
            logger.info("prompt_closed_by_command", sender=mask(message.author))
            return None
        return "You have no open prompt."

    async def handle_prompts(self, message: IncomingMessage, args: str) -> str:
        """Report how many prompts are currently open."""
        count = len(self.ctx.registry)
        if message.author in self.ctx.registry:
            return f"Open prompts: {count} (including yours)"
        return f"Open prompts: {count}"

    async def handle_report(self, message: IncomingMessage, args: str) -> Optional[str]:
        """Walk the sender through a short problem report.

        Asks for the platform (numbered choice), the app version (typed,
        pattern-checked) and a confirmation (reaction), all on one
        question message.

        Signal usage::

            /report

        Returns:
            A summary on submit, a discard notice, or None if the
            sender cancelled or let a question time out.
        """
        session = self.ctx.new_session(message)

        platform = await session.choose_one("Which platform are you using?", REPORT_PLATFORMS)
        if platform is None:
            return None

        version = await session.message(
            f"Which app version are you running on {platform}? (e.g. 17.03.38)",
            VERSION_PATTERN,
            "`{VALUE}` doesn't look like a version number. Please try again.",
        )
        if version is None:
            return None

        choice = await session.reaction(
            f"Submit this report?\n\nPlatform: {platform}\nVersion: {version}\n\n"
            f"React with {CONFIRM} to submit or {DISCARD} to discard.",
            [CONFIRM, DISCARD],
        )
        if choice is None:
            return None
        await session.delete()

        if choice.identity == DISCARD:
            return "Report discarded."
        logger.info(
            "report_submitted",
            sender=mask(message.author),
            platform=platform,
            version=version,
        )
        return f"Thanks! Your report for {platform} {version} was recorded."
