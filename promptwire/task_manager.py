"""Background task lifecycle management for promptwire.

Command handlers run as background tasks so a handler that is waiting
on a prompt never blocks the receive loop that delivers the answer.
"""

import asyncio
from typing import Awaitable, Dict, List, Optional

import structlog

from .security import mask

logger = structlog.get_logger("promptwire.bot")


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("background_task_failed", error=str(exc), exc_type=type(exc).__name__)


class TaskManager:
    """Tracks per-sender command tasks.

    A sender may have several command tasks in flight (e.g. one waiting
    on a prompt while another answers /help); finished tasks drop out of
    the table on completion.
    """

    def __init__(self):
        self._sender_tasks: Dict[str, Dict[asyncio.Task, str]] = {}

    def start(self, sender: str, coro: Awaitable, description: str = "") -> asyncio.Task:
        """Run ``coro`` in the background on behalf of ``sender``.

        Args:
            sender: Phone number or UUID of the requesting user.
            coro: The handler coroutine to run.
            description: Short label used in logs.

        Returns:
            The created task.
        """
        task = asyncio.create_task(coro)
        tasks = self._sender_tasks.setdefault(sender, {})
        tasks[task] = description

        def _done(t: asyncio.Task):
            remaining = self._sender_tasks.get(sender)
            if remaining is not None:
                remaining.pop(t, None)
                if not remaining:
                    self._sender_tasks.pop(sender, None)
            log_task_exception(t)

        task.add_done_callback(_done)
        logger.debug("command_task_started", sender=mask(sender), description=description)
        return task

    def active_tasks(self, sender: Optional[str] = None) -> List[asyncio.Task]:
        """Tasks still running, for one sender or for everyone."""
        if sender is not None:
            groups = [self._sender_tasks.get(sender, {})]
        else:
            groups = list(self._sender_tasks.values())
        return [t for group in groups for t in group if not t.done()]

    async def drain(self, timeout: float) -> int:
        """Wait up to ``timeout`` seconds for running tasks to finish.

        Returns:
            Number of tasks still running when the wait ended.
        """
        tasks = self.active_tasks()
        if not tasks:
            return 0
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return len(pending)

    async def cancel_all(self) -> None:
        """Cancel every tracked task and wait for them to unwind (for shutdown)."""
        tasks = self.active_tasks()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._sender_tasks.clear()
