"""Interactive prompts for a single user.

A PromptSession is bound to the message that triggered a command. It
asks that message's author a question in the same conversation and
collects either a typed reply or a reaction on the question message,
re-asking on invalid answers until a valid one, the cancel keyword
("q", "qu", ... "quit") or the timeout.

Key classes:
    PromptSession: Drives one or more prompts over a single UI message.

Every call returns None when the prompt ends without an answer; the
user has already been told why.
"""

import asyncio
from typing import Any, Optional, Sequence, TypeVar

import structlog

from ..config import get_config
from ..exceptions import (
    PromptAlreadyOpenError,
    PromptCancelledError,
    PromptError,
    PromptRetriesExceededError,
    PromptTimeoutError,
    TransportError,
)
from ..models import Emoji, IncomingMessage, MessageRef, PromptState
from ..security import mask
from ..transport.base import BaseTransport
from .channels import InputChannel, InputKind, MessageInput, ReactionInput, ReactionScrubber
from .registry import PromptRegistry, get_prompt_registry
from .validation import Candidate, ValidationKind, ValidationSpec, accepts, is_cancel_keyword

logger = structlog.get_logger("promptwire.prompts")

T = TypeVar("T")

VALUE_PLACEHOLDER = "{VALUE}"
DEFAULT_MESSAGE_ERROR = "`{VALUE}` is not a valid choice! Please try again."
DEFAULT_REACTION_ERROR = "That is not a valid choice! Please try again."


class PromptSession:
    """Asks the author of ``trigger`` questions and collects the answers.

    The question message is created on first render and edited in place
    for every retry and every later prompt on the same session. It is
    left in place when a prompt resolves (call ``delete()`` when done)
    and deleted when a prompt is cancelled or times out.

    Args:
        transport: Transport used for rendering and input.
        trigger: The message that started the interaction.
        registry: Open-prompt registry (default: the process-wide one).
        timeout_minutes: Default deadline per answer (default: config).
        max_retries: Invalid answers tolerated, 0 for unbounded
            (default: config).
        scrub_reactions: Remove other users' reactions from reaction
            prompts (default: config).
    """

    def __init__(
        self,
        transport: BaseTransport,
        trigger: IncomingMessage,
        *,
        registry: Optional[PromptRegistry] = None,
        timeout_minutes: Optional[float] = None,
        max_retries: Optional[int] = None,
        scrub_reactions: Optional[bool] = None,
    ):
        if timeout_minutes is None or max_retries is None or scrub_reactions is None:
            config = get_config()
            if timeout_minutes is None:
                timeout_minutes = config.prompt_timeout_minutes
            if max_retries is None:
                max_retries = config.prompt_max_retries
            if scrub_reactions is None:
                scrub_reactions = config.prompt_scrub_reactions

        self.transport = transport
        self.trigger = trigger
        self.user_id = trigger.author
        self.channel_id = trigger.channel_id
        self.registry = registry if registry is not None else get_prompt_registry()
        self.timeout_minutes = timeout_minutes
        self.max_retries = max_retries
        self.scrub_reactions = scrub_reactions

        self.ui_message: Optional[MessageRef] = None
        self.state = PromptState.IDLE
        self.retry_count = 0
        self._active = False
        self._closed = asyncio.Event()

    @property
    def active(self) -> bool:
        """Whether a prompt on this session is currently running."""
        return self._active

    async def message(
        self,
        question: str,
        options: Any,
        error: Optional[str] = None,
        timeout: Optional[float] = None,
        initial: bool = True,
    ) -> Optional[str]:
        """Prompt for a typed answer.

        Args:
            question: The question to send.
            options: Allowed answers (list, empty list accepts anything)
                or a regex searched within the answer.
            error: Message for invalid answers; ``{VALUE}`` is replaced
                with the invalid answer.
            timeout: Minutes to wait for each answer.
            initial: False when the caller already rendered ``question``
                on this session's UI message.

        Returns:
            The answer text, or None on cancel/timeout/duplicate prompt.
        """
        return await self._prompt(
            InputKind.MESSAGE, question, ValidationSpec.coerce(options),
            error=error, timeout=timeout, initial=initial,
        )

    async def reaction(
        self,
        question: str,
        options: Any,
        react: bool = False,
        error: Optional[str] = None,
        timeout: Optional[float] = None,
        initial: bool = True,
    ) -> Optional[Emoji]:
        """Prompt for a reaction on the question message.

        Args:
            question: The question to send.
            options: Allowed emoji (list of unicode emoji or custom ids,
                empty list accepts anything) or a regex tested against
                the emoji name.
            react: Pre-seed the question with one reaction per option
                (only when ``options`` is a list).
            error: Message for invalid reactions (``{VALUE}`` becomes
                the emoji).
            timeout: Minutes to wait for each reaction.
            initial: False when the caller already rendered ``question``.

        Returns:
            The chosen Emoji, or None on cancel/timeout/duplicate prompt.
        """
        return await self._prompt(
            InputKind.REACTION, question, ValidationSpec.coerce(options),
            error=error, timeout=timeout, initial=initial, react=react,
        )

    async def choose_one(self, question: str, choices: Sequence[T]) -> Optional[T]:
        """Prompt for one of ``choices`` by number. See choice.choose_one."""
        from .choice import choose_one
        return await choose_one(self, question, choices)

    def close(self) -> bool:
        """Cancel the running prompt from outside (e.g. /cancel, shutdown).

        Returns:
            True if a prompt was running and has been asked to stop.
        """
        if not self._active:
            return False
        self._closed.set()
        return True

    async def delete(self) -> None:
        """Release the user's registry entry and delete the UI message."""
        self.registry.release(self.user_id, self)
        if self.ui_message is None:
            return
        ref, self.ui_message = self.ui_message, None
        await self._cleanup(ref, "ui_message")

    # --- Internals ---

    async def _prompt(
        self,
        kind: InputKind,
        question: str,
        spec: ValidationSpec,
        *,
        error: Optional[str],
        timeout: Optional[float],
        initial: bool,
        react: bool = False,
    ) -> Any:
        if not self.registry.try_acquire(self.user_id, self):
            logger.info("prompt_already_open", user=mask(self.user_id))
            await self._notify(PromptAlreadyOpenError.notice)
            return None

        self._active = True
        self._closed.clear()
        self.retry_count = 0
        minutes = self.timeout_minutes if timeout is None else timeout
        try:
            return await self._ask(kind, question, spec, error, minutes * 60, initial, react)
        except PromptError as e:
            await self._end(e)
            return None
        except asyncio.CancelledError:
            # The owning task was cancelled; no notice, but leave no UI behind
            self.state = PromptState.CANCELLED
            logger.info("prompt_interrupted", user=mask(self.user_id))
            await asyncio.shield(self.delete())
            raise
        finally:
            self._active = False
            self.registry.release(self.user_id, self)

    async def _ask(
        self,
        kind: InputKind,
        question: str,
        spec: ValidationSpec,
        error: Optional[str],
        timeout_seconds: float,
        initial: bool,
        react: bool,
    ) -> Any:
        if initial or self.ui_message is None:
            await self._render(question)
        if kind is InputKind.REACTION and react and spec.kind is ValidationKind.CHOICES:
            await self._seed_reactions(spec.choices)

        channel = self._input_channel(kind)
        logger.info(
            "prompt_opened",
            user=mask(self.user_id),
            kind=kind.value,
            validation=spec.kind.value,
        )

        while True:
            self.state = PromptState.AWAITING_INPUT
            event = await self._await_input(channel, timeout_seconds)
            if event is None:
                raise PromptTimeoutError("No answer before the deadline", user_id=self.user_id)

            if kind is InputKind.MESSAGE:
                await self._cleanup(event.ref, "input_message")
                if is_cancel_keyword(event.text):
                    raise PromptCancelledError("Cancel keyword typed", user_id=self.user_id)

            self.state = PromptState.VALIDATING
            candidate = channel.candidate(event)
            if accepts(candidate, spec):
                self.state = PromptState.RESOLVED
                logger.info(
                    "prompt_resolved",
                    user=mask(self.user_id),
                    kind=kind.value,
                    retries=self.retry_count,
                )
                return channel.result(event)

            self.retry_count += 1
            logger.debug(
                "prompt_answer_rejected",
                user=mask(self.user_id),
                kind=kind.value,
                retries=self.retry_count,
            )
            if self.max_retries and self.retry_count > self.max_retries:
                raise PromptRetriesExceededError(
                    "Too many invalid answers",
                    retries=self.retry_count,
                    user_id=self.user_id,
                )
            await self._render(f"{self._error_line(kind, candidate, error)}\n\n{question}")

    def _input_channel(self, kind: InputKind) -> InputChannel:
        if kind is InputKind.MESSAGE:
            return MessageInput(self.transport, self.channel_id, self.user_id)
        channel = ReactionInput(self.transport, self.ui_message, self.user_id)
        if self.scrub_reactions:
            return ReactionScrubber(channel)
        return channel

    async def _await_input(self, channel: InputChannel, timeout_seconds: float) -> Any:
        """Race the input channel against an external close()."""
        waiter = asyncio.ensure_future(channel.next(timeout_seconds))
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {waiter, closer}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (waiter, closer):
                if not task.done():
                    task.cancel()
        if waiter in done:
            return waiter.result()
        raise PromptCancelledError("Prompt closed", user_id=self.user_id)

    def _error_line(self, kind: InputKind, candidate: Candidate, error: Optional[str]) -> str:
        value = str(candidate)
        if error:
            return error.replace(VALUE_PLACEHOLDER, value)
        if kind is InputKind.MESSAGE:
            return DEFAULT_MESSAGE_ERROR.replace(VALUE_PLACEHOLDER, value)
        return DEFAULT_REACTION_ERROR

    async def _render(self, content: str) -> None:
        if self.ui_message is None:
            self.ui_message = await self.transport.send(self.channel_id, content)
            return
        try:
            await self.transport.edit(self.ui_message, content)
        except TransportError as e:
            logger.warning("prompt_render_failed", user=mask(self.user_id), error=str(e))

    async def _seed_reactions(self, choices: Sequence[str]) -> None:
        for emoji in choices:
            try:
                await self.transport.add_reaction(self.ui_message, emoji)
            except TransportError as e:
                logger.warning("prompt_seed_reaction_failed", emoji=emoji, error=str(e))

    async def _end(self, error: PromptError) -> None:
        """Tear down after a prompt ends without an answer."""
        if isinstance(error, PromptTimeoutError):
            self.state = PromptState.TIMED_OUT
            logger.info("prompt_timed_out", user=mask(self.user_id))
        else:
            self.state = PromptState.CANCELLED
            logger.info(
                "prompt_cancelled",
                user=mask(self.user_id),
                reason=error.message,
                retries=self.retry_count,
            )
        await self.delete()
        await self._notify(error.notice)

    async def _notify(self, text: str) -> None:
        """Send a notice to the conversation the trigger came from."""
        try:
            await self.transport.send(self.trigger.channel_id, text)
        except TransportError as e:
            logger.warning("prompt_notice_failed", user=mask(self.user_id), error=str(e))

    async def _cleanup(self, ref: MessageRef, what: str) -> None:
        try:
            await self.transport.delete(ref)
        except TransportError as e:
            logger.debug("prompt_cleanup_failed", target=what, error=str(e))
