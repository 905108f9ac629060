"""Pick-one-of-N prompts built on PromptSession.message()."""

from typing import TYPE_CHECKING, Optional, Sequence, TypeVar

if TYPE_CHECKING:
    from .session import PromptSession

T = TypeVar("T")

INVALID_OPTION_ERROR = "`{VALUE}` is not a valid option! Please try again."


def format_choices(choices: Sequence[object]) -> str:
    """Render ``1 | a``, ``2 | b``, ... as monospace lines."""
    return "\n".join(f"`{i} | {choice}`" for i, choice in enumerate(choices, start=1))


async def choose_one(
    session: "PromptSession", question: str, choices: Sequence[T]
) -> Optional[T]:
    """Ask the user to pick one of ``choices`` by typing its number.

    Returns:
        The chosen element itself (not its number), or None if the
        prompt was cancelled, timed out or could not be opened.

    Raises:
        ValueError: If ``choices`` is empty; no prompt is opened.
    """
    if not choices:
        raise ValueError("choose_one needs at least one choice")
    answer = await session.message(
        f"{question}\n{format_choices(choices)}",
        [str(i) for i in range(1, len(choices) + 1)],
        INVALID_OPTION_ERROR,
    )
    if answer is None:
        return None
    return choices[int(answer) - 1]
