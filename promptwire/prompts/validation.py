"""Answer validation for prompts.

A ValidationSpec is either a regular expression (searched within the
candidate) or an allow-list of literal values, where an empty list
accepts anything.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Pattern, Tuple, Union

from ..models import Emoji

CANCEL_KEYWORD = "quit"

Candidate = Union[str, Emoji]


class ValidationKind(str, Enum):
    """Closed set of validation rules."""
    PATTERN = "pattern"
    CHOICES = "choices"


@dataclass(frozen=True)
class ValidationSpec:
    """Rule defining acceptable answers.

    Build with ``from_pattern`` / ``from_choices``, or ``coerce`` for
    the loose forms accepted by PromptSession (compiled regex, pattern
    string, or iterable of literals).
    """
    kind: ValidationKind
    pattern: Optional[Pattern[str]] = None
    choices: Tuple[str, ...] = ()

    @classmethod
    def from_pattern(cls, pattern: Union[str, Pattern[str]]) -> "ValidationSpec":
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        return cls(kind=ValidationKind.PATTERN, pattern=pattern)

    @classmethod
    def from_choices(cls, choices: Iterable[Any]) -> "ValidationSpec":
        return cls(kind=ValidationKind.CHOICES, choices=tuple(str(c) for c in choices))

    @classmethod
    def coerce(cls, value: Any) -> "ValidationSpec":
        """Turn a spec, regex, pattern string or iterable into a ValidationSpec.

        Raises:
            TypeError: If ``value`` is none of the accepted forms.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, (str, re.Pattern)):
            return cls.from_pattern(value)
        if isinstance(value, (list, tuple, set, frozenset)):
            return cls.from_choices(value)
        raise TypeError(
            f"Unsupported validation spec {type(value).__name__!r}: "
            "expected a regex, a pattern string or a list of choices"
        )

    @property
    def accepts_anything(self) -> bool:
        return self.kind is ValidationKind.CHOICES and not self.choices


def accepts(candidate: Candidate, spec: ValidationSpec) -> bool:
    """Decide whether ``candidate`` satisfies ``spec``.

    Patterns are searched within the text (for an emoji, its visible
    name). Allow-lists compare case-sensitively against the text, or
    against the emoji identity (custom id if present, else name).
    """
    if spec.kind is ValidationKind.PATTERN:
        text = candidate.name if isinstance(candidate, Emoji) else candidate
        return spec.pattern.search(text) is not None

    if not spec.choices:
        return True
    value = candidate.identity if isinstance(candidate, Emoji) else candidate
    return value in spec.choices


def is_cancel_keyword(text: str) -> bool:
    """True for any non-empty, case-insensitive prefix of "quit"."""
    return bool(text) and CANCEL_KEYWORD.startswith(text.lower())
