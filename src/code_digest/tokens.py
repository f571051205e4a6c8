"""Character-based token estimation with per-model divisors and comment weighting."""

from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_MODEL = "chars-approx"
DEFAULT_DIVISOR = 4.0

MODEL_DIVISORS: dict[str, float] = {
    "chars-approx": 4.0,
    "gpt-4o": 4.0,
    "gpt-4o-mini": 4.0,
    "gpt-3.5": 4.0,
    "o200k": 4.0,
    "o1": 4.0,
    "claude-3.5": 4.0,
    "claude-2": 4.0,
}

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"(?<!:)//[^\n]*")
_HASH_COMMENT = re.compile(r"^[ \t]*(#[^\n]*)", re.MULTILINE)


def resolve_divisor(
    model: str = DEFAULT_MODEL,
    overrides: Mapping[str, float] | None = None,
    extension: str | None = None,
) -> float:
    """Pick the characters-per-token divisor.

    An override keyed by the file extension wins, then an override keyed by the
    model name, then the model's built-in divisor. Unknown models use
    `chars-approx`.
    """
    overrides = overrides or {}
    if extension:
        ext = extension.lower() if extension.startswith(".") else "." + extension.lower()
        if overrides.get(ext, 0) > 0:
            return float(overrides[ext])
    if overrides.get(model, 0) > 0:
        return float(overrides[model])
    return MODEL_DIVISORS.get(model, MODEL_DIVISORS.get(DEFAULT_MODEL, DEFAULT_DIVISOR))


def comment_spans(text: str) -> list[tuple[int, int]]:
    """Merged `(start, end)` spans of comments in `text`.

    Recognized: `/* ... */` blocks, `//` line comments not preceded by `:`
    (which keeps URLs out), and lines whose first non-blank character is `#`.
    A marker that starts inside an earlier comment is part of that comment and
    never extends it. Adjacent spans are merged.
    """
    raw: list[tuple[int, int]] = [m.span() for m in _BLOCK_COMMENT.finditer(text)]
    raw.extend(m.span() for m in _LINE_COMMENT.finditer(text))
    raw.extend(m.span(1) for m in _HASH_COMMENT.finditer(text))
    raw.sort()
    merged: list[tuple[int, int]] = []
    for start, end in raw:
        if merged and start < merged[-1][1]:
            continue
        if merged and start == merged[-1][1]:
            merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def estimate_tokens(
    text: str,
    model: str = DEFAULT_MODEL,
    overrides: Mapping[str, float] | None = None,
    *,
    extension: str | None = None,
    comment_weight: float = 1.0,
) -> int:
    """Estimate the token count of `text`.

    The estimate is `ceil(effective_length / divisor)` where comment characters
    count `comment_weight` times. The function is pure.

    Args:
        text (str): the text to measure
        model (str): token model name
        overrides (Mapping[str, float] | None): divisor per model name or extension
        extension (str | None): extension of the source file, e.g. ".py"
        comment_weight (float): relative weight of comment characters

    Returns:
        int: the estimated number of tokens, 0 for empty text
    """
    if not text:
        return 0
    divisor = resolve_divisor(model, overrides, extension)
    length = float(len(text))
    if comment_weight != 1.0:
        commented = sum(end - start for start, end in comment_spans(text))
        length = (len(text) - commented) + comment_weight * commented
    return math.ceil(length / divisor)


def format_token_count(n: int) -> str:
    """Format a token count with k / M suffixes (e.g. `1.5k`, `2M`)."""
    if n < 1000:  # noqa: PLR2004
        return str(n)
    if n < 1_000_000:  # noqa: PLR2004
        value, suffix = n / 1000, "k"
    else:
        value, suffix = n / 1_000_000, "M"
    text = f"{value:.1f}"
    if text.endswith(".0"):
        text = text[:-2]
    return text + suffix


def token_limit_warning(estimate: int, limit: int | None) -> str | None:
    """Warning message when `estimate` exceeds `limit`, None otherwise."""
    if limit and estimate > limit:
        return (
            f"Token estimate {format_token_count(estimate)} exceeds context limit "
            f"({format_token_count(limit)})."
        )
    return None
