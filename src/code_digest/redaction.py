"""Secret masking applied to text content before it reaches the digest."""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from code_digest.logging import logger
from code_digest.settings import DEFAULT_REDACTION_KEYWORDS

if TYPE_CHECKING:
    from collections.abc import Sequence

    from code_digest.settings import Settings

_SLASH_FORM = re.compile(r"^/(.*)/([gimsuy]*)$", re.DOTALL)
_REGEX_META = re.compile(r"[.\\^$*+?()\[\]{}|]")
_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
_NOT_SECRETS = {"true", "false"}
_IDENTIFIER = re.compile(r"[_-]*[A-Za-z]+(?:[_-]+[A-Za-z]+)*[_-]*")


@dataclass(frozen=True)
class Detector:
    """One secret detector.

    Attributes:
        name: label used in logs.
        regex: compiled pattern.
        group: capture group that is masked (0 for the whole match).
        heuristic: hits containing path separators or booleans are ignored.
        needs_context: only applies on lines mentioning a redaction keyword.
        check_entropy: masks only values whose Shannon entropy reaches the threshold
            and that are not plain identifiers (letters joined by `_` or `-`).
    """

    name: str
    regex: re.Pattern[str]
    group: int = 0
    heuristic: bool = False
    needs_context: bool = False
    check_entropy: bool = False


CREDENTIAL_DETECTORS: tuple[Detector, ...] = (
    Detector("aws_access_key", re.compile(r"\b((?:AKIA|ASIA)[0-9A-Z]{16})\b"), group=1),
    Detector("jwt", re.compile(r"(eyJ[A-Za-z0-9_=-]+\.[A-Za-z0-9_=-]+\.[A-Za-z0-9_.+/=-]+)"), group=1),
    Detector("github_token", re.compile(r"\b(gh[pousr]_[A-Za-z0-9_]{20,})"), group=1),
    Detector("slack_token", re.compile(r"\b(xox[abposr]-[A-Za-z0-9-]{10,})"), group=1),
    Detector("bearer_token", re.compile(r"(?i)\bbearer\s+([A-Za-z0-9._~+/-]{8,}=*)"), group=1),
    Detector("url_credentials", re.compile(r"(?i)\bhttps?://([^@\s/]+)@"), group=1),
)

HEURISTIC_DETECTORS: tuple[Detector, ...] = (
    Detector(
        "keyword_assignment",
        re.compile(r"(?i)(key|token|secret|password|passwd|pw)\s*[:=]\s*['\"]?([A-Za-z0-9/+=_-]{16,})['\"]?"),
        group=2,
        heuristic=True,
    ),
    Detector(
        "high_entropy",
        re.compile(r"['\"]?([A-Za-z0-9/+=_-]{20,})['\"]?"),
        group=1,
        heuristic=True,
        needs_context=True,
        check_entropy=True,
    ),
)


@dataclass(frozen=True)
class RedactionResult:
    text: Any
    applied: bool


def shannon_entropy(value: str) -> float:
    """Shannon entropy of `value` in bits per character (0 for an empty string)."""
    if not value:
        return 0.0
    n = len(value)
    return -sum(c / n * math.log2(c / n) for c in Counter(value).values())


def compile_user_pattern(raw: str) -> re.Pattern[str] | None:
    """Compile a caller supplied redaction pattern.

    `/body/flags` is a regular expression with JS-style flags (`i`, `m`, `s`;
    `g` is implied). A string containing regex metacharacters is compiled as is.
    Anything else is matched literally.

    Returns:
        re.Pattern[str] | None: the compiled pattern, None for blank or invalid input
    """
    text = raw.strip()
    if not text:
        return None
    try:
        m = _SLASH_FORM.match(text)
        if m and m.group(1):
            flags = 0
            for f in m.group(2):
                flags |= _FLAG_MAP.get(f, 0)
            return re.compile(m.group(1), flags)
        if _REGEX_META.search(text):
            return re.compile(text)
        return re.compile(re.escape(text))
    except re.error as e:
        logger.warning("redaction_pattern_invalid", pattern=text, error=str(e))
        return None


class Redactor:
    """Line-oriented secret masker.

    Detectors run in order: caller patterns, credential shapes, then heuristics.
    Text already equal to the placeholder is never matched again, so running
    the redactor over its own output changes nothing.
    """

    def __init__(
        self,
        detectors: Sequence[Detector],
        *,
        placeholder: str = "[REDACTED]",
        keywords: Sequence[str] = DEFAULT_REDACTION_KEYWORDS,
        entropy_threshold: float = 3.5,
        enabled: bool = True,
    ) -> None:
        self.detectors = tuple(detectors)
        self.placeholder = placeholder
        self.keywords = tuple(k.lower() for k in keywords if k)
        self.entropy_threshold = entropy_threshold
        self.enabled = enabled
        self._placeholder_re = re.compile(re.escape(placeholder))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Redactor:
        if settings is None:
            return cls([*CREDENTIAL_DETECTORS, *HEURISTIC_DETECTORS])
        user = [
            Detector(f"user_pattern_{i}", compiled)
            for i, raw in enumerate(settings.redaction_patterns)
            if (compiled := compile_user_pattern(raw)) is not None
        ]
        return cls(
            [*user, *CREDENTIAL_DETECTORS, *HEURISTIC_DETECTORS],
            placeholder=settings.redaction_placeholder,
            keywords=settings.redaction_keywords,
            entropy_threshold=settings.redaction_entropy_threshold,
            enabled=not settings.show_redacted,
        )

    def redact(self, text: Any) -> RedactionResult:  # noqa: ANN401
        """Mask secret-like substrings of `text`.

        Non-string input is returned unchanged with `applied=False`.
        """
        if not isinstance(text, str) or not self.enabled or not text:
            return RedactionResult(text=text, applied=False)
        applied = False
        lines = text.split("\n")
        for i, line in enumerate(lines):
            new_line = self._redact_line(line)
            if new_line != line:
                lines[i] = new_line
                applied = True
        return RedactionResult(text="\n".join(lines), applied=applied)

    def _redact_line(self, line: str) -> str:
        for detector in self.detectors:
            try:
                line = self._apply(detector, line)
            except Exception as e:  # noqa: BLE001
                logger.warning("redaction_detector_failed", detector=detector.name, error=str(e))
                return self.placeholder
        return line

    def _has_context(self, line: str) -> bool:
        lowered = self._placeholder_re.sub(" ", line).lower()
        return any(k in lowered for k in self.keywords)

    def _apply(self, detector: Detector, line: str) -> str:
        if detector.needs_context and not self._has_context(line):
            return line
        protected = [m.span() for m in self._placeholder_re.finditer(line)]
        spans: list[tuple[int, int]] = []
        for m in detector.regex.finditer(line):
            start, end = m.span(detector.group)
            if start < 0 or start == end:
                continue
            if any(start < p_end and p_start < end for p_start, p_end in protected):
                continue
            target = line[start:end]
            if detector.heuristic and ("/" in target or "\\" in target or target.lower() in _NOT_SECRETS):
                continue
            if detector.check_entropy and (
                _IDENTIFIER.fullmatch(target) or shannon_entropy(target) < self.entropy_threshold
            ):
                continue
            spans.append((start, end))
        for start, end in reversed(spans):
            line = line[:start] + self.placeholder + line[end:]
        return line


def redact_secrets(text: Any, settings: Settings | None = None) -> RedactionResult:  # noqa: ANN401
    """Convenience wrapper building a Redactor from `settings` for a single text."""
    return Redactor.from_settings(settings).redact(text)
