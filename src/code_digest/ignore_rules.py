"""Layered gitignore-style rules scoped to the directory that declares them."""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING

from pathspec.patterns.gitignore.spec import GitIgnoreSpecPattern

from code_digest.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path


@dataclass(frozen=True)
class IgnoreRule:
    """One compiled line of an ignore file.

    Attributes:
        base: POSIX directory (relative to the scan root) holding the ignore file, "" for the root.
        pattern: the pattern text without its leading `!`.
        negated: whether the line re-includes what it matches.
        compiled: the gitwildmatch pattern for `pattern`.
    """

    base: str
    pattern: str
    negated: bool
    compiled: GitIgnoreSpecPattern

    def local_path(self, rel: str) -> str | None:
        """Path of `rel` relative to the rule's directory, None when outside of it."""
        if not self.base:
            return rel
        prefix = self.base + "/"
        if rel.startswith(prefix):
            return rel[len(prefix) :]
        return None

    def matches(self, rel: str, *, is_dir: bool = False) -> bool:
        local = self.local_path(rel)
        if local is None or not local:
            return False
        if is_dir:
            local = local.rstrip("/") + "/"
        return self.compiled.match_file(local) is not None

    def may_match_beneath(self, rel_dir: str) -> bool:
        """Whether the rule names a path strictly inside directory `rel_dir`.

        Only patterns carrying a directory part qualify; a bare basename such as
        `*.log` never points inside a particular directory.
        """
        local = self.local_path(rel_dir)
        if local is None or not local:
            return False
        body = self.pattern.strip("/")
        if "/" not in body:
            return False
        pat_parts = body.split("/")
        dir_parts = local.strip("/").split("/")
        for i, seg in enumerate(dir_parts):
            if i >= len(pat_parts):
                return False
            if pat_parts[i] == "**":
                return True
            if not fnmatchcase(seg, pat_parts[i]):
                return False
        return len(pat_parts) > len(dir_parts)


def parse_ignore_lines(lines: Iterable[str], base: str = "") -> list[IgnoreRule]:
    """Compile the lines of an ignore file declared in directory `base`.

    Blank lines and comments are dropped. A leading `!` marks a negation.

    Args:
        lines (Iterable[str]): raw lines of the ignore file
        base (str): POSIX directory of the ignore file relative to the scan root

    Returns:
        list[IgnoreRule]: compiled rules in file order
    """
    rules: list[IgnoreRule] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        negated = line.startswith("!")
        body = line[1:] if negated else line
        try:
            compiled = GitIgnoreSpecPattern(body)
        except ValueError as e:
            logger.warning("ignore_pattern_invalid", base=base, pattern=line, error=str(e))
            continue
        if compiled.include is None:
            continue
        rules.append(IgnoreRule(base=base, pattern=body.strip(), negated=negated, compiled=compiled))
    return rules


def load_ignore_file(path: Path, base: str = "") -> list[IgnoreRule]:
    """Read and compile an ignore file, returning no rule when it cannot be read."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("ignore_file_unreadable", path=str(path), error=str(e))
        return []
    return parse_ignore_lines(text.splitlines(), base)


@dataclass(frozen=True)
class IgnoreRuleStack:
    """Ordered rules in scope for one directory, root-most first.

    Rules are evaluated root to leaf and the last matching rule decides, so
    rules declared closer to a path override the ones declared above it.
    """

    rules: tuple[IgnoreRule, ...] = ()

    def extend(self, rules: Iterable[IgnoreRule]) -> IgnoreRuleStack:
        extra = tuple(rules)
        if not extra:
            return self
        return IgnoreRuleStack(self.rules + extra)

    def is_ignored(self, rel: str, *, is_dir: bool = False) -> bool:
        """Whether `rel` is excluded by the rules in scope (last match wins)."""
        verdict = False
        for rule in self.rules:
            if rule.matches(rel, is_dir=is_dir):
                verdict = not rule.negated
        return verdict

    def could_reopen(self, rel_dir: str) -> bool:
        """Whether an ignored directory must still be descended for a negated path beneath it."""
        return any(rule.negated and rule.may_match_beneath(rel_dir) for rule in self.rules)

    def __len__(self) -> int:
        return len(self.rules)
