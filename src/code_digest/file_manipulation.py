from __future__ import annotations

import codecs
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pathspec
from pathspec.patterns.gitignore.spec import GitIgnoreSpecPattern

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

SNIFF_BYTES = 8192
NON_TEXT_RATIO = 0.3
_TEXT_CONTROL_BYTES = {9, 10, 12, 13, 27}


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Normalize a sequence of glob patterns by stripping whitespace and
    replacing backslashes with forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def compile_globs(globs: Sequence[str]) -> pathspec.PathSpec:
    """Compile glob patterns with gitignore wildcard semantics.

    `**/*.py` matches at any depth (root included), `src/*.py` is anchored,
    `*.log` matches a basename anywhere.
    """
    return pathspec.PathSpec.from_lines(GitIgnoreSpecPattern, normalize_globs(globs))


def match_any_glob(rel: str, spec: pathspec.PathSpec, *, is_dir: bool = False) -> bool:
    """Check if a relative path matches a compiled glob set.

    Directories are tested both bare and with a trailing slash so that
    `build/` and `node_modules/**` prune the directory itself.

    Args:
        rel (str): the relative path to check
        spec (pathspec.PathSpec): the compiled patterns
        is_dir (bool): whether `rel` names a directory

    Returns:
        bool: True if `rel` matches any pattern, False otherwise
    """
    if spec.match_file(rel):
        return True
    return is_dir and spec.match_file(rel.rstrip("/") + "/")


def sniff_is_binary(sample: bytes) -> bool:
    """Classify a leading byte sample as binary or text.

    A NUL byte means binary. Otherwise the sample is text when it decodes as
    UTF-8 (a multibyte sequence cut at the end of the sample is tolerated), and
    binary when more than 30% of its bytes are non-printable.

    Args:
        sample (bytes): the first bytes of a file

    Returns:
        bool: True if the sample looks binary
    """
    if not sample:
        return False
    if b"\x00" in sample:
        return True
    try:
        codecs.getincrementaldecoder("utf-8")().decode(sample, final=False)
    except UnicodeDecodeError:
        pass
    else:
        return False
    non_text = sum(1 for b in sample if not (32 <= b <= 126 or b in _TEXT_CONTROL_BYTES))  # noqa: PLR2004
    return non_text / len(sample) > NON_TEXT_RATIO


def iter_file_blocks(path: Path, chunk_size: int, limit: int | None = None) -> Iterator[bytes]:
    """Yield the bytes of a file in blocks of at most `chunk_size`.

    Reading stops after `limit` bytes when a limit is given, which bounds peak
    memory and the number of bytes processed per file.
    """
    remaining = limit
    with path.open("rb") as f:
        while remaining is None or remaining > 0:
            want = chunk_size if remaining is None else min(chunk_size, remaining)
            blk = f.read(want)
            if not blk:
                return
            if remaining is not None:
                remaining -= len(blk)
            yield blk


def read_text_streaming(path: Path, chunk_size: int, limit: int | None = None) -> str:
    """Decode a file as UTF-8 block by block, with replacement of invalid bytes."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    parts = [decoder.decode(blk) for blk in iter_file_blocks(path, chunk_size, limit)]
    parts.append(decoder.decode(b"", final=True))
    return "".join(parts)


def normalize_newlines(text: str) -> str:
    r"""Normalize `\r\n` and lone `\r` line endings to `\n`."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def human_file_size(size: int) -> str:
    """Format a byte count as a short human readable string (e.g. `12.3 KB`).

    Args:
        size (int): number of bytes

    Returns:
        str: the formatted size
    """
    if size < 1024:  # noqa: PLR2004
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB", "TB"):
        value /= 1024
        if value < 1024 or unit == "TB":  # noqa: PLR2004
            return f"{value:.1f} {unit}"
    return f"{value:.1f} TB"


def now_iso() -> str:
    """Return the current date and time in ISO 8601 format with timezone.

    Returns:
        str: the current date and time in ISO 8601 format with timezone
    """
    return datetime.now(UTC).astimezone().isoformat(timespec="seconds")


def format_mtime(mtime: float | None) -> str:
    """Format a POSIX mtime the way headers display it (empty when unknown)."""
    if mtime is None:
        return ""
    return datetime.fromtimestamp(mtime, UTC).astimezone().isoformat(timespec="seconds")


def build_tree_lines(root_name: str, rel_paths: Sequence[str], *, compact: bool = False) -> list[str]:
    """Build a visual tree representation of file paths.

    Args:
        root_name (str): the name to use for the root of the tree
        rel_paths (Sequence[str]): the list of file paths relative to the root, using POSIX separators (e.g. "src/main.py")
        compact (bool): merge straight runs of single-child directories into one line (e.g. "a/b/c/")

    Returns:
        list[str]: a list of strings representing the tree structure, suitable for printing
    """
    rels = sorted(
        {p.strip("/").replace("\\", "/") for p in rel_paths if p.strip()},
        key=str.lower,
    )
    tree: dict[str, Any] = {}
    for rp in rels:
        cur = tree
        parts = rp.split("/")
        for i, part in enumerate(parts):
            if i == len(parts) - 1:
                cur.setdefault("__files__", set()).add(part)
            else:
                cur = cur.setdefault(part, {})

    lines: list[str] = [root_name]

    def collapse(name: str, node: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        while compact and not node.get("__files__"):
            subdirs = [k for k in node if k != "__files__"]
            if len(subdirs) != 1:
                break
            name = f"{name}/{subdirs[0]}"
            node = node[subdirs[0]]
        return name, node

    def walk(node: dict[str, Any], prefix: str) -> None:
        dirs = sorted([k for k in node if k != "__files__"], key=str.lower)
        files = sorted(node.get("__files__", set()), key=str.lower)
        entries: list[tuple[str, str, Any]] = []
        entries.extend(("dir", *collapse(d, node[d])) for d in dirs)
        entries.extend(("file", f, None) for f in files)
        for idx, (kind, name, child) in enumerate(entries):
            last = idx == len(entries) - 1
            branch = "└── " if last else "├── "
            lines.append(prefix + branch + name + ("/" if kind == "dir" else ""))
            if kind == "dir":
                ext = "    " if last else "│   "
                walk(child, prefix + ext)

    walk(tree, "")
    return lines
