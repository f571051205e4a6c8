"""Traversal engine: enumerate candidate files under layered ignore rules and ceilings."""

from __future__ import annotations

import os
import stat
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, computed_field

from code_digest.config import FILTER_PRESETS, FileDescriptor, NodeKind, size_bucket
from code_digest.exceptions import ConfigurationError, RootPathError
from code_digest.file_manipulation import compile_globs, human_file_size, match_any_glob, normalize_globs
from code_digest.ignore_rules import IgnoreRule, IgnoreRuleStack, load_ignore_file
from code_digest.logging import logger
from code_digest.progress import emit, is_cancelled

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    import pathspec

    from code_digest.progress import CancellationToken, ProgressCallback
    from code_digest.settings import Settings

PROGRESS_EVERY = 100
APPROACHING_RATIO = 0.8


class DirectoryEntry(BaseModel):
    """One child of a directory listing, as seen by `lstat` (symlinks are not followed).

    `kind` is None for special files (sockets, FIFOs, devices); `error` is set
    when the entry could not be stat'd.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str
    path: Path
    kind: NodeKind | None = None
    size: int = 0
    mtime: float | None = None
    error: str | None = None


class DirectoryListingCache:
    """Process-lifetime cache of directory listings keyed by absolute path.

    Listings are immutable tuples sorted by name; callers may drop entries at any
    time with `discard` or `clear` (e.g. when a file watcher reports a change).
    """

    def __init__(self) -> None:
        self._entries: dict[Path, tuple[DirectoryEntry, ...]] = {}
        self._lock = threading.Lock()

    def listing(self, directory: Path) -> tuple[DirectoryEntry, ...]:
        """Return the entries of `directory`, reading the filesystem on a miss.

        Raises:
            OSError: if the directory cannot be listed.
        """
        key = Path(directory).absolute()
        with self._lock:
            cached = self._entries.get(key)
        if cached is not None:
            return cached
        entries = read_directory(key)
        with self._lock:
            self._entries[key] = entries
        return entries

    def discard(self, directory: Path) -> None:
        with self._lock:
            self._entries.pop(Path(directory).absolute(), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, directory: object) -> bool:
        if not isinstance(directory, (str, Path)):
            return False
        with self._lock:
            return Path(directory).absolute() in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def read_directory(directory: Path) -> tuple[DirectoryEntry, ...]:
    """List `directory` without following symlinks, sorted by entry name.

    Raises:
        OSError: if the directory itself cannot be listed.
    """
    entries: list[DirectoryEntry] = []
    with os.scandir(directory) as it:
        for de in it:
            path = directory / de.name
            try:
                st = de.stat(follow_symlinks=False)
            except OSError as e:
                entries.append(DirectoryEntry(name=de.name, path=path, error=str(e)))
                continue
            if stat.S_ISLNK(st.st_mode):
                kind: NodeKind | None = NodeKind.SYMLINK
            elif stat.S_ISDIR(st.st_mode):
                kind = NodeKind.DIRECTORY
            elif stat.S_ISREG(st.st_mode):
                kind = NodeKind.FILE
            else:
                kind = None
            entries.append(
                DirectoryEntry(name=de.name, path=path, kind=kind, size=st.st_size, mtime=st.st_mtime),
            )
    entries.sort(key=lambda e: e.name)
    return tuple(entries)


class TraversalStatistics(BaseModel):
    """Counters of one scan, frozen once the scan completes.

    Every examined candidate is either emitted or counted by exactly one skip
    counter, so `skipped_total == candidates_examined - total_files`.
    """

    model_config = ConfigDict(frozen=True)

    total_files: int = 0
    total_size: int = 0
    candidates_examined: int = 0
    skipped_by_size: int = 0
    skipped_by_total_limit: int = 0
    skipped_by_max_files: int = 0
    skipped_by_depth: int = 0
    skipped_by_ignore: int = 0
    directories: int = 0
    symlinks: int = 0
    warnings: tuple[str, ...] = ()
    duration_ms: float = 0.0
    cancelled: bool = False
    extension_counts: dict[str, int] = Field(default_factory=dict)
    language_counts: dict[str, int] = Field(default_factory=dict)
    size_buckets: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def skipped_total(self) -> int:
        return (
            self.skipped_by_size
            + self.skipped_by_total_limit
            + self.skipped_by_max_files
            + self.skipped_by_depth
            + self.skipped_by_ignore
        )

    @property
    def limited(self) -> bool:
        """Whether any limit (as opposed to an ignore rule) dropped a candidate."""
        return bool(
            self.skipped_by_size + self.skipped_by_total_limit + self.skipped_by_max_files + self.skipped_by_depth,
        )


def aggregate_statistics(descriptors: Iterable[FileDescriptor]) -> dict[str, dict[str, int]]:
    """Compute extension counts, language counts and size buckets in one pass.

    Args:
        descriptors (Iterable[FileDescriptor]): the emitted descriptors

    Returns:
        dict[str, dict[str, int]]: `extension_counts`, `language_counts` and `size_buckets`
    """
    extensions: Counter[str] = Counter()
    languages: Counter[str] = Counter()
    buckets: Counter[str] = Counter()
    for d in descriptors:
        extensions[d.extension or "(none)"] += 1
        languages[d.language or str(d.file_type)] += 1
        buckets[size_bucket(d.size)] += 1
    return {
        "extension_counts": dict(extensions),
        "language_counts": dict(languages),
        "size_buckets": dict(buckets),
    }


@dataclass(frozen=True)
class SelectionFilter:
    """Include / exclude globs, filter presets and virtual folders, applied after ignore rules.

    Exclusions win. When any include glob is configured a file must match one of
    them, and when virtual folders are active a file must also match one of the
    selected groups.
    """

    include: pathspec.PathSpec | None
    exclude: pathspec.PathSpec
    virtual: tuple[pathspec.PathSpec, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> SelectionFilter:
        """Compile the selection globs of `settings`.

        Raises:
            ConfigurationError: on unknown virtual folders or invalid globs.
        """
        includes: list[str] = []
        excludes: list[str] = list(settings.exclude_patterns)
        for pat in normalize_globs(settings.include_patterns):
            if pat.startswith("!"):
                excludes.append(pat[1:])
            else:
                includes.append(pat)
        for preset in settings.filter_presets:
            includes.extend(FILTER_PRESETS[preset]["include"])
            excludes.extend(FILTER_PRESETS[preset]["exclude"])

        unknown = sorted(set(settings.active_virtual_folders) - set(settings.virtual_folders))
        if unknown:
            raise ConfigurationError(
                message="Unknown virtual folder(s).",
                details=tuple(f"active_virtual_folders: {name!r} is not defined" for name in unknown),
            )
        try:
            include_spec = compile_globs(includes) if normalize_globs(includes) else None
            exclude_spec = compile_globs(excludes)
            virtual = tuple(compile_globs(settings.virtual_folders[name]) for name in settings.active_virtual_folders)
        except ValueError as e:
            raise ConfigurationError(message="Invalid glob pattern.", details=(str(e),)) from e
        return cls(include=include_spec, exclude=exclude_spec, virtual=virtual)

    def prunes_directory(self, rel: str) -> bool:
        return match_any_glob(rel, self.exclude, is_dir=True)

    def selects(self, rel: str) -> bool:
        if match_any_glob(rel, self.exclude):
            return False
        if self.include is not None and not match_any_glob(rel, self.include):
            return False
        return not self.virtual or any(match_any_glob(rel, spec) for spec in self.virtual)


@dataclass
class _ScanState:
    """Mutable accumulator of one scan; frozen into TraversalStatistics at the end."""

    settings: Settings
    progress: ProgressCallback | None = None
    cancel: CancellationToken | None = None
    files: list[FileDescriptor] = field(default_factory=list)
    total_size: int = 0
    candidates: int = 0
    skipped_by_size: int = 0
    skipped_by_total_limit: int = 0
    skipped_by_max_files: int = 0
    skipped_by_depth: int = 0
    skipped_by_ignore: int = 0
    directories: int = 0
    symlinks: int = 0
    cancelled: bool = False
    warnings: list[str] = field(default_factory=list)
    _warned: set[str] = field(default_factory=set)

    def warn_once(self, kind: str, message: str) -> None:
        if kind in self._warned:
            return
        self._warned.add(kind)
        self.warnings.append(message)
        logger.info("scan_limit_reached", kind=kind, detail=message)

    def check_cancelled(self) -> bool:
        if not self.cancelled and is_cancelled(self.cancel):
            self.cancelled = True
            self.warnings.append("Scan cancelled; results are partial.")
        return self.cancelled

    def freeze(self, duration_ms: float) -> TraversalStatistics:
        return TraversalStatistics(
            total_files=len(self.files),
            total_size=self.total_size,
            candidates_examined=self.candidates,
            skipped_by_size=self.skipped_by_size,
            skipped_by_total_limit=self.skipped_by_total_limit,
            skipped_by_max_files=self.skipped_by_max_files,
            skipped_by_depth=self.skipped_by_depth,
            skipped_by_ignore=self.skipped_by_ignore,
            directories=self.directories,
            symlinks=self.symlinks,
            warnings=tuple(self.warnings),
            duration_ms=duration_ms,
            cancelled=self.cancelled,
            **aggregate_statistics(self.files),
        )


def _load_rules(
    directory: Path,
    rel_dir: str,
    entries: Sequence[DirectoryEntry],
    settings: Settings,
) -> list[IgnoreRule]:
    if not settings.respect_gitignore:
        return []
    by_name = {e.name: e for e in entries}
    rules: list[IgnoreRule] = []
    for name in settings.gitignore_files:
        entry = by_name.get(name)
        if entry is not None and entry.kind is NodeKind.FILE:
            rules.extend(load_ignore_file(directory / name, rel_dir))
    return rules


def _consider_file(state: _ScanState, entry: DirectoryEntry, rel: str, depth: int) -> None:
    settings = state.settings
    if len(state.files) >= settings.max_files:
        state.skipped_by_max_files += 1
        state.warn_once(
            "max_files",
            f"File limit reached: only the first {settings.max_files} files were included.",
        )
        return
    if entry.size > settings.max_file_size:
        state.skipped_by_size += 1
        state.warn_once(
            "max_file_size",
            f"Files larger than {human_file_size(settings.max_file_size)} were skipped (first: {rel}).",
        )
        return
    if state.total_size + entry.size > settings.max_total_size_bytes:
        state.skipped_by_total_limit += 1
        state.warn_once(
            "max_total_size",
            f"Total size limit of {human_file_size(settings.max_total_size_bytes)} reached; "
            "remaining files were skipped.",
        )
        return

    is_link = entry.kind is NodeKind.SYMLINK
    state.files.append(
        FileDescriptor(
            path=entry.path,
            rel_path=rel,
            size=entry.size,
            kind=entry.kind or NodeKind.FILE,
            is_symlink=is_link,
            depth=depth,
            mtime=entry.mtime,
        ),
    )
    state.total_size += entry.size
    if is_link:
        state.symlinks += 1

    if state.total_size >= APPROACHING_RATIO * settings.max_total_size_bytes:
        state.warn_once(
            "approaching_total_size",
            f"Approaching total size limit: {human_file_size(state.total_size)} of "
            f"{human_file_size(settings.max_total_size_bytes)}.",
        )
    if len(state.files) >= APPROACHING_RATIO * settings.max_files:
        state.warn_once(
            "approaching_max_files",
            f"Approaching file limit: {len(state.files)} of {settings.max_files} files.",
        )
    if len(state.files) % PROGRESS_EVERY == 0:
        emit(state.progress, "scan", "progress", message=f"{len(state.files)} files found")


def _walk(  # noqa: C901, PLR0912
    state: _ScanState,
    directory: Path,
    rel_dir: str,
    depth: int,
    stack: IgnoreRuleStack,
    selection: SelectionFilter,
    cache: DirectoryListingCache,
) -> None:
    settings = state.settings
    try:
        entries = cache.listing(directory)
    except OSError as e:
        state.warnings.append(f"Cannot read directory {rel_dir or '.'}: {e}")
        logger.warning("directory_unreadable", path=str(directory), error=str(e))
        return

    stack = stack.extend(_load_rules(directory, rel_dir, entries, settings))

    for entry in entries:
        if state.check_cancelled():
            return
        rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
        if entry.error is not None:
            state.warnings.append(f"Cannot stat {rel}: {entry.error}")
            continue
        if entry.kind is None:
            logger.debug("special_file_skipped", path=rel)
            continue

        if entry.kind is NodeKind.DIRECTORY:
            ignored = settings.respect_gitignore and stack.is_ignored(rel, is_dir=True)
            if selection.prunes_directory(rel) or (ignored and not stack.could_reopen(rel)):
                state.candidates += 1
                state.skipped_by_ignore += 1
                continue
            if depth + 1 > settings.max_directory_depth:
                state.candidates += 1
                state.skipped_by_depth += 1
                state.warn_once(
                    "max_depth",
                    f"Directories deeper than {settings.max_directory_depth} levels were skipped (first: {rel}).",
                )
                continue
            state.directories += 1
            _walk(state, entry.path, rel, depth + 1, stack, selection, cache)
            continue

        state.candidates += 1
        if settings.respect_gitignore and stack.is_ignored(rel):
            state.skipped_by_ignore += 1
            continue
        if not selection.selects(rel):
            state.skipped_by_ignore += 1
            continue
        _consider_file(state, entry, rel, depth)


def scan(
    root: Path,
    settings: Settings,
    *,
    cache: DirectoryListingCache | None = None,
    progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
) -> tuple[list[FileDescriptor], TraversalStatistics]:
    """Walk `root` depth-first and return the emitted descriptors with the scan statistics.

    Entries are visited in name order. Descriptors are emitted until `max_files`
    is reached; every later candidate is still counted. Symlinks are reported
    but never followed.

    Args:
        root (Path): directory to scan
        settings (Settings): the run configuration
        cache (DirectoryListingCache | None): listing cache shared across scans
        progress (ProgressCallback | None): receives `scan` progress events
        cancel (CancellationToken | None): checked between entries

    Returns:
        tuple[list[FileDescriptor], TraversalStatistics]: descriptors in traversal order and the counters

    Raises:
        RootPathError: if `root` is missing or not a readable directory.
        ConfigurationError: if the selection globs are invalid.
    """
    root = Path(root)
    if not root.is_dir():
        raise RootPathError(root=root)
    root = root.resolve()
    selection = SelectionFilter.from_settings(settings)
    cache = cache if cache is not None else DirectoryListingCache()
    try:
        cache.listing(root)
    except OSError as e:
        raise RootPathError(root=root) from e

    state = _ScanState(settings=settings, progress=progress, cancel=cancel)
    emit(progress, "scan", "start", message=f"Scanning {root}")
    started = time.perf_counter()
    _walk(state, root, "", 0, IgnoreRuleStack(), selection, cache)
    statistics = state.freeze((time.perf_counter() - started) * 1000)
    emit(progress, "scan", "end", message=f"{statistics.total_files} files found", percent=100)
    logger.info(
        "scan_complete",
        root=str(root),
        files=statistics.total_files,
        total_size=statistics.total_size,
        skipped=statistics.skipped_total,
        cancelled=statistics.cancelled,
    )
    return state.files, statistics
