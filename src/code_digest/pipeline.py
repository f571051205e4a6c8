"""End-to-end digest generation: scan, extract concurrently, assemble."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from code_digest.config import NodeKind
from code_digest.content import ContentResult, extract_content
from code_digest.exceptions import RootPathError
from code_digest.logging import logger
from code_digest.output_construction import assemble
from code_digest.progress import emit, is_cancelled
from code_digest.redaction import Redactor
from code_digest.traversal import TraversalStatistics, aggregate_statistics, scan

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from code_digest.config import FileDescriptor
    from code_digest.output_construction import DigestArtifact
    from code_digest.progress import CancellationToken, ProgressCallback
    from code_digest.settings import Settings
    from code_digest.traversal import DirectoryListingCache

SYMLINK_BODY = "[symlink not followed]"


@dataclass(frozen=True)
class DigestRun:
    """Result of `generate_digest`.

    `truncated` is true when a limit dropped files or the run was cancelled, so
    a caller can tell a partial digest from a complete one.
    """

    artifact: DigestArtifact
    statistics: TraversalStatistics
    cancelled: bool = False
    truncated: bool = False


def _extract_one(
    desc: FileDescriptor,
    settings: Settings,
    redactor: Redactor,
    cancel: CancellationToken | None,
) -> ContentResult | None:
    if is_cancelled(cancel):
        return None
    if desc.kind == NodeKind.SYMLINK:
        return ContentResult(text=SYMLINK_BODY)
    return extract_content(desc.path, desc.extension, settings, redactor=redactor)


def extract_all(
    files: Sequence[FileDescriptor],
    settings: Settings,
    *,
    progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
) -> dict[str, ContentResult]:
    """Extract every file with a thread pool bounded by `concurrent_file_reads`.

    Files whose task starts after cancellation are left out of the result.

    Returns:
        dict[str, ContentResult]: results keyed by `rel_path`
    """
    redactor = Redactor.from_settings(settings)
    results: dict[str, ContentResult] = {}
    total = len(files)
    emit(progress, "extract", "start", message=f"Reading {total} files", percent=0)
    with ThreadPoolExecutor(max_workers=settings.concurrent_file_reads) as pool:
        futures = {pool.submit(_extract_one, d, settings, redactor, cancel): d for d in files}
        for done, fut in enumerate(as_completed(futures), start=1):
            desc = futures[fut]
            result = fut.result()
            if result is not None:
                results[desc.rel_path] = result
            if total:
                emit(progress, "extract", "progress", message=desc.rel_path, percent=done * 100 / total)
    emit(progress, "extract", "end", message=f"{len(results)} files read", percent=100)
    return results


def _statistics_for(files: Sequence[FileDescriptor]) -> TraversalStatistics:
    return TraversalStatistics(
        total_files=len(files),
        total_size=sum(d.size for d in files),
        candidates_examined=len(files),
        symlinks=sum(1 for d in files if d.kind == NodeKind.SYMLINK),
        **aggregate_statistics(files),
    )


def generate_digest(
    root: Path,
    settings: Settings,
    *,
    scanned_files: Sequence[FileDescriptor] | None = None,
    cache: DirectoryListingCache | None = None,
    progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
    source: Mapping[str, Any] | None = None,
) -> DigestRun:
    """Produce a digest of `root`.

    The tree is scanned unless the caller passes its own selection in
    `scanned_files`. Files are sorted by `rel_path`, read concurrently and
    assembled in that order. Nothing is written to disk.

    Args:
        root (Path): the directory to digest
        settings (Settings): the run configuration
        scanned_files (Sequence[FileDescriptor] | None): a pre-computed selection
        cache (DirectoryListingCache | None): listing cache shared across runs
        progress (ProgressCallback | None): receives `scan` and `extract` events
        cancel (CancellationToken | None): cooperative cancellation
        source (Mapping[str, Any] | None): descriptive metadata shown in the summary

    Returns:
        DigestRun: the artifact, the scan statistics and the cancelled / truncated flags

    Raises:
        RootPathError: if `root` is not a readable directory.
        ConfigurationError: if the selection settings are invalid.
    """
    root = Path(root)
    if not root.is_dir():
        raise RootPathError(root=root)

    if scanned_files is None:
        files, statistics = scan(root, settings, cache=cache, progress=progress, cancel=cancel)
    else:
        files, statistics = list(scanned_files), _statistics_for(scanned_files)
    files = sorted(files, key=lambda d: d.rel_path)

    contents = {} if is_cancelled(cancel) else extract_all(files, settings, progress=progress, cancel=cancel)
    cancelled = statistics.cancelled or is_cancelled(cancel)

    artifact = assemble(
        files,
        contents,
        settings,
        scanned=files,
        statistics=statistics,
        source=source,
        root_name=root.resolve().name or str(root),
    )
    truncated = cancelled or statistics.limited or artifact.file_count < len(files)
    logger.info(
        "digest_generated",
        root=str(root),
        files=artifact.file_count,
        tokens=artifact.token_estimate,
        errors=len(artifact.errors),
        cancelled=cancelled,
        truncated=truncated,
    )
    return DigestRun(artifact=artifact, statistics=statistics, cancelled=cancelled, truncated=truncated)
