from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from code_digest.config import FileType, NodeKind, OutputFormat, TreeMode
from code_digest.file_manipulation import build_tree_lines, format_mtime, human_file_size, now_iso
from code_digest.tokens import estimate_tokens, format_token_count, token_limit_warning

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from code_digest.config import FileDescriptor
    from code_digest.content import ContentResult
    from code_digest.settings import Settings
    from code_digest.traversal import TraversalStatistics

TREE_TRUNCATED = "... (truncated)"
_FENCE_LINE = re.compile(r"^\s*(`{3,}|~{3,})", re.MULTILINE)
_BACKTICK_RUN = re.compile(r"`{3,}")


class FileError(BaseModel):
    """A per-file extraction failure reported next to the digest."""

    model_config = ConfigDict(frozen=True)

    rel_path: str
    message: str


class DigestArtifact(BaseModel):
    """The assembled digest and everything a caller needs to report on it.

    `content` is the deliverable: the separator-joined text / markdown digest,
    or the pretty-printed JSON document. `chunks` are the per-file chunks of the
    text / markdown shapes and `payload` the structured object of the JSON shape.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    output_format: OutputFormat
    chunks: tuple[str, ...] = ()
    payload: dict[str, Any] | None = None
    summary: str = ""
    tree: str = ""
    token_estimate: int = 0
    file_count: int = 0
    total_size: int = 0
    warnings: tuple[str, ...] = ()
    errors: tuple[FileError, ...] = ()
    redaction_applied: bool = False
    generated_at: str = Field(default_factory=now_iso)


def build_file_header(desc: FileDescriptor, settings: Settings) -> str:
    """Render the per-file header from `output_header_template`.

    Tokens `<relPath>`, `<size>` and `<modified>` are substituted; symlinks get a
    ` [symlink]` suffix. The header always ends with exactly one newline.
    """
    header = (
        settings.output_header_template.replace("<relPath>", desc.rel_path)
        .replace("<size>", human_file_size(desc.size) if desc.size else "")
        .replace("<modified>", format_mtime(desc.mtime))
    )
    header = header.rstrip("\n")
    if desc.kind == NodeKind.SYMLINK:
        header += " [symlink]"
    return header + "\n"


def fence_body(body: str, desc: FileDescriptor, result: ContentResult) -> str:
    """Wrap a markdown body in a code fence labelled with the inferred language.

    Markdown files, binary payloads and bodies that are already fenced (or were
    rendered by a structured processor) are returned unchanged. A body that
    contains backtick fences of its own gets a longer outer fence.
    """
    if desc.file_type == FileType.MARKDOWN or result.is_binary or result.rendered:
        return body
    if body.lstrip().startswith(("```", "~~~")):
        return body
    fence = "```"
    if _FENCE_LINE.search(body):
        longest = max((len(m.group(0)) for m in _BACKTICK_RUN.finditer(body)), default=2)
        fence = "`" * max(4, longest + 1)
    closing = fence if body.endswith("\n") else "\n" + fence
    return f"{fence}{desc.language}\n{body}{closing}"


def render_tree(
    root_name: str,
    files: Sequence[FileDescriptor],
    scanned: Sequence[FileDescriptor],
    settings: Settings,
) -> str:
    """Render the tree selected by `include_tree` (empty string for `none`)."""
    if settings.include_tree == TreeMode.NONE:
        return ""

    def label(d: FileDescriptor) -> str:
        return d.rel_path + (" [symlink]" if d.kind == NodeKind.SYMLINK else "")

    if settings.include_tree == TreeMode.FULL:
        return "\n".join(build_tree_lines(root_name, [label(d) for d in scanned]))
    lines = build_tree_lines(root_name, [label(d) for d in files], compact=True)
    if len(lines) > settings.max_selected_tree_lines:
        lines = [*lines[: settings.max_selected_tree_lines], TREE_TRUNCATED]
    return "\n".join(lines)


def build_summary(
    settings: Settings,
    *,
    file_count: int,
    total_size: int,
    token_estimate: int,
    generated_at: str,
    warnings: Sequence[str],
    statistics: TraversalStatistics | None = None,
    source: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Collect the summary facts of a digest as a JSON-serializable mapping."""
    summary: dict[str, Any] = {
        "files": file_count,
        "total_size": total_size,
        "total_size_human": human_file_size(total_size),
        "token_estimate": token_estimate,
        "token_model": settings.token_model,
        "generated_at": generated_at,
        "limits": {
            "max_files": settings.max_files,
            "max_total_size_bytes": settings.max_total_size_bytes,
            "max_file_size": settings.max_file_size,
            "max_directory_depth": settings.max_directory_depth,
        },
        "include_patterns": list(settings.include_patterns),
        "exclude_patterns": list(settings.exclude_patterns),
        "filter_presets": [str(p) for p in settings.filter_presets],
        "virtual_folders": list(settings.active_virtual_folders),
        "respect_gitignore": settings.respect_gitignore,
        "warnings": list(warnings),
    }
    if statistics is not None:
        summary["skipped"] = {
            "size": statistics.skipped_by_size,
            "total_limit": statistics.skipped_by_total_limit,
            "max_files": statistics.skipped_by_max_files,
            "depth": statistics.skipped_by_depth,
            "ignore": statistics.skipped_by_ignore,
        }
    if source:
        summary["source"] = dict(source)
    return summary


def render_summary(summary: Mapping[str, Any]) -> str:
    """Human readable rendition of `build_summary` output."""
    limits = summary["limits"]
    lines = ["# Code Digest"]
    if summary.get("source"):
        lines.append("Source: " + ", ".join(f"{k}={v}" for k, v in summary["source"].items()))
    lines.append(f"Files: {summary['files']}")
    lines.append(f"Total Size: {summary['total_size_human']}")
    lines.append(f"Tokens: {format_token_count(summary['token_estimate'])} ({summary['token_model']})")
    lines.append(f"Generated: {summary['generated_at']}")
    lines.append(
        f"Limits: MaxFiles={limits['max_files']}, "
        f"MaxTotalSize={human_file_size(limits['max_total_size_bytes'])}, "
        f"MaxFileSize={human_file_size(limits['max_file_size'])}, "
        f"MaxDirectoryDepth={limits['max_directory_depth']}",
    )
    if summary["include_patterns"]:
        lines.append(f"Include Patterns: {', '.join(summary['include_patterns'])}")
    if summary["exclude_patterns"]:
        line = f"Exclude Patterns: {', '.join(summary['exclude_patterns'])}"
        if summary["respect_gitignore"]:
            line += " (plus ignore files)"
        lines.append(line)
    if summary["filter_presets"]:
        lines.append(f"Presets: {', '.join(summary['filter_presets'])}")
    if summary["virtual_folders"]:
        lines.append(f"Virtual Folders: {', '.join(summary['virtual_folders'])}")
    skipped = summary.get("skipped")
    if skipped and any(skipped.values()):
        lines.append("Skipped: " + ", ".join(f"{k}={v}" for k, v in skipped.items() if v))
    if summary["warnings"]:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"- {w}" for w in summary["warnings"])
    return "\n".join(lines)


def assemble(  # noqa: C901, PLR0913
    files: Sequence[FileDescriptor],
    contents: Mapping[str, ContentResult],
    settings: Settings,
    *,
    scanned: Sequence[FileDescriptor] | None = None,
    statistics: TraversalStatistics | None = None,
    source: Mapping[str, Any] | None = None,
    root_name: str = ".",
) -> DigestArtifact:
    """Assemble per-file results into one digest.

    Chunks follow the order of `files`, whatever order the contents were
    produced in. Files without a result (e.g. a cancelled run) are left out and
    reported in the warnings, so the claimed file count is always the number
    of chunks actually assembled.

    Args:
        files (Sequence[FileDescriptor]): selected descriptors, in output order
        contents (Mapping[str, ContentResult]): extraction results keyed by `rel_path`
        settings (Settings): the run configuration
        scanned (Sequence[FileDescriptor] | None): every scanned descriptor, for the full tree
        statistics (TraversalStatistics | None): scan counters and warnings
        source (Mapping[str, Any] | None): descriptive metadata of the source (e.g. a remote repository)
        root_name (str): label of the tree root

    Returns:
        DigestArtifact: the assembled digest
    """
    generated_at = now_iso()
    warnings: list[str] = list(statistics.warnings) if statistics is not None else []
    fmt = settings.output_format

    included = [d for d in files if d.rel_path in contents]
    missing = [d.rel_path for d in files if d.rel_path not in contents]
    if missing:
        warnings.append(f"{len(missing)} selected file(s) were not processed and are missing from the digest.")

    chunks: list[str] = []
    entries: list[dict[str, Any]] = []
    errors: list[FileError] = []
    token_estimate = 0
    total_size = 0
    redacted = False
    for desc in included:
        result = contents[desc.rel_path]
        tokens = estimate_tokens(
            result.text,
            settings.token_model,
            settings.token_divisor_overrides,
            extension=desc.extension,
            comment_weight=settings.comment_weight,
        )
        token_estimate += tokens
        total_size += desc.size
        redacted = redacted or result.redaction_applied
        if result.error is not None:
            errors.append(FileError(rel_path=desc.rel_path, message=result.error))
        if result.truncated:
            warnings.append(f"{desc.rel_path} changed size after scanning and was truncated.")

        if fmt == OutputFormat.JSON:
            entries.append(
                {
                    "path": desc.rel_path,
                    "size": desc.size,
                    "kind": str(desc.kind),
                    "language": desc.language,
                    "modified": format_mtime(desc.mtime),
                    "is_binary": result.is_binary,
                    "truncated": result.truncated,
                    "redacted": result.redaction_applied,
                    "error": result.error,
                    "tokens": tokens,
                    "content": result.text,
                },
            )
            continue
        body = result.text
        if fmt == OutputFormat.MARKDOWN:
            body = fence_body(body, desc, result)
        chunks.append(build_file_header(desc, settings) + body + "\n")

    limit_warning = token_limit_warning(token_estimate, settings.token_limit)
    if limit_warning:
        warnings.append(limit_warning)

    file_count = len(entries) if fmt == OutputFormat.JSON else len(chunks)
    tree = render_tree(root_name, included, scanned if scanned is not None else files, settings)
    summary = build_summary(
        settings,
        file_count=file_count,
        total_size=total_size,
        token_estimate=token_estimate,
        generated_at=generated_at,
        warnings=warnings,
        statistics=statistics,
        source=source,
    )
    summary_text = render_summary(summary)

    payload: dict[str, Any] | None = None
    if fmt == OutputFormat.JSON:
        payload = {
            "summary": summary if settings.include_summary else None,
            "tree": tree or None,
            "files": entries,
            "warnings": warnings,
            "token_estimate": token_estimate,
        }
        content = json.dumps(payload, indent=2, ensure_ascii=False)
    else:
        parts: list[str] = []
        if settings.include_summary:
            parts.append(summary_text)
        if tree:
            parts.append(f"```text\n{tree}\n```" if fmt == OutputFormat.MARKDOWN else tree)
        parts.extend(chunks)
        content = settings.output_separator.join(parts)

    return DigestArtifact(
        content=content,
        output_format=fmt,
        chunks=tuple(chunks),
        payload=payload,
        summary=summary_text if settings.include_summary else "",
        tree=tree,
        token_estimate=token_estimate,
        file_count=file_count,
        total_size=total_size,
        warnings=tuple(warnings),
        errors=tuple(errors),
        redaction_applied=redacted,
        generated_at=generated_at,
    )
