"""Rendering of Jupyter notebooks (`.ipynb`) into readable digest bodies."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from code_digest.config import OutputFormat, register_file_processor
from code_digest.logging import logger

if TYPE_CHECKING:
    from pathlib import Path

    from code_digest.settings import Settings

TRUNCATION_MARK = "\n...[truncated]"
NON_TEXT_OMITTED = "[non-text output omitted]"
NON_TEXT_TOO_LARGE = "[non-text output too large, omitted]"


@dataclass(frozen=True)
class NotebookOutput:
    """One cell output: `kind` is "text", "image" or "html"."""

    kind: str
    text: str
    mime: str = ""


@dataclass(frozen=True)
class NotebookCell:
    cell_type: str
    source: str
    outputs: tuple[NotebookOutput, ...] = field(default_factory=tuple)


def _join(value: Any) -> str:  # noqa: ANN401
    if isinstance(value, list):
        return "".join(str(v) for v in value)
    if isinstance(value, str):
        return value
    return ""


def _parse_output(out: dict[str, Any], *, include_non_text: bool, max_bytes: int) -> NotebookOutput | None:
    kind = out.get("output_type")
    data = out.get("data") if isinstance(out.get("data"), dict) else None
    if kind == "stream" and out.get("text"):
        return NotebookOutput("text", _join(out["text"]))
    if kind == "execute_result" and data and data.get("text/plain"):
        return NotebookOutput("text", _join(data["text/plain"]))
    if kind == "error" and out.get("evalue"):
        return NotebookOutput("text", f"Error: {out['evalue']}")
    if data is None:
        return None
    if not include_non_text:
        return NotebookOutput("text", NON_TEXT_OMITTED)
    for mime, payload in data.items():
        body = _join(payload)
        if mime.startswith("image/") and body:
            if len(body) > max_bytes:
                return NotebookOutput("text", NON_TEXT_TOO_LARGE)
            return NotebookOutput("image", body, mime)
        if mime == "text/html":
            if len(body.encode("utf-8")) > max_bytes:
                return NotebookOutput("text", NON_TEXT_TOO_LARGE)
            return NotebookOutput("html", body, mime)
    return NotebookOutput("text", NON_TEXT_OMITTED)


def parse_notebook(raw: str, settings: Settings) -> list[NotebookCell]:
    """Parse notebook JSON into markdown and code cells, in document order.

    Malformed documents yield no cell.

    Args:
        raw (str): the notebook file content
        settings (Settings): notebook options (non-text outputs and their size cap)

    Returns:
        list[NotebookCell]: the parsed cells
    """
    try:
        nb = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("notebook_malformed", error=str(e))
        return []
    raw_cells = nb.get("cells") if isinstance(nb, dict) else None
    if not isinstance(raw_cells, list):
        return []

    cells: list[NotebookCell] = []
    for cell in raw_cells:
        if not isinstance(cell, dict):
            continue
        cell_type = cell.get("cell_type")
        source = _join(cell.get("source"))
        if cell_type == "markdown":
            cells.append(NotebookCell("markdown", source))
        elif cell_type == "code":
            raw_outputs = cell.get("outputs")
            if not isinstance(raw_outputs, list):
                raw_outputs = []
            outputs = []
            for out in raw_outputs:
                if not isinstance(out, dict):
                    continue
                parsed = _parse_output(
                    out,
                    include_non_text=settings.notebook_include_non_text_outputs,
                    max_bytes=settings.notebook_non_text_output_max_bytes,
                )
                if parsed is not None:
                    outputs.append(parsed)
            cells.append(NotebookCell("code", source, tuple(outputs)))
    return cells


def _cap(text: str, max_chars: int) -> str:
    if max_chars and len(text) > max_chars:
        return text[:max_chars] + TRUNCATION_MARK
    return text


def render_notebook(cells: list[NotebookCell], settings: Settings, title: str) -> str:
    """Render parsed cells as markdown (fenced code) or as plain text sections.

    Args:
        cells (list[NotebookCell]): parsed cells
        settings (Settings): notebook options and output format
        title (str): name shown in the notebook heading

    Returns:
        str: the rendered body
    """
    markdown = settings.output_format == OutputFormat.MARKDOWN
    parts: list[str] = [f"# Jupyter Notebook: {title}\n"]
    for num, cell in enumerate(cells, start=1):
        if cell.cell_type == "markdown":
            if not settings.notebook_include_markdown_cells:
                continue
            if markdown:
                parts.append(cell.source.strip() + "\n")
            else:
                parts.append("---\nMarkdown Cell:\n" + cell.source.strip() + "\n")
            continue

        if not settings.notebook_include_code_cells:
            continue
        if markdown:
            parts.append(f"\n```{settings.notebook_code_fence_language}\n{cell.source.strip()}\n```\n")
        else:
            parts.append(f"\n---\nCode Cell:\n{cell.source.strip()}\n")
        if not settings.notebook_include_outputs:
            continue
        for out in cell.outputs:
            if out.kind == "image":
                if markdown:
                    parts.append(f"\n```base64\n# Type: {out.mime}\n{out.text}\n```\n")
                else:
                    parts.append(f"\n---\nBase64 Output ({out.mime}):\n{out.text}\n")
                continue
            text = _cap(("[html]" + out.text) if out.kind == "html" else out.text, settings.notebook_output_max_chars)
            if markdown:
                commented = text.replace("\n", "\n# ")
                parts.append(f"\n# Outputs (Cell {num}):\n# {commented}\n")
            else:
                parts.append(f"\nOutputs (Cell {num}):\n{text}\n")
    return "".join(parts)


@register_file_processor(".ipynb")
def process_notebook(path: Path, settings: Settings) -> str:
    """Render a notebook file; reading errors propagate to the content classifier."""
    raw = path.read_text(encoding="utf-8", errors="replace")
    return render_notebook(parse_notebook(raw, settings), settings, path.name)
