"""Content classifier: read, sniff, normalize and redact one file."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

import code_digest.notebook  # noqa: F401  # registers the .ipynb processor
from code_digest.config import FILE_PROCESSOR, BinaryPolicy, OutputFormat
from code_digest.file_manipulation import (
    SNIFF_BYTES,
    human_file_size,
    iter_file_blocks,
    normalize_newlines,
    read_text_streaming,
    sniff_is_binary,
)
from code_digest.logging import logger
from code_digest.redaction import Redactor

if TYPE_CHECKING:
    from code_digest.settings import Settings

BINARY_SKIPPED = "[binary file skipped]"


class ContentResult(BaseModel):
    """Outcome of extracting one file.

    Attributes:
        text: the body to emit (possibly a placeholder).
        is_binary: the file was sniffed as binary.
        redaction_applied: at least one secret was masked.
        truncated: the file was larger than `max_file_size` when read.
        error: reading failure message, None on success.
        rendered: the body was produced by a structured processor and carries its own layout.
    """

    model_config = ConfigDict(frozen=True)

    text: str = Field(default="", description="Body")
    is_binary: bool = Field(default=False, description="Binary flag")
    redaction_applied: bool = Field(default=False, description="Secrets masked")
    truncated: bool = Field(default=False, description="Read stopped at max_file_size")
    error: str | None = Field(default=None, description="Read failure")
    rendered: bool = Field(default=False, description="Structured rendering")


def _binary_result(path: Path, size: int, settings: Settings) -> ContentResult:
    policy = settings.binary_policy
    if policy == BinaryPolicy.SKIP:
        return ContentResult(text=BINARY_SKIPPED, is_binary=True)
    if policy == BinaryPolicy.INCLUDE_PLACEHOLDER:
        return ContentResult(text=f"[binary file: {human_file_size(size)}]", is_binary=True)

    data = b"".join(iter_file_blocks(path, settings.read_chunk_size, settings.max_file_size))
    encoded = base64.b64encode(data).decode("ascii")
    if settings.output_format == OutputFormat.MARKDOWN:
        encoded = f"```{settings.base64_fence_language}\n{encoded}\n```"
    return ContentResult(text=encoded, is_binary=True, truncated=size > settings.max_file_size)


def _read_text(path: Path, size: int, settings: Settings) -> str:
    limit = settings.max_file_size
    if settings.use_streaming_read and size > settings.streaming_threshold_bytes:
        return read_text_streaming(path, settings.read_chunk_size, limit)
    with path.open("rb") as f:
        data = f.read(limit)
    return data.decode("utf-8", errors="replace")


def extract_content(
    file_path: Path,
    extension: str,
    settings: Settings,
    *,
    redactor: Redactor | None = None,
) -> ContentResult:
    """Read one file and turn it into a digest body.

    Never reads more than `max_file_size` bytes. Binary files follow
    `binary_policy`; text is decoded as UTF-8 (with replacement) and its line
    endings normalized; notebooks are rendered cell by cell. Secrets are masked
    unless `show_redacted`. Reading failures produce a placeholder body with
    `error` set instead of raising.

    Args:
        file_path (Path): the file to read
        extension (str): its lower-cased extension, e.g. ".py"
        settings (Settings): the run configuration
        redactor (Redactor | None): a prepared redactor, built from settings when omitted

    Returns:
        ContentResult: the classified body
    """
    path = Path(file_path)
    ext = (extension or path.suffix).lower()
    try:
        size = path.stat().st_size
        processor = FILE_PROCESSOR.get(ext)
        rendered = False
        if processor is not None and settings.notebook_process and size <= settings.max_file_size:
            try:
                text = processor(path, settings)
            except OSError:
                raise
            except Exception as e:  # noqa: BLE001
                logger.warning("file_processor_failed", path=str(path), extension=ext, error=str(e))
                return ContentResult(text=f"[error processing file: {e}]", error=str(e))
            rendered = True
        else:
            with path.open("rb") as f:
                sample = f.read(SNIFF_BYTES)
            if sniff_is_binary(sample):
                return _binary_result(path, size, settings)
            text = _read_text(path, size, settings)
    except OSError as e:
        logger.warning("file_extraction_failed", path=str(path), error=str(e))
        return ContentResult(text=f"[error reading file: {e}]", error=str(e))

    text = normalize_newlines(text)
    redactor = redactor if redactor is not None else Redactor.from_settings(settings)
    result = redactor.redact(text)
    return ContentResult(
        text=result.text,
        redaction_applied=result.applied,
        truncated=size > settings.max_file_size,
        rendered=rendered,
    )
