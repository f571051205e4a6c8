from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from code_digest.config import (
    DEFAULT_EXCLUDES,
    DEFAULT_IGNORE_FILES,
    BinaryPolicy,
    FilterPreset,
    OutputFormat,
    TreeMode,
)
from code_digest.exceptions import ConfigurationError

ENV_PREFIX = "CODE_DIGEST_"
DEFAULT_REDACTION_KEYWORDS = ["secret", "token", "key", "auth", "bearer", "password", "apikey"]


class Settings(BaseModel):
    """Flat configuration of one digest run.

    Supplied whole per run and never mutated by the pipeline.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_files: int = Field(default=25_000, ge=1, description="Maximum number of emitted files.")
    max_total_size_bytes: int = Field(
        default=536_870_912,
        ge=0,
        description="Maximum cumulated size of emitted files.",
    )
    max_file_size: int = Field(default=10_485_760, ge=0, description="Files above are skipped unread.")
    max_directory_depth: int = Field(default=20, ge=0, description="Deepest directory level descended into.")

    binary_policy: BinaryPolicy = Field(default=BinaryPolicy.SKIP, description="Binary file handling.")
    base64_fence_language: str = Field(default="base64", description="Fence label for base64 payloads.")
    output_format: OutputFormat = Field(default=OutputFormat.MARKDOWN, description="Digest shape.")

    token_model: str = Field(default="chars-approx", description="Token cost model.")
    token_divisor_overrides: dict[str, float] = Field(
        default_factory=dict,
        description="Divisor per model name or per extension ('.py').",
    )
    comment_weight: float = Field(default=1.0, ge=0, description="Relative weight of comment spans.")
    token_limit: int | None = Field(default=None, ge=0, description="Context limit used for warnings.")

    redaction_patterns: list[str] = Field(default_factory=list, description="Extra secret patterns.")
    redaction_placeholder: str = Field(default="[REDACTED]", min_length=1, description="Replacement text.")
    show_redacted: bool = Field(default=False, description="Disable redaction.")
    redaction_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REDACTION_KEYWORDS),
        description="Keywords that arm the high-entropy detector on a line.",
    )
    redaction_entropy_threshold: float = Field(default=3.5, ge=0, description="Shannon entropy threshold.")

    include_patterns: list[str] = Field(default_factory=list, description="Include globs.")
    exclude_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDES),
        description="Exclude globs.",
    )
    filter_presets: list[FilterPreset] = Field(default_factory=list, description="Named glob bundles.")
    respect_gitignore: bool = Field(default=True, description="Honor nested ignore files.")
    gitignore_files: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORE_FILES),
        description="Ignore file names loaded in every directory.",
    )
    virtual_folders: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Named glob groups.",
    )
    active_virtual_folders: list[str] = Field(
        default_factory=list,
        description="Virtual folders restricting the selection.",
    )

    output_separator: str = Field(default="\n---\n", min_length=1, description="Chunk separator.")
    output_header_template: str = Field(
        default="==== <relPath> (<size>) ====",
        description="Per-file header; tokens <relPath>, <size>, <modified>.",
    )
    include_tree: TreeMode = Field(default=TreeMode.FULL, description="Tree rendering mode.")
    max_selected_tree_lines: int = Field(default=100, ge=1, description="Line cap of the minimal tree.")
    include_summary: bool = Field(default=True, description="Emit the summary block.")

    use_streaming_read: bool = Field(default=True, description="Stream large files in blocks.")
    streaming_threshold_bytes: int = Field(default=1_048_576, ge=0, description="Streaming threshold.")
    read_chunk_size: int = Field(default=65_536, ge=1, description="Block size of streaming reads.")
    concurrent_file_reads: int = Field(default=8, ge=1, description="Bounded read pool size.")

    notebook_process: bool = Field(default=True, description="Render .ipynb cells.")
    notebook_include_code_cells: bool = Field(default=True, description="Render code cells.")
    notebook_include_markdown_cells: bool = Field(default=True, description="Render markdown cells.")
    notebook_include_outputs: bool = Field(default=True, description="Render code cell outputs.")
    notebook_output_max_chars: int = Field(default=10_000, ge=0, description="Cap per text output.")
    notebook_code_fence_language: str = Field(default="python", description="Fence label of code cells.")
    notebook_include_non_text_outputs: bool = Field(default=False, description="Keep images / HTML.")
    notebook_non_text_output_max_bytes: int = Field(default=200_000, ge=0, description="Cap per non-text output.")

    @field_validator("binary_policy", mode="before")
    @classmethod
    def _legacy_binary_alias(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, str) and value.strip().lower() == "include":
            return BinaryPolicy.INCLUDE_PLACEHOLDER
        return value

    @field_validator("redaction_patterns", mode="before")
    @classmethod
    def _split_pattern_string(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, str):
            return [p.strip() for p in value.replace("\r\n", "\n").replace(",", "\n").split("\n") if p.strip()]
        return value

    @field_validator("token_divisor_overrides")
    @classmethod
    def _positive_divisors(cls, value: dict[str, float]) -> dict[str, float]:
        bad = sorted(k for k, v in value.items() if v <= 0)
        if bad:
            msg = f"token divisors must be positive: {', '.join(bad)}"
            raise ValueError(msg)
        return value

    @classmethod
    def build(cls, **values: Any) -> Settings:  # noqa: ANN401
        """Validate `values` into Settings, raising ConfigurationError on failure."""
        try:
            return cls(**values)
        except ValidationError as e:
            details = tuple(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(details=details) from e


def _coerce_env_value(raw: str) -> Any:  # noqa: ANN401
    text = raw.strip()
    if text[:1] in {"[", "{"}:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text


def read_env_overrides(environ: dict[str, str] | None = None, *, use_dotenv: bool = True) -> dict[str, Any]:
    """Collect `CODE_DIGEST_*` options from a `.env` file and the process environment.

    The process environment wins over the `.env` file. List and dict options are
    given as JSON (e.g. `CODE_DIGEST_INCLUDE_PATTERNS='["src/**"]'`).

    Args:
        environ: Environment mapping; defaults to `os.environ`.
        use_dotenv: Whether to read the nearest `.env` file as well.

    Returns:
        dict[str, Any]: option name to raw value, only for recognized options.
    """
    merged: dict[str, str] = {}
    if use_dotenv:
        env_file = find_dotenv(usecwd=True)
        if env_file:
            merged.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    merged.update(os.environ if environ is None else environ)

    known = set(Settings.model_fields)
    out: dict[str, Any] = {}
    for key, raw in merged.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX) :].lower()
        if name in known:
            out[name] = _coerce_env_value(raw)
    return out


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML configuration file into a mapping of options.

    Raises:
        ConfigurationError: if the file is unreadable or is not a YAML mapping.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(message=f"Cannot read configuration file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(message=f"Configuration file {path} must contain a mapping.")
    return data


def load_settings(
    config_file: Path | None = None,
    *,
    environ: dict[str, str] | None = None,
    use_dotenv: bool = True,
    **overrides: Any,  # noqa: ANN401
) -> Settings:
    """Layer configuration file, environment and explicit overrides into Settings.

    Precedence, lowest first: defaults, YAML file, `.env` / environment,
    explicit keyword overrides (None values are ignored).

    Raises:
        ConfigurationError: on unreadable files or invalid values.
    """
    values: dict[str, Any] = {}
    if config_file is not None:
        values.update(read_config_file(config_file))
    values.update(read_env_overrides(environ, use_dotenv=use_dotenv))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings.build(**values)
