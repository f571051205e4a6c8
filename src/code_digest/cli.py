"""
code_digest: turn a source tree into one bounded, LLM-ready digest.

Overview
--------
The command walks a directory under layered ignore rules (`.gitignore`,
`.digestignore`) and size / count ceilings, classifies and normalizes each
file (text, binary, notebook), masks secret-like values, estimates tokens and
prints a text, markdown or JSON digest.

Configuration is layered: an optional YAML file (`--config`), then
`CODE_DIGEST_*` environment variables (a `.env` file is honored), then the
command line options.

Usage
-----
Run `code-digest --help` for full options. Common examples:
    - Markdown digest of the current directory to stdout:
        code-digest
    - Python sources only, as JSON:
        code-digest --repo . --include-glob "**/*.py" --format json --output digest.json
    - Code preset with a minimal tree, logging to a file:
        code-digest --preset codeOnly --tree minimal --output out.md --log-file digest.log
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from code_digest import __version__
from code_digest.config import BinaryPolicy, FilterPreset, OutputFormat, TreeMode
from code_digest.exceptions import CodeDigestError
from code_digest.logging import logger, setup_logging
from code_digest.pipeline import generate_digest
from code_digest.settings import load_settings

if TYPE_CHECKING:
    from collections.abc import Sequence

    from code_digest.settings import Settings


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="code-digest",
        description="Export a source tree as a single digest for LLM consumption (text/markdown/json).",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--repo", type=str, default=".", help="Directory to digest.")
    p.add_argument("--output", type=str, default="", help="Output file (stdout when omitted).")
    p.add_argument("--config", type=str, default="", help="YAML configuration file.")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument(
        "--format",
        type=str,
        choices=[f.value for f in OutputFormat],
        default=None,
        help="Digest shape.",
    )

    p.add_argument("--max-files", type=int, default=None, help="Maximum number of files.")
    p.add_argument("--max-file-size", type=int, default=None, help="Files above (bytes) are skipped.")
    p.add_argument("--max-total-size", type=int, default=None, help="Maximum cumulated size (bytes).")
    p.add_argument("--max-depth", type=int, default=None, help="Maximum directory depth.")

    p.add_argument(
        "--include-glob",
        action="append",
        default=[],
        help="Include glob (repeatable, '!glob' excludes).",
    )
    p.add_argument(
        "--exclude-glob",
        action="append",
        default=[],
        help="Exclude glob (repeatable, added to the configured excludes).",
    )
    p.add_argument(
        "--preset",
        action="append",
        default=[],
        choices=[f.value for f in FilterPreset],
        help="Filter preset (repeatable).",
    )
    p.add_argument(
        "--virtual-folder",
        action="append",
        default=[],
        help="Restrict to a configured virtual folder (repeatable).",
    )
    p.add_argument("--no-gitignore", action="store_true", help="Do not honor ignore files.")

    p.add_argument(
        "--binary-policy",
        type=str,
        choices=[*(b.value for b in BinaryPolicy), "include"],
        default=None,
        help="Binary file handling.",
    )
    p.add_argument(
        "--tree",
        type=str,
        choices=[t.value for t in TreeMode],
        default=None,
        help="Directory tree rendering.",
    )
    p.add_argument("--no-summary", action="store_true", help="Omit the summary block.")
    p.add_argument("--token-model", type=str, default=None, help="Token model used for estimates.")
    p.add_argument("--token-limit", type=int, default=None, help="Warn above this token estimate.")
    p.add_argument("--separator", type=str, default=None, help="Chunk separator.")
    p.add_argument("--show-redacted", action="store_true", help="Disable secret redaction.")
    return p.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    """Layer the command line options over the configuration file and environment."""
    overrides: dict[str, Any] = {
        "output_format": args.format,
        "max_files": args.max_files,
        "max_file_size": args.max_file_size,
        "max_total_size_bytes": args.max_total_size,
        "max_directory_depth": args.max_depth,
        "binary_policy": args.binary_policy,
        "include_tree": args.tree,
        "token_model": args.token_model,
        "token_limit": args.token_limit,
        "output_separator": args.separator,
    }
    if args.include_glob:
        overrides["include_patterns"] = list(args.include_glob)
    if args.preset:
        overrides["filter_presets"] = list(args.preset)
    if args.virtual_folder:
        overrides["active_virtual_folders"] = list(args.virtual_folder)
    if args.no_gitignore:
        overrides["respect_gitignore"] = False
    if args.no_summary:
        overrides["include_summary"] = False
    if args.show_redacted:
        overrides["show_redacted"] = True

    config_file = Path(args.config) if args.config else None
    settings = load_settings(config_file, **overrides)
    if args.exclude_glob:
        settings = settings.model_copy(update={"exclude_patterns": [*settings.exclude_patterns, *args.exclude_glob]})
    return settings


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.log_file:
        setup_logging(args.log_file)

    try:
        settings = build_settings(args)
        run = generate_digest(Path(args.repo), settings)
    except CodeDigestError as e:
        logger.error("digest_failed", error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1

    artifact = run.artifact
    if args.output:
        out_path = Path(args.output)
        out_path.write_text(artifact.content, encoding="utf-8")
        target = str(out_path)
    else:
        sys.stdout.write(artifact.content)
        if not artifact.content.endswith("\n"):
            sys.stdout.write("\n")
        target = "stdout"

    print(
        f"Wrote {target} format={artifact.output_format} files={artifact.file_count} "
        f"tokens={artifact.token_estimate} truncated={str(run.truncated).lower()}",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
