from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from code_digest import __version__, cli
from code_digest.config import BinaryPolicy, FilterPreset, OutputFormat, TreeMode
from code_digest.exceptions import RootPathError

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("CODE_DIGEST_"):
            monkeypatch.delenv(key)


@pytest.mark.unit
def test_parse_args_parses_limits_and_filters() -> None:
    args = cli.parse_args(
        [
            "--format",
            "json",
            "--max-files",
            "10",
            "--include-glob",
            "src/**",
            "--include-glob",
            "!**/test_*.py",
            "--preset",
            "codeOnly",
            "--no-gitignore",
        ],
    )

    assert args.format == "json"
    assert args.max_files == 10
    assert args.include_glob == ["src/**", "!**/test_*.py"]
    assert args.preset == ["codeOnly"]
    assert args.no_gitignore is True
    assert args.output == ""


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    captured = capsys.readouterr()
    assert __version__ in captured.out


@pytest.mark.unit
def test_parse_args_rejects_unknown_format() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["--format", "yaml"])


@pytest.mark.unit
def test_build_settings_layers_options() -> None:
    args = cli.parse_args(
        [
            "--format",
            "text",
            "--max-file-size",
            "100",
            "--tree",
            "minimal",
            "--binary-policy",
            "include",
            "--preset",
            "docsOnly",
            "--no-summary",
            "--show-redacted",
        ],
    )

    settings = cli.build_settings(args)

    assert settings.output_format == OutputFormat.TEXT
    assert settings.max_file_size == 100
    assert settings.include_tree == TreeMode.MINIMAL
    assert settings.binary_policy == BinaryPolicy.INCLUDE_PLACEHOLDER
    assert settings.filter_presets == [FilterPreset.DOCS_ONLY]
    assert settings.include_summary is False
    assert settings.show_redacted is True
    assert settings.max_files == 25_000


@pytest.mark.unit
def test_build_settings_appends_exclude_globs() -> None:
    settings = cli.build_settings(cli.parse_args(["--exclude-glob", "*.tmp"]))

    assert settings.exclude_patterns[-1] == "*.tmp"
    assert len(settings.exclude_patterns) > 1


@pytest.mark.unit
def test_build_settings_reads_config_file(tmp_path: Path) -> None:
    config = tmp_path / "digest.yaml"
    config.write_text("max_files: 7\ntoken_model: gpt-4o\n", encoding="utf-8")

    settings = cli.build_settings(cli.parse_args(["--config", str(config), "--max-files", "9"]))

    assert settings.max_files == 9
    assert settings.token_model == "gpt-4o"


@pytest.mark.unit
def test_main_reports_missing_repo(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["--repo", str(tmp_path / "absent")])

    assert exit_code == 1
    assert "error:" in capsys.readouterr().err


@pytest.mark.unit
def test_main_reports_invalid_option_value(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["--repo", str(tmp_path), "--max-files", "0"])

    assert exit_code == 1
    assert "max_files" in capsys.readouterr().err


@pytest.mark.unit
def test_main_logs_failures(tmp_path: Path, mocker: MockerFixture) -> None:
    fake_logger = mocker.patch.object(cli, "logger")
    mocker.patch.object(cli, "generate_digest", side_effect=RootPathError(root=tmp_path))

    assert cli.main(["--repo", str(tmp_path)]) == 1
    fake_logger.error.assert_called_once()
    assert fake_logger.error.call_args.args[0] == "digest_failed"


@pytest.mark.unit
def test_main_writes_stdout_when_no_output(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "app.py").write_text("print('hi')\n", encoding="utf-8")

    exit_code = cli.main(["--repo", str(tmp_path), "--format", "text", "--no-summary", "--tree", "none"])

    captured = capsys.readouterr()
    assert exit_code == 0
    assert captured.out.startswith("==== app.py (12 B) ====\nprint('hi')\n")
    assert "Wrote stdout format=text files=1" in captured.err
