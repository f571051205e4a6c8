from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from code_digest import cli
from code_digest.settings import Settings


@pytest.mark.integration
def test_main_passes_layered_settings_to_the_pipeline(
    tmp_path: Path,
    mocker: MockerFixture,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    repo = tmp_path / "repo"
    file_path = repo / "src" / "app.py"
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text("print('hi')", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CODE_DIGEST_TOKEN_MODEL", "gpt-4o")

    spy = mocker.spy(cli, "generate_digest")
    output = tmp_path / "out.md"

    exit_code = cli.main(["--repo", str(repo), "--output", str(output), "--max-files", "5"])

    assert exit_code == 0
    assert output.exists()
    settings = spy.call_args.args[1]
    assert isinstance(settings, Settings)
    assert settings.token_model == "gpt-4o"
    assert settings.max_files == 5


@pytest.mark.integration
def test_main_reads_dotenv_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "a.py").write_text("a = 1\n", encoding="utf-8")
    (tmp_path / ".env").write_text("CODE_DIGEST_OUTPUT_FORMAT=json\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CODE_DIGEST_OUTPUT_FORMAT", raising=False)
    output = tmp_path / "digest.json"

    exit_code = cli.main(["--repo", str(repo), "--output", str(output)])

    assert exit_code == 0
    assert output.read_text(encoding="utf-8").lstrip().startswith("{")


@pytest.mark.integration
def test_main_writes_log_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "a.py").write_text("a = 1\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    log_file = tmp_path / "digest.log"

    exit_code = cli.main(["--repo", str(repo), "--output", str(tmp_path / "out.md"), "--log-file", str(log_file)])

    assert exit_code == 0
    assert "digest_generated" in log_file.read_text(encoding="utf-8")
