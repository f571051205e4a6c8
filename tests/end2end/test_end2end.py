import json
from pathlib import Path

import pytest

from code_digest import cli


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "demo"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("print('hello')\n", encoding="utf-8")
    (root / "README.md").write_text("# Demo\n\n```bash\nrun\n```\n", encoding="utf-8")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00")
    (root / ".env.example").write_text("password = 'Zx8Qw2Er7Ty1Ui9Op3As6Df'\n", encoding="utf-8")
    return root


def test_end_to_end_markdown_export(repo: Path, tmp_path: Path) -> None:
    output = tmp_path / "export.md"

    exit_code = cli.main(["--repo", str(repo), "--output", str(output)])

    assert exit_code == 0
    text = output.read_text(encoding="utf-8")
    assert text.startswith("# Code Digest\n")
    assert "```text\ndemo\n" in text
    assert "==== src/app.py (15 B) ====\n```python\nprint('hello')\n```" in text
    assert "# Demo\n\n```bash\nrun\n```" in text
    assert "[binary file skipped]" in text
    assert "Zx8Qw2Er7Ty1Ui9Op3As6Df" not in text


def test_end_to_end_json_export(repo: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output = tmp_path / "export.json"

    exit_code = cli.main(
        [
            "--repo",
            str(repo),
            "--output",
            str(output),
            "--format",
            "json",
            "--binary-policy",
            "includePlaceholder",
            "--tree",
            "none",
        ],
    )

    assert exit_code == 0
    doc = json.loads(output.read_text(encoding="utf-8"))
    assert [f["path"] for f in doc["files"]] == [".env.example", "README.md", "logo.png", "src/app.py"]
    by_path = {f["path"]: f for f in doc["files"]}
    assert by_path["logo.png"]["is_binary"] is True
    assert by_path["logo.png"]["content"] == "[binary file: 10 B]"
    assert by_path[".env.example"]["redacted"] is True
    assert doc["tree"] is None
    assert doc["summary"]["files"] == 4
    assert f"Wrote {output} format=json files=4" in capsys.readouterr().err


def test_end_to_end_text_export_with_limits(repo: Path, tmp_path: Path) -> None:
    output = tmp_path / "export.txt"

    exit_code = cli.main(
        [
            "--repo",
            str(repo),
            "--output",
            str(output),
            "--format",
            "text",
            "--preset",
            "codeOnly",
            "--no-summary",
            "--tree",
            "minimal",
        ],
    )

    assert exit_code == 0
    parts = output.read_text(encoding="utf-8").split("\n---\n")
    assert parts[0].splitlines() == ["demo", "└── src/", "    └── app.py"]
    assert parts[1] == "==== src/app.py (15 B) ====\nprint('hello')\n\n"
