from __future__ import annotations

import json
from pathlib import Path

import pytest

from code_digest.config import FileDescriptor, NodeKind
from code_digest.content import ContentResult
from code_digest.output_construction import (
    TREE_TRUNCATED,
    assemble,
    build_file_header,
    fence_body,
    render_tree,
)
from code_digest.settings import Settings
from code_digest.tokens import estimate_tokens

ROOT = Path("/repo")


def _desc(rel: str, size: int = 1, kind: NodeKind = NodeKind.FILE) -> FileDescriptor:
    return FileDescriptor(
        path=ROOT / rel,
        rel_path=rel,
        size=size,
        kind=kind,
        is_symlink=kind == NodeKind.SYMLINK,
        depth=rel.count("/"),
    )


@pytest.mark.unit
def test_header_substitutes_template_tokens() -> None:
    settings = Settings(output_header_template="## <relPath> [<size>] <modified>")

    header = build_file_header(_desc("src/a.py", size=2048), settings)

    assert header == "## src/a.py [2.0 KB] \n"


@pytest.mark.unit
def test_header_marks_symlinks_and_ends_with_one_newline() -> None:
    settings = Settings(output_header_template="==== <relPath> ====\n\n")

    header = build_file_header(_desc("link", size=0, kind=NodeKind.SYMLINK), settings)

    assert header == "==== link ==== [symlink]\n"


@pytest.mark.unit
def test_fence_body_uses_inferred_language() -> None:
    assert fence_body("x = 1", _desc("a.py"), ContentResult(text="x = 1")) == "```python\nx = 1\n```"


@pytest.mark.unit
def test_fence_body_leaves_markdown_binary_and_fenced_bodies_alone() -> None:
    fenced = "```json\n{}\n```"

    assert fence_body("# Title", _desc("README.md"), ContentResult(text="# Title")) == "# Title"
    assert fence_body("[binary]", _desc("a.bin"), ContentResult(text="[binary]", is_binary=True)) == "[binary]"
    assert fence_body(fenced, _desc("a.py"), ContentResult(text=fenced)) == fenced
    assert fence_body("nb", _desc("a.ipynb"), ContentResult(text="nb", rendered=True)) == "nb"


@pytest.mark.unit
def test_fence_body_outgrows_inner_fences() -> None:
    body = "doc\n```py\ncode\n```"

    fenced = fence_body(body, _desc("notes.py"), ContentResult(text=body))

    assert fenced == f"````python\n{body}\n````"


@pytest.mark.unit
def test_text_digest_splits_back_into_chunks_in_file_order() -> None:
    files = [_desc("b.py"), _desc("a.py")]
    contents = {"a.py": ContentResult(text="A"), "b.py": ContentResult(text="B")}
    settings = Settings(output_format="text", include_summary=False, include_tree="none")

    artifact = assemble(files, contents, settings)

    assert artifact.content.split(settings.output_separator) == list(artifact.chunks)
    assert artifact.chunks == ("==== b.py (1 B) ====\nB\n", "==== a.py (1 B) ====\nA\n")
    assert artifact.file_count == 2
    assert artifact.summary == ""


@pytest.mark.unit
def test_markdown_digest_starts_with_summary_and_fenced_tree() -> None:
    files = [_desc("src/app.py"), _desc("README.md")]
    contents = {"src/app.py": ContentResult(text="print()"), "README.md": ContentResult(text="# Hi")}

    artifact = assemble(files, contents, Settings(), root_name="repo")

    parts = artifact.content.split(Settings().output_separator)
    assert parts[0].startswith("# Code Digest\n")
    assert "Files: 2" in parts[0]
    assert parts[1].startswith("```text\nrepo\n")
    assert parts[2] == "==== src/app.py (1 B) ====\n```python\nprint()\n```\n"
    assert parts[3] == "==== README.md (1 B) ====\n# Hi\n"


@pytest.mark.unit
def test_files_without_content_are_reported_not_counted() -> None:
    files = [_desc("a.py"), _desc("b.py")]
    contents = {"a.py": ContentResult(text="A")}

    artifact = assemble(files, contents, Settings(output_format="text"))

    assert artifact.file_count == 1
    assert len(artifact.chunks) == 1
    assert any("missing from the digest" in w for w in artifact.warnings)


@pytest.mark.unit
def test_json_digest_shape() -> None:
    files = [_desc("a.py", size=3)]
    contents = {"a.py": ContentResult(text="abc")}

    artifact = assemble(files, contents, Settings(output_format="json"))

    doc = json.loads(artifact.content)
    assert set(doc) == {"summary", "tree", "files", "warnings", "token_estimate"}
    assert doc == artifact.payload
    assert doc["files"][0]["path"] == "a.py"
    assert doc["files"][0]["content"] == "abc"
    assert doc["files"][0]["language"] == "python"
    assert doc["summary"]["files"] == 1
    assert artifact.chunks == ()
    assert artifact.file_count == 1


@pytest.mark.unit
def test_json_digest_without_summary_or_tree() -> None:
    artifact = assemble(
        [_desc("a.py")],
        {"a.py": ContentResult(text="a")},
        Settings(output_format="json", include_summary=False, include_tree="none"),
    )

    assert artifact.payload is not None
    assert artifact.payload["summary"] is None
    assert artifact.payload["tree"] is None


@pytest.mark.unit
def test_token_estimate_is_sum_of_bodies() -> None:
    files = [_desc("a.py"), _desc("b.txt")]
    contents = {"a.py": ContentResult(text="x" * 10), "b.txt": ContentResult(text="y" * 7)}

    artifact = assemble(files, contents, Settings())

    assert artifact.token_estimate == estimate_tokens("x" * 10) + estimate_tokens("y" * 7)


@pytest.mark.unit
def test_token_limit_adds_warning() -> None:
    artifact = assemble([_desc("a.py")], {"a.py": ContentResult(text="x" * 40)}, Settings(token_limit=5))

    assert any("exceeds context limit" in w for w in artifact.warnings)
    assert "exceeds context limit" in artifact.summary


@pytest.mark.unit
def test_errors_truncation_and_redaction_are_reported() -> None:
    files = [_desc("bad.py"), _desc("grown.py"), _desc("secret.py")]
    contents = {
        "bad.py": ContentResult(text="[error reading file: boom]", error="boom"),
        "grown.py": ContentResult(text="abc", truncated=True),
        "secret.py": ContentResult(text="[REDACTED]", redaction_applied=True),
    }

    artifact = assemble(files, contents, Settings())

    assert [(e.rel_path, e.message) for e in artifact.errors] == [("bad.py", "boom")]
    assert any("grown.py" in w for w in artifact.warnings)
    assert artifact.redaction_applied


@pytest.mark.unit
def test_minimal_tree_is_compacted_and_capped() -> None:
    files = [_desc("a/b/c.py"), _desc("x.py"), _desc("y.py"), _desc("z.py")]

    tree = render_tree(".", files, files, Settings(include_tree="minimal", max_selected_tree_lines=3))

    lines = tree.splitlines()
    assert lines[0] == "."
    assert "a/b/" in lines[1]
    assert len(lines) == 4
    assert lines[-1] == TREE_TRUNCATED


@pytest.mark.unit
def test_full_tree_lists_every_scanned_node() -> None:
    selected = [_desc("a.py")]
    scanned = [_desc("a.py"), _desc("b.py"), _desc("link", kind=NodeKind.SYMLINK)]

    full = render_tree(".", selected, scanned, Settings())
    none = render_tree(".", selected, scanned, Settings(include_tree="none"))

    assert "b.py" in full
    assert "link [symlink]" in full
    assert none == ""
