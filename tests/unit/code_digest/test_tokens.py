import pytest

from code_digest.tokens import (
    DEFAULT_MODEL,
    comment_spans,
    estimate_tokens,
    format_token_count,
    resolve_divisor,
    token_limit_warning,
)


@pytest.mark.unit
def test_empty_text_is_zero_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("", comment_weight=0.0) == 0


@pytest.mark.unit
@pytest.mark.parametrize(("text", "expected"), [("a", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)])
def test_estimate_rounds_up(text: str, expected: int) -> None:
    assert estimate_tokens(text) == expected


@pytest.mark.unit
def test_unknown_model_falls_back_to_default_divisor() -> None:
    assert resolve_divisor("no-such-model") == resolve_divisor(DEFAULT_MODEL)
    assert estimate_tokens("x" * 40, "no-such-model") == estimate_tokens("x" * 40)


@pytest.mark.unit
def test_extension_override_beats_model_override() -> None:
    overrides = {"gpt-4o": 2.0, ".py": 8.0}

    assert resolve_divisor("gpt-4o", overrides) == 2.0
    assert resolve_divisor("gpt-4o", overrides, ".py") == 8.0
    assert resolve_divisor("gpt-4o", overrides, "PY") == 8.0
    assert resolve_divisor("gpt-4o", overrides, ".js") == 2.0
    assert estimate_tokens("x" * 80, "gpt-4o", overrides, extension=".py") == 10


@pytest.mark.unit
def test_comment_weight_only_changes_commented_text() -> None:
    code = "x = 1\ny = 2\n"
    commented = "x = 1  # set x\n// line\n/* block\ncomment */\ny = 2\n"

    assert estimate_tokens(code, comment_weight=0.0) == estimate_tokens(code)
    light = estimate_tokens(commented, comment_weight=0.0)
    normal = estimate_tokens(commented)
    heavy = estimate_tokens(commented, comment_weight=2.0)
    assert light < normal < heavy


@pytest.mark.unit
def test_urls_are_not_line_comments() -> None:
    assert comment_spans("url = 'https://example.com/path'") == []


@pytest.mark.unit
def test_comment_spans_are_merged() -> None:
    text = "/* a // b */ code\n  # hash\n"

    spans = comment_spans(text)

    assert spans == [(0, 12), (20, 26)]
    assert text[0:12] == "/* a // b */"
    assert text[20:26] == "# hash"


@pytest.mark.unit
def test_markers_inside_a_comment_do_not_extend_it() -> None:
    assert comment_spans("// see /* here\ncode */ x") == [(0, 14)]
    assert comment_spans("# note // more\nx = 1") == [(0, 14)]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("n", "expected"),
    [(0, "0"), (999, "999"), (1000, "1k"), (1500, "1.5k"), (2_000_000, "2M"), (2_500_000, "2.5M")],
)
def test_format_token_count(n: int, expected: str) -> None:
    assert format_token_count(n) == expected


@pytest.mark.unit
def test_token_limit_warning() -> None:
    assert token_limit_warning(100, None) is None
    assert token_limit_warning(100, 100) is None
    assert token_limit_warning(1500, 1000) == "Token estimate 1.5k exceeds context limit (1k)."
