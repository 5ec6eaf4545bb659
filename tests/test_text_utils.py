import pytest

from scribebot.utils.text import split_message, truncate


def test_short_text_is_one_chunk():
    assert split_message("hello", 10) == ["hello"]
    assert split_message("", 10) == []


def test_split_prefers_newlines():
    text = "para one\npara two\npara three"
    chunks = split_message(text, 18)
    assert chunks == ["para one\npara two", "para three"]


def test_split_hard_cuts_without_newlines():
    chunks = split_message("x" * 45, 20)
    assert [len(c) for c in chunks] == [20, 20, 5]
    assert "".join(chunks) == "x" * 45


def test_chunks_never_exceed_limit():
    text = "\n".join(f"line {i} " + "y" * (i % 37) for i in range(300))
    assert all(len(c) <= 100 for c in split_message(text, 100))


def test_invalid_limit():
    with pytest.raises(ValueError):
        split_message("abc", 0)


def test_truncate():
    assert truncate("abcdef", 3) == "abc..."
    assert truncate("abc", 3) == "abc"
