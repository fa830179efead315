import pytest

from echo_backend.services.text_normalizer import (
    clean_numbered_list,
    improve_punctuation,
    normalize,
    remove_duplicate_sentences,
    remove_duplicate_words,
)


def test_repeated_sentence_is_dropped() -> None:
    assert (
        normalize("Hello there. Hello there. How can I help?")
        == "Hello there. How can I help?"
    )


def test_doubled_list_markers_and_items_collapse() -> None:
    assert normalize("1.1. Buy milk. 1.1. Buy milk.") == "1. Buy milk."


def test_clean_numbered_list_fixes_marker_spacing() -> None:
    assert clean_numbered_list("1.Buy milk") == "1. Buy milk"
    assert clean_numbered_list("2.. Call mom") == "2. Call mom"


def test_remove_duplicate_sentences_keeps_first_occurrence() -> None:
    text = "It works. It is fast. It works."
    assert remove_duplicate_sentences(text) == "It works. It is fast."


def test_remove_duplicate_words_is_case_insensitive() -> None:
    assert remove_duplicate_words("Hello hello world") == "Hello world"
    assert remove_duplicate_words("the the the end") == "the end"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Use a tool, i.e. a hammer", "Use a tool, that is a hammer"),
        ("Fruit, e.g. apples", "Fruit, for example apples"),
        ("cats and/or dogs", "cats and or dogs"),
        ("red/blue", "red or blue"),
        ("Wait... what", "Wait and what"),
        ("Really?!", "Really?"),
        ("[the docs](https://example.com)", "the docs"),
    ],
)
def test_improve_punctuation_rewrites_for_speech(raw: str, expected: str) -> None:
    assert improve_punctuation(raw) == expected


def test_markdown_and_parentheticals_become_spoken_prose() -> None:
    raw = "Great question!! Here's the plan -- check the *docs* (they help)."
    assert (
        normalize(raw)
        == "Great question! Here's the plan — check the docs, they help."
    )


def test_whitespace_and_blank_lines_collapse() -> None:
    assert normalize("  First line.\n\n\n   Second line.  ") == "First line. Second line."


def test_empty_input_stays_empty() -> None:
    assert normalize("") == ""
    assert normalize("   \n ") == ""


@pytest.mark.parametrize(
    "raw",
    [
        "Hello there. Hello there. How can I help?",
        "1.1. Buy milk. 1.1. Buy milk.",
        "Great question!! Here's the plan -- check the *docs* (they help).",
        "So so many options, e.g. red/blue... Pick one!",
        "## Summary\n- first point\n- second point",
    ],
)
def test_normalize_is_idempotent(raw: str) -> None:
    once = normalize(raw)
    assert normalize(once) == once
