"""Turn raw streamed model text into natural, speakable prose.

The pipeline runs in a fixed order:

1. collapse whitespace and blank lines
2. clean numbered-list artifacts (``1.1.`` markers, repeated items)
3. drop repeated sentences and stuttered words
4. rewrite punctuation and markdown for spoken delivery
5. tidy whitespace around punctuation

:func:`normalize` repeats the pipeline until the text stops changing, so
``normalize(normalize(x)) == normalize(x)``.
"""

from __future__ import annotations

import re

_MAX_PASSES = 5

# Whitespace
_BLANK_LINES = re.compile(r"\n\s*\n")
_WHITESPACE = re.compile(r"\s+")

# Numbered lists
_REPEATED_MARKER = re.compile(r"\b(\d+)\.\1\.(?!\d)")
_DUPLICATE_ITEM = re.compile(r"(\b\d+\.\s*[^.!?]+)[.!?]\s+\1[.!?]")
_MARKER_EXTRA_PERIODS = re.compile(r"(?:(?<=\s)|^)(\d+\.)\.+")
_MARKER_SPACING = re.compile(r"(?:(?<=\s)|^)(\d+)\.(?=[^\s\d.,;:!?])")

# Duplicates
_SENTENCE_SPLIT = re.compile(r"(?<=[^\d\s][.!?])\s+")
_DUPLICATE_WORDS = re.compile(r"\b(\w+)(?:\s+\1\b)+", re.IGNORECASE)
_DUPLICATE_HYPHENATED = re.compile(r"(\w+)-(\w+)[,.]\s+[-—]\2\b", re.IGNORECASE)

# Abbreviations
_ABBREVIATIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bi\.e\.", re.IGNORECASE), "that is"),
    (re.compile(r"\be\.g\.", re.IGNORECASE), "for example"),
    (re.compile(r"\betc\.(?=\s+[A-Z]|\s*$)", re.IGNORECASE), "et cetera."),
    (re.compile(r"\betc\.", re.IGNORECASE), "et cetera"),
    (re.compile(r"\bvs\.", re.IGNORECASE), "versus"),
)

# Ellipses, most specific first
_ELLIPSIS_RUN = re.compile(r"\.(?:\s*\.){2,}")
_ELLIPSIS_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"([.!?])\s*\.{3}(?=\s*$)"), r"\1"),
    (re.compile(r"^\.{3}\s*"), ""),
    (re.compile(r"([.!?])\s*\.{3}\s+(?=[A-Z])"), r"\1 Additionally, "),
    (re.compile(r"([^.!?\s])\s*\.{3}\s+(?=[a-z])"), r"\1 and "),
    (re.compile(r"([^.!?\s])\s*\.{3}\s*(?=[A-Z])"), r"\1. Furthermore, "),
    (re.compile(r"\s*\.{3}"), " and so forth"),
)

# Markdown and symbols
_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_HEADER_MARK = re.compile(r"(?:(?<=\s)|^)#{1,6}\s+")
_QUOTE_MARK = re.compile(r"(?:(?<=\s)|^)>\s+")
_DASH_BULLET = re.compile(r"(?:^|(?<=[.!?:]\s))[-+]\s+")
_BULLETS = re.compile(r"[•*]\s*")
_UNDERSCORE_EMPHASIS = re.compile(r"(?<!\w)_{1,2}([^_]+?)_{1,2}(?!\w)")
_BACKTICKS = re.compile(r"`+")
_DOUBLE_HYPHEN = re.compile(r"\s*--+\s*")
_AND_OR = re.compile(r"\band\s*/\s*or\b", re.IGNORECASE)
_SLASH = re.compile(r"(?<=\w)\s*/\s*(?=\w)")
_PARENTHETICAL = re.compile(r"\(([^()]+)\)")
_STRAY_BRACKETS = re.compile(r"[()\[\]{}]")
_DOUBLE_QUOTED = re.compile(r"\"([^\"]+)\"")
_CURLY_DOUBLE = re.compile(r"[“”]")
_CURLY_SINGLE = re.compile(r"‘([^’]+)’")
_REPEATED_TERMINAL = re.compile(r"([.!?])[.!?]+")
_REPEATED_PAUSE = re.compile(r"([,;:])[,;:]+")

# Final spacing
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([.!?;:,])")
_COMMA_BEFORE_STOP = re.compile(r",\s*([.!?;:])")
_COMMA_AFTER_STOP = re.compile(r"([.!?;:])\s*,")
_MISSING_SPACE_SOFT = re.compile(r"([!?;,])(?=[A-Za-z])")
_MISSING_SPACE_STOP = re.compile(r"([.:])(?=[A-Z][a-z])")
_LEADING_PUNCT = re.compile(r"^[\s,;:.!?]+")


def collapse_whitespace(text: str) -> str:
    text = _BLANK_LINES.sub("\n", text)
    return _WHITESPACE.sub(" ", text).strip()


def clean_numbered_list(text: str) -> str:
    """Fix doubled markers (``1.1.`` -> ``1.``) and repeated list items."""
    text = _REPEATED_MARKER.sub(r"\1.", text)
    text = _DUPLICATE_ITEM.sub(r"\1.", text)
    text = _MARKER_EXTRA_PERIODS.sub(r"\1", text)
    return _MARKER_SPACING.sub(r"\1. ", text)


def remove_duplicate_sentences(text: str) -> str:
    seen: set[str] = set()
    unique: list[str] = []
    for sentence in _SENTENCE_SPLIT.split(text):
        if not sentence or sentence in seen:
            continue
        seen.add(sentence)
        unique.append(sentence)
    return " ".join(unique)


def remove_duplicate_words(text: str) -> str:
    text = _DUPLICATE_WORDS.sub(r"\1", text)
    return _DUPLICATE_HYPHENATED.sub(r"\1-\2", text)


def improve_punctuation(text: str) -> str:
    for pattern, replacement in _ABBREVIATIONS:
        text = pattern.sub(replacement, text)

    text = _ELLIPSIS_RUN.sub("...", text)
    for pattern, replacement in _ELLIPSIS_RULES:
        text = pattern.sub(replacement, text)

    text = _REPEATED_TERMINAL.sub(r"\1", text)
    text = _REPEATED_PAUSE.sub(r"\1", text)

    text = _MARKDOWN_LINK.sub(r"\1", text)
    text = _HEADER_MARK.sub("", text)
    text = _QUOTE_MARK.sub("", text)
    text = _DASH_BULLET.sub("", text)
    text = _BULLETS.sub("", text)
    text = _UNDERSCORE_EMPHASIS.sub(r"\1", text)
    text = _BACKTICKS.sub("", text)

    text = _DOUBLE_HYPHEN.sub(" — ", text)
    text = _AND_OR.sub("and or", text)
    text = _SLASH.sub(" or ", text)
    text = _PARENTHETICAL.sub(r", \1,", text)
    text = _STRAY_BRACKETS.sub("", text)

    text = _DOUBLE_QUOTED.sub(r"\1", text)
    text = _CURLY_DOUBLE.sub("", text)
    text = _CURLY_SINGLE.sub(r"\1", text)
    return text


def tidy_spacing(text: str) -> str:
    text = _SPACE_BEFORE_PUNCT.sub(r"\1", text)
    text = _COMMA_BEFORE_STOP.sub(r"\1", text)
    text = _COMMA_AFTER_STOP.sub(r"\1", text)
    text = _MISSING_SPACE_SOFT.sub(r"\1 ", text)
    text = _MISSING_SPACE_STOP.sub(r"\1 ", text)
    text = _LEADING_PUNCT.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def _normalize_once(text: str) -> str:
    text = collapse_whitespace(text)
    text = clean_numbered_list(text)
    text = remove_duplicate_sentences(text)
    text = remove_duplicate_words(text)
    text = improve_punctuation(text)
    return tidy_spacing(text)


def normalize(text: str) -> str:
    """Return ``text`` cleaned up for speech synthesis."""
    current = text or ""
    for _ in range(_MAX_PASSES):
        cleaned = _normalize_once(current)
        if cleaned == current:
            break
        current = cleaned
    return current


__all__ = [
    "clean_numbered_list",
    "collapse_whitespace",
    "improve_punctuation",
    "normalize",
    "remove_duplicate_sentences",
    "remove_duplicate_words",
    "tidy_spacing",
]
