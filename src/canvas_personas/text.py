"""Small text helpers for note content."""

from __future__ import annotations

_QUESTION_WORDS = (
    "what", "why", "how", "when", "where", "who", "which",
    "is", "are", "do", "does", "can", "could", "would", "should",
)

WAIT_MARKER = "Please wait"


def looks_like_question(text: str) -> bool:
    """Loose check used to decide whether a note edit is worth answering."""

    lower = text.lower()
    if "?" in lower:
        return True
    return any(f"{word} " in lower for word in _QUESTION_WORDS)


def ends_with_question(text: str) -> bool:
    return text.strip().endswith("?")


def clean_question(text: str) -> str:
    """Strip helper prefixes (``... -->``) and trailing wait notices from note text."""

    _, sep, tail = text.partition("-->")
    question = tail if sep else text
    return question.split(WAIT_MARKER, 1)[0].strip()


def strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.removeprefix("```json").removeprefix("```")
        text = text.removesuffix("```").strip()
    return text


def mask_key(key: str) -> str:
    if len(key) <= 4:
        return key
    return "*" * (len(key) - 4) + key[-4:]


def normalize_color(value: str) -> str:
    """Lower-case ``#RRGGBB`` / ``#RRGGBBAA``; opaque alpha is dropped so both forms compare equal."""

    color = value.strip().lower()
    if len(color) == 9 and color.startswith("#") and color.endswith("ff"):
        return color[:7]
    return color
