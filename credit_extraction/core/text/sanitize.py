"""Text clean-up helpers shared by backends and the extractor."""

from __future__ import annotations

import re

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INLINE_WS_RE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")
_READABLE_RE = re.compile(r"[A-Za-z0-9\s.,!?;:\-()$/]")


def sanitize_text(text: str | None) -> str:
    """Strip control characters and collapse whitespace, keeping line breaks."""

    if not text:
        return ""
    cleaned = _CONTROL_RE.sub(" ", text.replace("\r\n", "\n"))
    cleaned = _INLINE_WS_RE.sub(" ", cleaned)
    cleaned = _BLANK_LINES_RE.sub("\n", cleaned)
    lines = [line.strip() for line in cleaned.split("\n")]
    return "\n".join(line for line in lines if line).strip()


def word_count(text: str) -> int:
    return len(text.split())


def readable_ratio(text: str) -> float:
    """Fraction of characters that are letters, digits, whitespace or punctuation."""

    if not text:
        return 0.0
    return len(_READABLE_RE.findall(text)) / len(text)
