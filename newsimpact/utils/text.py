"""Small text helpers for extracted article bodies."""

from __future__ import annotations

import re

_WS = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WS.sub(" ", text or "").strip()


def count_words(text: str) -> int:
    trimmed = (text or "").strip()
    if not trimmed:
        return 0
    return len(_WS.split(trimmed))


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars]
