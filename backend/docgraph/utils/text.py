"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")
HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def normalize_title(title: str) -> str:
    """Case- and whitespace-insensitive key used to match entity titles."""
    return normalize(title).casefold()


def count_words(text: str) -> int:
    return len(text.split())


def extract_headings(text: str) -> list[tuple[int, str, int]]:
    """Return markdown headings as ``(level, text, position)`` tuples."""
    return [(len(match.group(1)), match.group(2).strip(), match.start()) for match in HEADING_RE.finditer(text)]
