"""Utility helpers for string normalization and path handling."""

from __future__ import annotations

import re
from typing import Iterable, List

FILENAME_PATTERN = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')
INDEX_TOKEN_PATTERN = re.compile(r"^\[[^\]]*\]\s*")
BLANK_LINES_PATTERN = re.compile(r"\n\s*\n+")


def safe_filename(value: str, fallback: str = "output") -> str:
    """Strip characters that are not allowed in file names, keeping non-ASCII text."""
    normalized = FILENAME_PATTERN.sub("_", value).strip(" ._")
    return normalized or fallback


def dedupe(values: Iterable[str]) -> List[str]:
    """Drop repeated values while keeping the order of first appearance."""
    seen = set()
    unique: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        unique.append(value)
    return unique


def strip_index_token(text: str) -> str:
    """Remove a leading bracketed index such as ``[4-519(4/4)] ``."""
    return INDEX_TOKEN_PATTERN.sub("", text.strip(), count=1)


def normalize_lines(text: str) -> str:
    """Trim each line and collapse runs of blank lines."""
    lines = [line.strip() for line in text.splitlines()]
    joined = "\n".join(lines).strip()
    return BLANK_LINES_PATTERN.sub("\n", joined)
