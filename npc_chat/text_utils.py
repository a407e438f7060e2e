"""Text helpers for message rendering hints."""

import re

_MARKDOWN_RULES = [
    (re.compile(r"```.*?```"), ""),
    (re.compile(r"`[^`]+`"), ""),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"#+\s+"), ""),
    (re.compile(r"^\s*[-*+]\s+"), ""),
    (re.compile(r"^\s*\d+\.\s+"), ""),
]


def calculate_max_line_width(text: str | None) -> int:
    """Length of the longest line once inline Markdown markup is removed.

    Chat clients use it to size message bubbles before rendering.
    """
    if not text or not isinstance(text, str):
        return 0

    max_width = 0
    for line in re.split(r"\r?\n", text):
        for pattern, replacement in _MARKDOWN_RULES:
            line = pattern.sub(replacement, line)
        max_width = max(max_width, len(line.strip()))
    return max_width
