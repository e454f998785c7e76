"""
Structured extraction of a poet reply.

The model is asked for three labelled sections:

    POEM: ...
    TITLE: ...
    NEXT: ...

Labels must start a line; case, surrounding markdown emphasis and section
order do not matter. Older replies used bracket markers
([POEM-START] ... [POEM-END]); those are accepted as a fallback.

After extraction the title is cut to a word limit, the next prompt to a
character limit, and long poem lines are wrapped at the last space.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from poetloop.errors import MalformedGeneration

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(
    r"^[ \t>#*_]*(POEM|TITLE|NEXT)[ \t*_]*:[ \t*_]*",
    re.IGNORECASE | re.MULTILINE,
)

_BRACKET_RE = {
    "poem": re.compile(r"\[POEM-START\](.*?)\[POEM-END\]", re.DOTALL),
    "title": re.compile(r"\[TITLE-START\](.*?)\[TITLE-END\]", re.DOTALL),
    "next": re.compile(r"\[NEXT-START\](.*?)\[NEXT-END\]", re.DOTALL),
}

_BRACKET_MARKERS = (
    "[POEM-START]", "[POEM-END]",
    "[TITLE-START]", "[TITLE-END]",
    "[NEXT-START]", "[NEXT-END]",
)


@dataclass
class ParsedPoem:
    title: str
    poem: str
    next_prompt: str


def has_bracket_markers(text: str) -> bool:
    return any(marker in text for marker in _BRACKET_MARKERS)


def format_poem_lines(poem: str, max_chars: int = 60) -> str:
    """Wrap lines longer than max_chars at the last space that fits."""
    formatted = []
    for line in poem.splitlines():
        remaining = line.rstrip()
        while len(remaining) > max_chars:
            break_point = remaining.rfind(" ", 0, max_chars + 1)
            if break_point <= 0:
                break_point = max_chars
            formatted.append(remaining[:break_point].rstrip())
            remaining = remaining[break_point:].strip()
        formatted.append(remaining)
    return "\n".join(formatted)


def _clean_title(title: str, max_words: int) -> str:
    words = title.strip().strip("*_\"'`").split()
    return " ".join(words[:max_words])


def _clean_next(next_prompt: str, max_chars: int) -> str:
    next_prompt = " ".join(next_prompt.split())
    if len(next_prompt) > max_chars:
        next_prompt = next_prompt[:max_chars].rstrip()
    return next_prompt


def parse_labels(text: str) -> dict[str, str] | None:
    """Sections keyed by lower-case label, or None if any label is missing/empty."""
    first: dict[str, re.Match] = {}
    for match in _LABEL_RE.finditer(text):
        first.setdefault(match.group(1).lower(), match)
    if len(first) < 3:
        return None

    ordered = sorted(first.items(), key=lambda kv: kv[1].start())
    sections = {}
    for i, (label, match) in enumerate(ordered):
        end = ordered[i + 1][1].start() if i + 1 < len(ordered) else len(text)
        sections[label] = text[match.end():end].strip()

    if not all(sections.values()):
        return None
    return sections


def parse_brackets(text: str) -> dict[str, str] | None:
    sections = {}
    for label, pattern in _BRACKET_RE.items():
        match = pattern.search(text)
        if not match or not match.group(1).strip():
            return None
        sections[label] = match.group(1).strip()
    return sections


def parse_reply(
    text: str,
    title_max_words: int = 6,
    next_max_chars: int = 300,
    max_line_chars: int = 60,
) -> tuple[ParsedPoem, str]:
    """
    Extract title, poem and next prompt.
    Returns (parsed, method) with method "primary" or "fallback".
    Raises MalformedGeneration when neither convention matches.
    """
    method = "primary"
    sections = None if has_bracket_markers(text) else parse_labels(text)
    if sections is None:
        sections = parse_brackets(text)
        method = "fallback"
    if sections is None:
        raise MalformedGeneration(
            "Reply is missing one of the POEM:, TITLE:, NEXT: sections"
        )

    title = _clean_title(sections["title"], title_max_words)
    next_prompt = _clean_next(sections["next"], next_max_chars)
    if not title or not next_prompt:
        raise MalformedGeneration("Reply has an empty title or next prompt")

    parsed = ParsedPoem(
        title=title,
        poem=format_poem_lines(sections["poem"], max_line_chars).strip(),
        next_prompt=next_prompt,
    )
    return parsed, method
