"""
Recover N aligned segments from a chat reply.

Each splitter is tried in order; the first one that yields more than one
segment wins. Repairs (numbering, quote unmasking, echoed repeats, length
alignment) are applied afterwards.
"""

import re
from typing import Callable, Optional

QUOTE_SENTINEL = "⟦TRANSHOT_QUOTE⟧"
DELIMITER = "⟦TRANSHOT_DELIM⟧"

_NUMBERING_RE = re.compile(r"^\s*\d+\)\s*")
_NUMBERED_LINE_RE = re.compile(r"(?m)^\s*\d+\)\s*")


def mask_quotes(text: str) -> str:
    return (text or "").replace('"', QUOTE_SENTINEL)


def unmask_quotes(text: str) -> str:
    return (text or "").replace(QUOTE_SENTINEL, '"')


def split_on_delimiter(reply: str) -> list[str]:
    if DELIMITER not in reply:
        return [reply]
    parts = [part.strip() for part in reply.split(DELIMITER)]
    # A trailing delimiter leaves one empty tail
    if len(parts) > 1 and not parts[-1]:
        parts.pop()
    return parts


def split_on_numbering(reply: str) -> list[str]:
    if not _NUMBERED_LINE_RE.search(reply):
        return [reply]
    pieces = _NUMBERED_LINE_RE.split(reply)
    # Text before the first "1)" is preamble
    return [piece.strip() for piece in pieces[1:] if piece.strip()]


def split_on_paragraphs(reply: str) -> list[str]:
    return [piece.strip() for piece in re.split(r"\n\s*\n", reply) if piece.strip()]


def split_on_lines(reply: str) -> list[str]:
    return [line.strip() for line in reply.splitlines() if line.strip()]


SegmentParser = Callable[[str], list[str]]

PARSERS: tuple[SegmentParser, ...] = (
    split_on_delimiter,
    split_on_numbering,
    split_on_paragraphs,
    split_on_lines,
)


def _strip_outer_delimiters(text: str) -> str:
    text = text.strip()
    while text.startswith(DELIMITER):
        text = text[len(DELIMITER):].strip()
    while text.endswith(DELIMITER):
        text = text[:-len(DELIMITER)].strip()
    return text


def parse_segments(reply: str) -> tuple[list[str], Optional[str]]:
    """Return (segments, name of the winning parser or None when nothing split)."""
    text = _strip_outer_delimiters(reply or "")
    if not text:
        return [], None
    for parser in PARSERS:
        segments = parser(text)
        if len(segments) > 1:
            return segments, parser.__name__
    return [text], None


def strip_numbering(segment: str) -> str:
    return _NUMBERING_RE.sub("", segment, count=1).strip()


def collapse_repeats(segments: list[str], expected: int) -> list[str]:
    """Collapse a reply that repeats the same N-length block k times to one block."""
    if expected <= 0 or len(segments) < expected * 2 or len(segments) % expected:
        return segments
    first = segments[:expected]
    for start in range(expected, len(segments), expected):
        if segments[start:start + expected] != first:
            return segments
    return list(first)


def align(segments: list[str], expected: int) -> list[str]:
    """Pad with empty strings or truncate to exactly `expected` items."""
    if len(segments) >= expected:
        return list(segments[:expected])
    return list(segments) + [""] * (expected - len(segments))


def recover_segments(reply: str, expected: int) -> tuple[list[str], Optional[str]]:
    segments, parser_name = parse_segments(reply)
    segments = [
        unmask_quotes(strip_numbering(segment.replace(DELIMITER, " ").strip()))
        for segment in segments
    ]
    segments = collapse_repeats(segments, expected)
    return align(segments, expected), parser_name
