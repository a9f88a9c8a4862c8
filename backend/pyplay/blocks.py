"""Indentation-based block resolution.

A compound statement header (``def``/``for``/``while``/``if``/``elif``/
``else``) owns every following line that is indented deeper than the header.
Blank lines and comment-only lines never end a block.
"""

from typing import List


def indent_of(line: str) -> int:
    """Return the number of leading whitespace characters of `line`."""
    return len(line) - len(line.lstrip())


def is_blank_or_comment(line: str) -> bool:
    text = line.strip()
    return not text or text.startswith("#")


def resolve_block_end(lines: List[str], header_index: int, header_indent: int) -> int:
    """Return the index one past the body of the header at `header_index`.

    The body ends at the first non-blank, non-comment line whose indentation is
    less than or equal to `header_indent`; if no such line exists the body runs
    to the end of `lines`. Body lines are not required to share one
    indentation: any column deeper than the header counts as inside.
    """
    i = header_index + 1
    while i < len(lines):
        raw = lines[i]
        if is_blank_or_comment(raw):
            i += 1
            continue
        if indent_of(raw) <= header_indent:
            break
        i += 1
    return i
