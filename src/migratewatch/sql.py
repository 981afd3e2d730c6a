"""Split migration scripts into executable statements."""

from __future__ import annotations

import re

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z_0-9]*)?\$")


def _skip_quoted(sql: str, start: int, closer: str) -> int:
    end = sql.find(closer, start)
    return len(sql) if end == -1 else end + len(closer)


def split_statements(sql: str) -> list[str]:
    """Return the statements in ``sql`` in source order.

    A statement ends at a ``;`` outside string literals, quoted identifiers,
    block comments and dollar-quoted bodies (``$$ ... $$`` or
    ``$tag$ ... $tag$``), so function definitions stay intact and several
    statements may share a line. ``--`` comments outside those regions are
    dropped, including ones trailing a statement on the same line.
    """

    text = sql.replace("\r\n", "\n").replace("\r", "\n")
    statements: list[str] = []
    buffer: list[str] = []
    index = 0
    length = len(text)

    while index < length:
        char = text[index]
        if text.startswith("--", index):
            newline = text.find("\n", index)
            index = length if newline == -1 else newline
            continue

        tag = _DOLLAR_TAG.match(text, index) if char == "$" else None
        if text.startswith("/*", index):
            end = _skip_quoted(text, index + 2, "*/")
        elif char in ("'", '"'):
            end = _skip_quoted(text, index + 1, char)
        elif tag is not None:
            end = _skip_quoted(text, tag.end(), tag.group(0))
        else:
            end = index + 1
        buffer.append(text[index:end])
        index = end

        if char == ";":
            statement = "".join(buffer).strip()
            if statement and statement != ";":
                statements.append(statement)
            buffer = []

    remainder = "".join(buffer).strip()
    if remainder:
        statements.append(remainder)
    return statements


__all__ = ["split_statements"]
