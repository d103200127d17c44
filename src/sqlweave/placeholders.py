"""Positional placeholder counting.

Used to reject a statement whose bound parameter count differs from the
placeholders it consumes, before anything is sent to the backend. Quoted
strings, quoted identifiers, comments and dollar-quoted bodies are skipped.
"""

from __future__ import annotations

import re
from enum import StrEnum

# $1, $2, ... (Postgres)
_DOLLAR_PARAM_RE = re.compile(r"\$(\d+)")
# $$ or $tag$ opening a dollar-quoted string
_DOLLAR_QUOTE_RE = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")
# ? or ?NNN (SQLite)
_QMARK_RE = re.compile(r"\?(\d*)")


class PlaceholderStyle(StrEnum):
    """How a backend spells positional placeholders."""

    DOLLAR = "dollar"  # $1, $2, ...
    QMARK = "qmark"  # ?, ?NNN


def _is_ident_char(ch: str) -> bool:
    return ch != "" and (ch.isalnum() or ch in "_$")


def _skip_quoted(sql: str, start: int, quote: str, *, backslash: bool = False) -> int:
    """Return the index just past the quoted run opening at ``start``."""
    i = start + 1
    n = len(sql)
    while i < n:
        ch = sql[i]
        if backslash and ch == "\\":
            i += 2
            continue
        if ch == quote:
            # doubled quote is an escaped quote
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _skip_block_comment(sql: str, start: int) -> int:
    """Return the index just past a (possibly nested) ``/* ... */`` comment."""
    depth = 0
    i = start
    n = len(sql)
    while i < n:
        if sql.startswith("/*", i):
            depth += 1
            i += 2
        elif sql.startswith("*/", i):
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return n


def count_placeholders(sql: str, style: PlaceholderStyle) -> int:
    """Return how many positional parameters ``sql`` consumes.

    For ``$N`` this is the highest N referenced (a placeholder may repeat).
    For SQLite, a bare ``?`` takes the next index after the largest seen so
    far and ``?NNN`` names an index explicitly, so the result is the largest
    index used. Named parameters (``:name``, ``@name``) are not counted.
    """
    highest = 0
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        prev = sql[i - 1] if i > 0 else ""

        if ch == "'":
            escape_string = prev in ("e", "E") and (i < 2 or not _is_ident_char(sql[i - 2]))
            i = _skip_quoted(sql, i, "'", backslash=escape_string)
        elif ch == '"':
            i = _skip_quoted(sql, i, '"')
        elif sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end < 0 else end + 1
        elif sql.startswith("/*", i):
            i = _skip_block_comment(sql, i)
        elif style is PlaceholderStyle.DOLLAR and ch == "$" and not _is_ident_char(prev):
            param = _DOLLAR_PARAM_RE.match(sql, i)
            if param:
                highest = max(highest, int(param.group(1)))
                i = param.end()
                continue
            quote = _DOLLAR_QUOTE_RE.match(sql, i)
            if quote:
                end = sql.find(quote.group(0), quote.end())
                i = n if end < 0 else end + len(quote.group(0))
                continue
            i += 1
        elif style is PlaceholderStyle.QMARK and ch == "?":
            param = _QMARK_RE.match(sql, i)
            assert param is not None
            highest = max(highest, int(param.group(1))) if param.group(1) else highest + 1
            i = param.end()
        else:
            i += 1
    return highest
