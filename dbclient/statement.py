"""
Statement value and SQL text scanning.

SQL is always written with positional ``?`` placeholders. Drivers that use the
``format``/``pyformat`` paramstyle (psycopg, pymysql) get ``%s`` instead, with
literal ``%`` escaped. Placeholders and ``;`` inside quoted literals and
comments are left untouched.
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

_CODE = "code"
_LITERAL = "literal"
_COMMENT = "comment"

QMARK = "qmark"
FORMAT_STYLES = frozenset({"format", "pyformat"})

# $$ or $tag$; tags cannot start with a digit, so $1 is not a quote
_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_IDENT_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_$")


def _end_of_quoted(sql: str, start: int, quote: str, backslash_escapes: bool) -> int:
    """Index just past the literal opened at *start*. Doubled quotes always escape;
    backslashes only when *backslash_escapes* is set (MySQL)."""
    i = start + 1
    length = len(sql)
    while i < length:
        c = sql[i]
        if c == quote:
            if i + 1 < length and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        if backslash_escapes and c == "\\" and i + 1 < length:
            i += 2
            continue
        i += 1
    return length


def _segments(sql: str, backslash_escapes: bool = False) -> Iterator[tuple[str, str]]:
    """Yield (text, kind) chunks where kind is code, literal or comment."""
    i = 0
    start = 0
    length = len(sql)

    while i < length:
        ch = sql[i]
        if ch in ("'", '"'):
            kind = _LITERAL
            end = _end_of_quoted(sql, i, ch, backslash_escapes)
        elif ch == "$" and (i == 0 or sql[i - 1] not in _IDENT_CHARS) and (m := _DOLLAR_TAG.match(sql, i)):
            kind = _LITERAL
            tag = m.group(0)
            close = sql.find(tag, m.end())
            end = length if close == -1 else close + len(tag)
        elif sql.startswith("--", i):
            kind = _COMMENT
            close = sql.find("\n", i)
            end = length if close == -1 else close + 1
        elif sql.startswith("/*", i):
            kind = _COMMENT
            close = sql.find("*/", i + 2)
            end = length if close == -1 else close + 2
        else:
            i += 1
            continue

        if start < i:
            yield sql[start:i], _CODE
        yield sql[i:end], kind
        i = start = end

    if start < length:
        yield sql[start:], _CODE


def count_placeholders(sql: str, backslash_escapes: bool = False) -> int:
    """Number of ``?`` placeholders outside literals and comments."""
    return sum(text.count("?") for text, kind in _segments(sql, backslash_escapes) if kind == _CODE)


def split_statements(sql: str, backslash_escapes: bool = False) -> list[str]:
    """Split SQL into statements on ``;`` while respecting quoted strings and comments.

    Statements made only of whitespace and comments are dropped. Backslash escapes
    inside literals are honoured only when *backslash_escapes* is set (MySQL).
    """
    stmts: list[str] = []
    current: list[str] = []
    has_body = False

    def _flush() -> None:
        nonlocal current, has_body
        stmt = "".join(current).strip()
        if stmt and has_body:
            stmts.append(stmt)
        current = []
        has_body = False

    for text, kind in _segments(sql, backslash_escapes):
        if kind != _CODE:
            current.append(text)
            has_body = has_body or kind == _LITERAL
            continue
        for n, part in enumerate(text.split(";")):
            if n:
                _flush()
            current.append(part)
            has_body = has_body or bool(part.strip())
    _flush()
    return stmts


@dataclass(frozen=True)
class Statement:
    """SQL text with ``?`` placeholders plus the values bound to them, in order."""

    sql: str
    params: tuple[Any, ...] = field(default_factory=tuple)

    def render(
        self, paramstyle: str, *, backslash_escapes: bool = False
    ) -> tuple[str, tuple[Any, ...] | None]:
        """
        Return (sql, params) ready for ``cursor.execute`` under *paramstyle*.
        *backslash_escapes* follows the dialect: true for MySQL, false for standard SQL.

        Without params the text is passed through unchanged and params is None,
        so drivers do not interpret ``%`` or ``?`` at all.
        """
        if not self.params:
            return self.sql, None

        expected = count_placeholders(self.sql, backslash_escapes)
        if expected != len(self.params):
            raise ValueError(
                f"Statement has {expected} placeholder(s) but {len(self.params)} parameter(s) were given"
            )

        if paramstyle == QMARK:
            return self.sql, tuple(self.params)
        if paramstyle not in FORMAT_STYLES:
            raise ValueError(f"Unsupported paramstyle: {paramstyle}")

        out: list[str] = []
        for text, kind in _segments(self.sql, backslash_escapes):
            text = text.replace("%", "%%")
            if kind == _CODE:
                text = text.replace("?", "%s")
            out.append(text)
        return "".join(out), tuple(self.params)
