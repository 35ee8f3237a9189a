from __future__ import annotations

import re

from .errors import QueryError

# Statements that can be wrapped as a derived table for LIMIT/OFFSET paging.
_WRAPPABLE = {"SELECT", "WITH", "VALUES", "TABLE"}

_LEADING_COMMENT_RE = re.compile(r"^\s*(--[^\n]*\n|/\*.*?\*/)", re.DOTALL)


def strip_statement(sql: str) -> str:
    stripped = sql.strip()
    while stripped.endswith(";"):
        stripped = stripped[:-1].rstrip()
    return stripped


def detect_statement_type(sql: str) -> str:
    text = sql
    while True:
        match = _LEADING_COMMENT_RE.match(text)
        if not match:
            break
        text = text[match.end():]
    stripped = text.strip().split()
    if not stripped:
        raise QueryError("SQL statement is empty", kind="syntax")
    return stripped[0].rstrip("(").upper()


def is_wrappable(sql: str) -> bool:
    return detect_statement_type(sql) in _WRAPPABLE


def quote_identifier(identifier: str, quote_char: str) -> str:
    escaped = identifier.replace(quote_char, quote_char * 2)
    return f"{quote_char}{escaped}{quote_char}"


def clamp_limit(requested: int | None, cap: int) -> int:
    if requested is None or requested <= 0:
        return cap
    return min(requested, cap)
