"""Identifier and literal hygiene for SQL text built by the engine.

Table and column names arriving from outside are never trusted as SQL: they
pass through :func:`sanitize_identifier` (alphanumerics and underscore only)
and are then double-quoted.
"""

from __future__ import annotations

import re

from schema_engine.errors import ValidationFailedError

_DISALLOWED = re.compile(r"[^A-Za-z0-9_]")

_NUMERIC_LITERAL = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$|^0[xX][0-9A-Fa-f]+$")

_BARE_KEYWORDS = frozenset({"CURRENT_TIMESTAMP", "NULL"})


def sanitize_identifier(identifier: str) -> str:
    """Strip every character outside ``[A-Za-z0-9_]``.

    Raises
    ------
    ValidationFailedError
        If nothing is left after stripping.
    """
    cleaned = _DISALLOWED.sub("", identifier or "")
    if not cleaned:
        raise ValidationFailedError(f"Invalid identifier '{identifier}'")
    return cleaned


def quote_identifier(identifier: str) -> str:
    """Sanitise and double-quote an identifier."""
    return f'"{sanitize_identifier(identifier)}"'


def format_default_literal(value: str) -> str:
    """Render a user-supplied default value as a SQL literal.

    Numeric literals and the ``CURRENT_TIMESTAMP`` / ``NULL`` keywords stay
    bare; anything else is single-quoted with embedded quotes doubled.

    >>> format_default_literal("42")
    '42'
    >>> format_default_literal("current_timestamp")
    'current_timestamp'
    >>> format_default_literal("it's")
    "'it''s'"
    """
    text = value.strip()
    if text and _NUMERIC_LITERAL.match(text):
        return text
    if text.upper() in _BARE_KEYWORDS:
        return text
    return "'" + text.replace("'", "''") + "'"
