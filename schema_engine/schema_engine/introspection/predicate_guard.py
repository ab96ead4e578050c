"""AST-based guard for caller-supplied row predicates.

Cascade simulation and row counting accept an optional ``WHERE`` predicate
from the caller.  The predicate is interpolated into a ``SELECT COUNT(*)``
statement, so it must be exactly one boolean expression and must not smuggle
in a second statement or a data-modifying sub-statement.

Detection parses the predicate with :mod:`sqlglot` (SQLite dialect) rather
than matching on raw text, so whitespace, comments, and casing tricks are
ineffective.
"""

from __future__ import annotations

import logging

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from schema_engine.errors import ValidationFailedError

logger = logging.getLogger(__name__)

_DIALECT = "sqlite"

# Statement node types that must never appear inside a predicate.  Looked up
# by name because some have been renamed across sqlglot releases.
_FORBIDDEN_NODE_NAMES: tuple[str, ...] = (
    "Insert",
    "Update",
    "Delete",
    "Drop",
    "Create",
    "Alter",
    "AlterTable",
    "Command",
    "Pragma",
    "Transaction",
    "Commit",
    "Rollback",
)
_FORBIDDEN_NODES: tuple[type[exp.Expression], ...] = tuple(
    getattr(exp, name) for name in _FORBIDDEN_NODE_NAMES if hasattr(exp, name)
)

# SELECT clauses a trailing fragment could attach to the wrapper query.
_TRAILING_CLAUSES: tuple[str, ...] = ("group", "having", "order", "limit", "offset", "qualify")


def normalize_predicate(predicate: str) -> str:
    """Validate *predicate* and return it re-rendered as SQLite SQL.

    A leading ``WHERE`` keyword is tolerated.

    Raises
    ------
    ValidationFailedError
        If the predicate does not parse, spans more than one statement,
        adds clauses beyond ``WHERE``, or contains a DML/DDL node.
    """
    text = predicate.strip().rstrip(";").strip()
    if text[:6].upper() == "WHERE ":
        text = text[6:].strip()
    if not text:
        raise ValidationFailedError("Row predicate is empty")

    wrapper = f"SELECT 1 FROM _predicate_target WHERE {text}"
    try:
        statements = [s for s in sqlglot.parse(wrapper, read=_DIALECT) if s is not None]
    except SqlglotError as exc:
        raise ValidationFailedError(f"Row predicate could not be parsed: {exc}") from exc

    if len(statements) != 1 or not isinstance(statements[0], exp.Select):
        raise ValidationFailedError("Row predicate must be a single boolean expression")

    select = statements[0]
    where = select.args.get("where")
    if where is None:
        raise ValidationFailedError("Row predicate must be a single boolean expression")

    for clause in _TRAILING_CLAUSES:
        if select.args.get(clause):
            raise ValidationFailedError(f"Row predicate may not add a {clause.upper()} clause")

    forbidden = where.find(*_FORBIDDEN_NODES)
    if forbidden is not None:
        logger.warning("Rejected row predicate containing %s", type(forbidden).__name__)
        raise ValidationFailedError(f"Row predicate may not contain {type(forbidden).__name__.upper()} statements")

    return where.this.sql(dialect=_DIALECT)
