"""Typed records for SQLite-family metadata queries.

PRAGMA result rows arrive as loosely-typed dicts from the remote execution
API.  They are validated into these models at the introspection boundary so
that graph, cycle, cascade, and mutation logic only ever sees stable types.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schema_engine.errors import ValidationFailedError


class FKAction(str, Enum):
    """ON DELETE / ON UPDATE behaviour of a foreign key."""

    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


def normalize_action(value: str | FKAction | None) -> FKAction:
    """Case-normalise an action keyword; absence means ``NO ACTION``.

    Raises
    ------
    ValidationFailedError
        If *value* is not one of the five action keywords.
    """
    if value is None:
        return FKAction.NO_ACTION
    if isinstance(value, FKAction):
        return value
    text = " ".join(str(value).split()).upper()
    if not text:
        return FKAction.NO_ACTION
    try:
        return FKAction(text)
    except ValueError:
        allowed = ", ".join(a.value for a in FKAction)
        raise ValidationFailedError(f"Invalid foreign key action '{value}'; expected one of: {allowed}") from None


class TableInfo(BaseModel):
    """One row of the table listing."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "table"


class Column(BaseModel):
    """A column as reported by ``PRAGMA table_info`` or ``PRAGMA table_xinfo``.

    Immutable snapshot taken at introspection time.  ``hidden`` is only
    reported by ``table_xinfo``: 2 marks a VIRTUAL generated column, 3 a
    STORED one.
    """

    model_config = ConfigDict(frozen=True)

    cid: int = 0
    name: str
    type: str = Field(default="", description="Declared type; free text, not enforced by the engine.")
    notnull: bool = False
    dflt_value: str | None = Field(default=None, description="Default expression as SQL text.")
    pk: int = Field(default=0, description="1-based position in the primary key, 0 if not part of it.")
    hidden: int = 0

    @field_validator("type", mode="before")
    @classmethod
    def _none_type(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("dflt_value", mode="before")
    @classmethod
    def _stringify_default(cls, v: Any) -> str | None:
        return None if v is None else str(v)

    @property
    def is_primary_key(self) -> bool:
        return self.pk > 0

    @property
    def is_generated(self) -> bool:
        return self.hidden in (2, 3)


class ForeignKeyInfo(BaseModel):
    """One row of ``PRAGMA foreign_key_list``.

    Composite keys produce several rows sharing ``id`` with increasing
    ``seq``.  ``to_column`` is ``None`` when the constraint references the
    parent's primary key implicitly.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int = 0
    seq: int = 0
    table: str
    from_column: str = Field(alias="from")
    to_column: str | None = Field(default=None, alias="to")
    on_update: FKAction = FKAction.NO_ACTION
    on_delete: FKAction = FKAction.NO_ACTION
    match: str | None = None

    @field_validator("on_update", "on_delete", mode="before")
    @classmethod
    def _normalise(cls, v: Any) -> FKAction:
        return normalize_action(v)


class IndexInfo(BaseModel):
    """One row of ``PRAGMA index_list``.

    ``origin`` is ``c`` for ``CREATE INDEX``, ``u`` for a UNIQUE constraint,
    and ``pk`` for the primary key.
    """

    model_config = ConfigDict(frozen=True)

    seq: int = 0
    name: str
    unique: bool = False
    origin: str = "c"
    partial: bool = False

    @property
    def is_user_created(self) -> bool:
        return self.origin == "c"


class IndexDefinition(BaseModel):
    """A user-created index and the DDL that recreates it."""

    model_config = ConfigDict(frozen=True)

    name: str
    sql: str
    columns: list[str] = Field(default_factory=list)


class QueryResult(BaseModel):
    """Rows and metadata returned by a single statement."""

    results: list[dict[str, Any]] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)

    def scalar(self, key: str = "count", default: int = 0) -> int:
        """Return an integer from the first row, or *default* if absent."""
        if not self.results:
            return default
        value = self.results[0].get(key)
        return default if value is None else int(value)


# ---------------------------------------------------------------------------
# Type affinity
# ---------------------------------------------------------------------------

_AFFINITY_RULES: tuple[tuple[str, str], ...] = (
    ("INT", "INTEGER"),
    ("CHAR", "TEXT"),
    ("CLOB", "TEXT"),
    ("TEXT", "TEXT"),
    ("BLOB", "BLOB"),
    ("REAL", "REAL"),
    ("FLOA", "REAL"),
    ("DOUB", "REAL"),
)

_NUMERIC_AFFINITIES = frozenset({"INTEGER", "REAL", "NUMERIC"})


def type_affinity(declared_type: str) -> str:
    """Return the SQLite column affinity for a declared type.

    Rules are applied in order, as the engine does: ``INT`` wins over
    ``CHAR``, and an empty declaration has ``BLOB`` affinity.
    """
    upper = declared_type.upper()
    if not upper.strip():
        return "BLOB"
    for needle, affinity in _AFFINITY_RULES:
        if needle in upper:
            return affinity
    return "NUMERIC"


def are_types_compatible(source_type: str, target_type: str) -> bool:
    """Whether a foreign key from *source_type* to *target_type* compares sanely.

    Equal affinities are compatible, and all numeric affinities are
    mutually compatible.  Columns declared without a type accept anything.
    """
    if not source_type.strip() or not target_type.strip():
        return True
    source = type_affinity(source_type)
    target = type_affinity(target_type)
    if source == target:
        return True
    return source in _NUMERIC_AFFINITIES and target in _NUMERIC_AFFINITIES


_TYPE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?: [A-Za-z_][A-Za-z0-9_]*)*(?:\s*\(\s*[+-]?\d+\s*(?:,\s*[+-]?\d+\s*)?\))?$")


def validate_declared_type(declared_type: str) -> str:
    """Allow-list a declared column type before it is interpolated into DDL."""
    text = " ".join(declared_type.split())
    if not _TYPE_PATTERN.match(text):
        raise ValidationFailedError(f"Invalid column type '{declared_type}'")
    return text
