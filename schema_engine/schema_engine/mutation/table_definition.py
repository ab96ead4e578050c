"""Structured table definitions for table reconstruction.

A :class:`TableDefinition` is a column list plus a constraint list, built
from ``PRAGMA`` metadata rather than by editing the stored ``CREATE TABLE``
text.  Mutations derive a new definition (column dropped or redefined,
foreign key added, replaced, or removed) and :meth:`TableDefinition.render`
emits fresh DDL for the replacement table.

The stored DDL is consulted for what PRAGMAs do not report:
``AUTOINCREMENT``, table options (``WITHOUT ROWID`` / ``STRICT``), ``CHECK``
constraints, column collations, and the expressions of generated columns.
The last three are extracted with :mod:`sqlglot`.  Generated columns are
recreated from their expression and never copied.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict

import sqlglot
from pydantic import BaseModel, Field
from sqlglot import exp
from sqlglot.errors import SqlglotError

from schema_engine.errors import ValidationFailedError
from schema_engine.models.schema import Column, FKAction, ForeignKeyInfo
from schema_engine.sanitize import quote_identifier

logger = logging.getLogger(__name__)

_BARE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_AUTOINCREMENT = re.compile(r"\bAUTOINCREMENT\b", re.IGNORECASE)
_TABLE_OPTIONS = re.compile(
    r"\)\s*((?:WITHOUT\s+ROWID|STRICT)(?:\s*,\s*(?:WITHOUT\s+ROWID|STRICT))*)\s*;?\s*$",
    re.IGNORECASE,
)
_SIMPLE_DEFAULT = re.compile(
    r"""^(?:
        [+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?   # number
        |0[xX][0-9A-Fa-f]+                              # hex integer
        |'(?:[^']|'')*'                                 # string
        |[xX]'[0-9A-Fa-f]*'                             # blob
        |NULL|TRUE|FALSE|CURRENT_TIME|CURRENT_DATE|CURRENT_TIMESTAMP
        |\(.*\)                                         # already parenthesised
    )$""",
    re.IGNORECASE | re.VERBOSE | re.DOTALL,
)


# ---------------------------------------------------------------------------
# Definition parts
# ---------------------------------------------------------------------------


class ColumnDefinition(BaseModel):
    name: str
    type: str = ""
    notnull: bool = False
    default: str | None = Field(default=None, description="Default expression as SQL text, rendered verbatim.")
    pk: int = 0
    checks: list[str] = Field(default_factory=list, description="Column-level CHECK expressions.")
    collation: str | None = None
    generated: bool = False
    stored: bool = Field(default=False, description="STORED rather than VIRTUAL; only meaningful when generated.")
    expression: str | None = Field(default=None, description="Generation expression of a generated column.")
    depends_on: list[str] = Field(default_factory=list, description="Columns the generation expression references.")

    @classmethod
    def from_column(cls, column: Column) -> ColumnDefinition:
        return cls(
            name=column.name,
            type=column.type,
            notnull=column.notnull,
            default=column.dflt_value,
            pk=column.pk,
            generated=column.is_generated,
            stored=column.hidden == 3,
        )


class ColumnAttributes(BaseModel):
    """Column clauses read from the stored DDL."""

    collation: str | None = None
    expression: str | None = None
    depends_on: list[str] = Field(default_factory=list)


class ForeignKeyConstraint(BaseModel):
    """A (possibly composite) foreign key declared on the table."""

    columns: list[str]
    ref_table: str
    ref_columns: list[str] = Field(
        default_factory=list,
        description="Referenced columns; empty means the referenced table's primary key.",
    )
    on_delete: FKAction = FKAction.NO_ACTION
    on_update: FKAction = FKAction.NO_ACTION

    def matches(self, column: str, ref_table: str, ref_column: str | None = None) -> bool:
        if self.ref_table != ref_table or column not in self.columns:
            return False
        if ref_column is None or not self.ref_columns:
            return True
        idx = self.columns.index(column)
        return idx < len(self.ref_columns) and self.ref_columns[idx] == ref_column

    def render(self) -> str:
        cols = ", ".join(quote_identifier(c) for c in self.columns)
        sql = f"FOREIGN KEY ({cols}) REFERENCES {quote_identifier(self.ref_table)}"
        if self.ref_columns:
            sql += "(" + ", ".join(quote_identifier(c) for c in self.ref_columns) + ")"
        if self.on_delete != FKAction.NO_ACTION:
            sql += f" ON DELETE {self.on_delete.value}"
        if self.on_update != FKAction.NO_ACTION:
            sql += f" ON UPDATE {self.on_update.value}"
        return sql


class CheckConstraint(BaseModel):
    expression: str
    columns: list[str] = Field(default_factory=list, description="Columns the expression references.")


class TableDefinition(BaseModel):
    """Column list plus constraint list of one table."""

    columns: list[ColumnDefinition]
    foreign_keys: list[ForeignKeyConstraint] = Field(default_factory=list)
    unique_constraints: list[list[str]] = Field(default_factory=list)
    checks: list[CheckConstraint] = Field(default_factory=list)
    autoincrement: bool = False
    options: str = ""

    # -- Construction ---------------------------------------------------------

    @classmethod
    def from_catalog(
        cls,
        columns: list[Column],
        foreign_keys: list[ForeignKeyInfo],
        unique_constraints: list[list[str]] | None = None,
        table_sql: str | None = None,
    ) -> TableDefinition:
        """Assemble a definition from introspection results.

        Parameters
        ----------
        columns:
            ``PRAGMA table_xinfo`` (or ``table_info``) rows.
        foreign_keys:
            ``PRAGMA foreign_key_list`` rows; rows sharing an ``id`` form
            one composite constraint.
        unique_constraints:
            Column lists of the table's UNIQUE constraints.
        table_sql:
            Stored ``CREATE TABLE`` text, if available.
        """
        definitions = [ColumnDefinition.from_column(c) for c in sorted(columns, key=lambda c: c.cid)]

        grouped: dict[int, list[ForeignKeyInfo]] = defaultdict(list)
        for fk in foreign_keys:
            grouped[fk.id].append(fk)
        fk_constraints: list[ForeignKeyConstraint] = []
        for fk_id in sorted(grouped):
            rows = sorted(grouped[fk_id], key=lambda r: r.seq)
            ref_columns = [r.to_column for r in rows if r.to_column]
            fk_constraints.append(
                ForeignKeyConstraint(
                    columns=[r.from_column for r in rows],
                    ref_table=rows[0].table,
                    ref_columns=ref_columns if len(ref_columns) == len(rows) else [],
                    on_delete=rows[0].on_delete,
                    on_update=rows[0].on_update,
                )
            )

        checks: list[CheckConstraint] = []
        autoincrement = False
        options = ""
        if table_sql:
            table_checks, column_checks = extract_checks(table_sql)
            attributes = extract_column_attributes(table_sql)
            checks = table_checks
            definitions = [
                d.model_copy(update={"checks": column_checks.get(d.name, []), **_attribute_updates(d, attributes)})
                for d in definitions
            ]
            autoincrement = bool(_AUTOINCREMENT.search(table_sql))
            match = _TABLE_OPTIONS.search(table_sql.strip())
            if match:
                options = " ".join(match.group(1).upper().split())

        return cls(
            columns=definitions,
            foreign_keys=fk_constraints,
            unique_constraints=[list(u) for u in unique_constraints or []],
            checks=checks,
            autoincrement=autoincrement,
            options=options,
        )

    # -- Queries --------------------------------------------------------------

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def stored_column_names(self) -> list[str]:
        """Columns whose values are copied during a rebuild (everything but generated columns)."""
        return [c.name for c in self.columns if not c.generated]

    @property
    def primary_key(self) -> list[str]:
        return [c.name for c in sorted(self.columns, key=lambda c: c.pk) if c.pk > 0]

    def column(self, name: str) -> ColumnDefinition | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def find_foreign_key(self, column: str, ref_table: str, ref_column: str | None = None) -> ForeignKeyConstraint | None:
        for fk in self.foreign_keys:
            if fk.matches(column, ref_table, ref_column):
                return fk
        return None

    # -- Derivations ----------------------------------------------------------

    def without_column(self, name: str) -> TableDefinition:
        """Drop *name* and every constraint that mentions it.

        Raises
        ------
        ValidationFailedError
            If a generated column is computed from *name*.
        """
        dependents = [c.name for c in self.columns if c.generated and c.name != name and name in c.depends_on]
        if dependents:
            raise ValidationFailedError(
                f"Cannot drop '{name}': generated column(s) {', '.join(dependents)} are computed from it"
            )
        for fk in self.foreign_keys:
            if name in fk.columns:
                logger.warning("Dropping foreign key %s -> %s along with column '%s'", fk.columns, fk.ref_table, name)
        for check in self.checks:
            if name in check.columns:
                logger.warning("Dropping CHECK (%s) along with column '%s'", check.expression, name)
        return self.model_copy(
            update={
                "columns": [c for c in self.columns if c.name != name],
                "foreign_keys": [fk for fk in self.foreign_keys if name not in fk.columns],
                "unique_constraints": [u for u in self.unique_constraints if name not in u],
                "checks": [c for c in self.checks if name not in c.columns],
            }
        )

    def with_column(self, column: ColumnDefinition) -> TableDefinition:
        """Replace the column of the same name, keeping its position."""
        return self.model_copy(update={"columns": [column if c.name == column.name else c for c in self.columns]})

    def with_foreign_key(self, fk: ForeignKeyConstraint) -> TableDefinition:
        return self.model_copy(update={"foreign_keys": [*self.foreign_keys, fk]})

    def without_foreign_key(self, fk: ForeignKeyConstraint) -> TableDefinition:
        return self.model_copy(update={"foreign_keys": [f for f in self.foreign_keys if f != fk]})

    def replacing_foreign_key(self, old: ForeignKeyConstraint, new: ForeignKeyConstraint) -> TableDefinition:
        return self.model_copy(update={"foreign_keys": [new if f == old else f for f in self.foreign_keys]})

    # -- Rendering ------------------------------------------------------------

    def render(self, table_name: str) -> str:
        """Emit ``CREATE TABLE`` DDL for this definition under *table_name*."""
        pk = self.primary_key
        parts = [self._render_column(c, inline_pk=len(pk) == 1) for c in self.columns]
        if len(pk) > 1:
            parts.append("PRIMARY KEY (" + ", ".join(quote_identifier(c) for c in pk) + ")")
        for unique in self.unique_constraints:
            parts.append("UNIQUE (" + ", ".join(quote_identifier(c) for c in unique) + ")")
        for check in self.checks:
            parts.append(f"CHECK ({check.expression})")
        for fk in self.foreign_keys:
            parts.append(fk.render())

        sql = f"CREATE TABLE {quote_identifier(table_name)} ({', '.join(parts)})"
        if self.options:
            sql += f" {self.options}"
        return sql

    def _render_column(self, column: ColumnDefinition, *, inline_pk: bool) -> str:
        sql = quote_identifier(column.name)
        if column.type:
            sql += f" {column.type}"
        if inline_pk and column.pk > 0:
            sql += " PRIMARY KEY"
            if self.autoincrement:
                sql += " AUTOINCREMENT"
        if column.notnull:
            sql += " NOT NULL"
        if column.default is not None and column.default != "":
            sql += f" DEFAULT {render_default(column.default)}"
        if column.collation:
            sql += f" COLLATE {render_collation(column.collation)}"
        if column.generated:
            sql += f" GENERATED ALWAYS AS ({column.expression}) {'STORED' if column.stored else 'VIRTUAL'}"
        for check in column.checks:
            sql += f" CHECK ({check})"
        return sql


def render_default(expression: str) -> str:
    """Render a stored default expression; non-literal expressions are parenthesised."""
    text = expression.strip()
    if _SIMPLE_DEFAULT.match(text):
        return text
    return f"({text})"


def render_collation(name: str) -> str:
    if _BARE_NAME.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


def _attribute_updates(column: ColumnDefinition, attributes: dict[str, ColumnAttributes]) -> dict[str, object]:
    found = attributes.get(column.name)
    if found is None:
        return {}
    updates: dict[str, object] = {"collation": found.collation}
    if column.generated:
        updates["expression"] = found.expression
        updates["depends_on"] = found.depends_on
    return updates


# ---------------------------------------------------------------------------
# DDL extraction
# ---------------------------------------------------------------------------


def _parse_schema(table_sql: str) -> exp.Schema | None:
    try:
        tree = sqlglot.parse_one(table_sql, read="sqlite")
    except SqlglotError as exc:
        logger.warning("Could not parse table DDL: %s", exc)
        return None
    schema = tree.this if isinstance(tree, exp.Create) else None
    return schema if isinstance(schema, exp.Schema) else None


def _generation_expression(kind: exp.Expression) -> exp.Expression | None:
    if isinstance(kind, exp.ComputedColumnConstraint):
        node = kind.this
    elif isinstance(kind, exp.GeneratedAsIdentityColumnConstraint):
        node = kind.args.get("expression")
    else:
        return None
    while isinstance(node, exp.Paren):
        node = node.this
    return node


def extract_column_attributes(table_sql: str) -> dict[str, ColumnAttributes]:
    """Map column names to their COLLATE and generation clauses.

    Columns with neither clause are omitted; the result is empty if the
    DDL cannot be parsed.
    """
    schema = _parse_schema(table_sql)
    if schema is None:
        return {}

    attributes: dict[str, ColumnAttributes] = {}
    for node in schema.expressions:
        if not isinstance(node, exp.ColumnDef):
            continue
        collation: str | None = None
        expression: exp.Expression | None = None
        for constraint in node.args.get("constraints") or []:
            kind = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else None
            if isinstance(kind, exp.CollateColumnConstraint):
                collation = kind.this.name
            elif kind is not None and expression is None:
                expression = _generation_expression(kind)
        if collation is None and expression is None:
            continue
        attributes[node.name] = ColumnAttributes(
            collation=collation,
            expression=expression.sql(dialect="sqlite") if expression is not None else None,
            depends_on=sorted({col.name for col in expression.find_all(exp.Column)}) if expression is not None else [],
        )
    return attributes


def extract_checks(table_sql: str) -> tuple[list[CheckConstraint], dict[str, list[str]]]:
    """Pull table-level and column-level CHECK constraints out of DDL.

    Returns
    -------
    tuple
        ``(table_checks, column_checks)`` where ``column_checks`` maps a
        column name to its CHECK expressions.  Both are empty if the DDL
        cannot be parsed.
    """
    schema = _parse_schema(table_sql)
    if schema is None:
        return [], {}

    table_checks: list[CheckConstraint] = []
    column_checks: dict[str, list[str]] = {}

    for node in schema.expressions:
        if isinstance(node, exp.ColumnDef):
            for constraint in node.args.get("constraints") or []:
                kind = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else None
                if isinstance(kind, exp.CheckColumnConstraint):
                    column_checks.setdefault(node.name, []).append(kind.this.sql(dialect="sqlite"))
            continue

        candidates = [node]
        if isinstance(node, exp.Constraint):
            candidates = list(node.expressions)
        for candidate in candidates:
            if isinstance(candidate, exp.CheckColumnConstraint):
                condition = candidate.this
                table_checks.append(
                    CheckConstraint(
                        expression=condition.sql(dialect="sqlite"),
                        columns=sorted({col.name for col in condition.find_all(exp.Column)}),
                    )
                )

    return table_checks, column_checks
