"""schema-engine CLI -- Typer-based interface over local SQLite databases.

Each command takes a database id that maps to ``<root>/<id>.sqlite3``.
Human-readable output goes to *stderr* via Rich; ``--json`` writes the
result model to *stdout* instead so that output can be piped.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import typer
from pydantic import BaseModel
from rich.console import Console

from schema_engine.cli.display import (
    display_cycle_check,
    display_cycles,
    display_dependencies,
    display_fix_results,
    display_graph,
    display_mutation,
    display_profile,
    display_simulation,
    display_validation,
)
from schema_engine.config import load_settings
from schema_engine.errors import SchemaEngineError
from schema_engine.executor.local_executor import LocalExecutor
from schema_engine.logging_config import configure_logging
from schema_engine.mutation.engine import MutationResult
from schema_engine.service import SchemaService
from schema_engine.telemetry.profiling import ProfileCollector
from schema_engine.validation.constraint_validator import FixResult, FixStrategy, ViolationType

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="schema-engine",
    help="Foreign-key analysis and schema changes for SQLite databases.",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_root: Path = Path(".")


@app.callback()
def _global_options(
    ctx: typer.Context,
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    root: Path = typer.Option(
        Path("."),
        "--root",
        help="Directory holding <database>.sqlite3 files.",
        envvar="SCHEMA_ENGINE_LOCAL_DB_ROOT",
        file_okay=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
    profile: bool = typer.Option(
        False,
        "--profile",
        help="Print operation timings to stderr when the command finishes.",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _root  # noqa: PLW0603
    _json_output = json_mode
    _root = root
    configure_logging(load_settings(log_level="DEBUG" if verbose else "WARNING"))
    if profile:
        ProfileCollector.reset()
        ctx.call_on_close(_print_profile)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service() -> SchemaService:
    settings = load_settings(local_db_root=_root)
    return SchemaService(LocalExecutor(_root), settings)


def _print_profile() -> None:
    display_profile(console, ProfileCollector.get_instance().get_all_stats())


def _fail(exc: SchemaEngineError) -> typer.Exit:
    console.print(f"[red]{exc}[/red]")
    return typer.Exit(code=3)


def _emit_json(payload: object) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def _emit_mutation(result: MutationResult) -> None:
    if _json_output:
        _emit_json(result)
    else:
        display_mutation(console, result)


# ---------------------------------------------------------------------------
# Analysis commands
# ---------------------------------------------------------------------------


@app.command()
def graph(
    database: str = typer.Argument(..., help="Database id."),
    tables: list[str] = typer.Option(
        [],
        "--table",
        "-t",
        help="Show inbound/outbound dependencies for this table instead (repeatable).",
    ),
) -> None:
    """Show the foreign-key graph of a database."""
    service = _service()
    try:
        if tables:
            deps = service.dependencies(database, tables)
            if _json_output:
                _emit_json({name: d.model_dump(mode="json") for name, d in deps.items()})
            else:
                display_dependencies(console, deps)
            return
        fk_graph = service.build_graph(database)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc

    if _json_output:
        payload = fk_graph.model_dump(mode="json")
        payload["incomplete"] = fk_graph.incomplete
        _emit_json(payload)
    else:
        display_graph(console, fk_graph)


@app.command()
def cycles(database: str = typer.Argument(..., help="Database id.")) -> None:
    """Detect circular foreign-key dependencies and suggest break points."""
    try:
        report = _service().foreign_keys_with_cycles(database)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc

    if _json_output:
        _emit_json(report.model_dump(mode="json", include={"cycles", "suggestions"}))
    else:
        display_cycles(console, report)


@app.command("can-add-fk")
def can_add_fk(
    database: str = typer.Argument(..., help="Database id."),
    source: str = typer.Argument(..., help="Referencing table."),
    target: str = typer.Argument(..., help="Referenced table."),
) -> None:
    """Check whether a foreign key SOURCE -> TARGET would close a cycle.

    Exits with code 1 when it would.
    """
    try:
        result = _service().would_create_cycle(database, source, target)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc

    if _json_output:
        _emit_json(result)
    else:
        display_cycle_check(console, result, source, target)
    if result.would_create_cycle:
        raise typer.Exit(code=1)


@app.command()
def simulate(
    database: str = typer.Argument(..., help="Database id."),
    table: str = typer.Argument(..., help="Table rows would be deleted from."),
    where: str | None = typer.Option(None, "--where", "-w", help="Row predicate, e.g. \"id = 1\"."),
    exact: bool = typer.Option(False, "--exact", help="Count referencing rows with sub-selects."),
) -> None:
    """Simulate the cascading impact of deleting rows from TABLE."""
    try:
        result = _service().simulate(database, table, where, exact=exact)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc

    if _json_output:
        _emit_json(result)
    else:
        display_simulation(console, result)


@app.command()
def validate(
    database: str = typer.Argument(..., help="Database id."),
    table: str | None = typer.Option(None, "--table", "-t", help="Validate a single table."),
    fix: FixStrategy | None = typer.Option(
        None,
        "--fix",
        help="Repair every foreign-key violation with this strategy (delete | set_null).",
    ),
) -> None:
    """Report constraint violations, optionally repairing foreign-key orphans."""
    service = _service()
    try:
        report = service.validate(database, table)
        fixes: list[FixResult] = []
        if fix is not None:
            ids = [
                v.id
                for v in report.violations
                if v.type == ViolationType.FOREIGN_KEY and fix in v.fix_strategies
            ]
            fixes = service.apply_fixes(database, ids, fix)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc

    if _json_output:
        payload = report.model_dump(mode="json")
        if fix is not None:
            payload["fixes"] = [f.model_dump(mode="json") for f in fixes]
        _emit_json(payload)
    else:
        display_validation(console, report)
        if fix is not None:
            display_fix_results(console, fixes)


# ---------------------------------------------------------------------------
# Column commands
# ---------------------------------------------------------------------------


@app.command("add-column")
def add_column(
    database: str = typer.Argument(..., help="Database id."),
    table: str = typer.Argument(...),
    column: str = typer.Argument(...),
    column_type: str = typer.Option("TEXT", "--type", help="Declared column type."),
    not_null: bool = typer.Option(False, "--not-null", help="Add a NOT NULL constraint."),
    default: str | None = typer.Option(None, "--default", help="Default value."),
) -> None:
    """Add a column to TABLE."""
    try:
        result = _service().add_column(database, table, column, column_type, notnull=not_null, default=default)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc
    _emit_mutation(result)


@app.command("modify-column")
def modify_column(
    database: str = typer.Argument(..., help="Database id."),
    table: str = typer.Argument(...),
    column: str = typer.Argument(...),
    column_type: str | None = typer.Option(None, "--type", help="New declared type."),
    not_null: bool | None = typer.Option(None, "--not-null/--nullable", help="Change nullability."),
    default: str | None = typer.Option(None, "--default", help="New default value."),
    drop_default: bool = typer.Option(False, "--drop-default", help="Remove the default value."),
) -> None:
    """Change a column's type, nullability, or default (rebuilds TABLE)."""
    try:
        result = _service().modify_column(
            database,
            table,
            column,
            column_type=column_type,
            notnull=not_null,
            default=default,
            drop_default=drop_default,
        )
    except SchemaEngineError as exc:
        raise _fail(exc) from exc
    _emit_mutation(result)


@app.command("drop-column")
def drop_column(
    database: str = typer.Argument(..., help="Database id."),
    table: str = typer.Argument(...),
    column: str = typer.Argument(...),
) -> None:
    """Drop a column (rebuilds TABLE)."""
    try:
        result = _service().drop_column(database, table, column)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc
    _emit_mutation(result)


@app.command("rename-column")
def rename_column(
    database: str = typer.Argument(..., help="Database id."),
    table: str = typer.Argument(...),
    column: str = typer.Argument(...),
    new_name: str = typer.Argument(...),
) -> None:
    """Rename a column."""
    try:
        result = _service().rename_column(database, table, column, new_name)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc
    _emit_mutation(result)


# ---------------------------------------------------------------------------
# Foreign-key commands
# ---------------------------------------------------------------------------


@app.command("add-fk")
def add_fk(
    database: str = typer.Argument(..., help="Database id."),
    table: str = typer.Argument(..., help="Referencing table."),
    column: str = typer.Argument(..., help="Referencing column."),
    ref_table: str = typer.Argument(..., help="Referenced table."),
    ref_column: str = typer.Argument(..., help="Referenced column."),
    on_delete: str = typer.Option("NO ACTION", "--on-delete"),
    on_update: str = typer.Option("NO ACTION", "--on-update"),
    allow_cycle: bool = typer.Option(False, "--allow-cycle", help="Permit a new circular dependency."),
) -> None:
    """Add a foreign key (rebuilds TABLE)."""
    try:
        result = _service().add_foreign_key(
            database,
            table,
            column,
            ref_table,
            ref_column,
            on_delete=on_delete,
            on_update=on_update,
            allow_cycle=allow_cycle,
        )
    except SchemaEngineError as exc:
        raise _fail(exc) from exc
    _emit_mutation(result)


@app.command("modify-fk")
def modify_fk(
    database: str = typer.Argument(..., help="Database id."),
    constraint: str = typer.Argument(..., help="Constraint id, fk_<table>_<column>_<refTable>_<refColumn>."),
    on_delete: str | None = typer.Option(None, "--on-delete"),
    on_update: str | None = typer.Option(None, "--on-update"),
) -> None:
    """Change the actions of a foreign key (rebuilds its table)."""
    try:
        result = _service().modify_foreign_key(database, constraint, on_delete=on_delete, on_update=on_update)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc
    _emit_mutation(result)


@app.command("remove-fk")
def remove_fk(
    database: str = typer.Argument(..., help="Database id."),
    constraint: str = typer.Argument(..., help="Constraint id, fk_<table>_<column>_<refTable>_<refColumn>."),
) -> None:
    """Remove a foreign key (rebuilds its table)."""
    try:
        result = _service().remove_foreign_key(database, constraint)
    except SchemaEngineError as exc:
        raise _fail(exc) from exc
    _emit_mutation(result)
