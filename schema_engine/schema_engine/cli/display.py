"""Rich output formatting for the schema-engine CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from schema_engine.graph import CycleCheckResult, TableDependencies
    from schema_engine.models.graph import ForeignKeyGraph
    from schema_engine.mutation import MutationResult
    from schema_engine.service import CycleReport
    from schema_engine.simulation import CascadeSimulationResult
    from schema_engine.validation import FixResult, ValidationReport


_SEVERITY_COLOURS: dict[str, str] = {
    "high": "red",
    "critical": "red",
    "medium": "yellow",
    "warning": "yellow",
    "low": "cyan",
    "info": "cyan",
}


def _coloured(severity: str) -> str:
    colour = _SEVERITY_COLOURS.get(severity, "white")
    return f"[{colour}]{severity}[/{colour}]"


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


def display_graph(console: Console, graph: ForeignKeyGraph) -> None:
    """Render tables and foreign keys of a graph."""
    tables = Table(title=f"Tables ({len(graph.nodes)})", show_lines=False)
    tables.add_column("Table", style="bold")
    tables.add_column("Columns", justify="right")
    tables.add_column("Rows", justify="right")
    tables.add_column("Primary key")
    for node in graph.nodes:
        tables.add_row(node.name, str(len(node.columns)), str(node.row_count), ", ".join(node.primary_key_columns))
    console.print(tables)

    if not graph.edges:
        console.print("[dim]No foreign keys.[/dim]")
    else:
        edges = Table(title=f"Foreign keys ({len(graph.edges)})")
        edges.add_column("Constraint", style="dim")
        edges.add_column("From")
        edges.add_column("To")
        edges.add_column("ON DELETE")
        edges.add_column("ON UPDATE")
        for edge in graph.edges:
            edges.add_row(
                edge.id,
                f"{edge.source_table}.{edge.source_column}",
                f"{edge.target_table}.{edge.target_column}",
                edge.on_delete.value,
                edge.on_update.value,
            )
        console.print(edges)

    for failure in graph.failures:
        console.print(f"[yellow]Incomplete: {failure.table} ({failure.stage}): {failure.message}[/yellow]")


def display_dependencies(console: Console, dependencies: dict[str, TableDependencies]) -> None:
    for table, deps in dependencies.items():
        grid = Table(title=f"Dependencies of {table}")
        grid.add_column("Direction")
        grid.add_column("Table")
        grid.add_column("Column")
        grid.add_column("ON DELETE")
        grid.add_column("Rows", justify="right")
        for ref in deps.outbound:
            grid.add_row("references", ref.table, ref.column, ref.on_delete.value, str(ref.row_count))
        for ref in deps.inbound:
            grid.add_row("referenced by", ref.table, ref.column, ref.on_delete.value, str(ref.row_count))
        console.print(grid)


# ---------------------------------------------------------------------------
# Cycles
# ---------------------------------------------------------------------------


def display_cycles(console: Console, report: CycleReport) -> None:
    if not report.cycles:
        console.print("[green]No circular dependencies.[/green]")
        return

    for cycle in report.cycles:
        lines = [f"[bold]Severity:[/bold] {_coloured(cycle.severity.value)}", cycle.message]
        for suggestion in report.suggestions.get(cycle.key, []):
            lines.append(f"  - {suggestion.constraint_name}: {suggestion.suggestion}")
        console.print(Panel("\n".join(lines), title=cycle.path, border_style="yellow"))


def display_cycle_check(console: Console, result: CycleCheckResult, source: str, target: str) -> None:
    if result.would_create_cycle and result.cycle is not None:
        console.print(f"[red]Adding {source} -> {target} would create a cycle:[/red] {result.cycle.path}")
    else:
        console.print(f"[green]Adding {source} -> {target} does not create a cycle.[/green]")


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------


def display_simulation(console: Console, result: CascadeSimulationResult) -> None:
    """Render a cascade simulation: summary, affected tables, and findings."""
    header = [
        f"[bold]Target:[/bold]         {result.target_table}",
        f"[bold]Predicate:[/bold]      {result.predicate or '(all rows)'}",
        f"[bold]Matched rows:[/bold]   {result.matched_rows}",
        f"[bold]Total affected:[/bold] {result.total_affected_rows}"
        + ("" if result.exact else " (estimate)"),
        f"[bold]Max depth:[/bold]      {result.max_depth}",
    ]
    console.print(Panel("\n".join(header), title="Cascade Simulation", border_style="blue"))

    if result.affected_tables:
        table = Table(title="Affected tables")
        table.add_column("Table", style="bold")
        table.add_column("Action")
        table.add_column("Before", justify="right")
        table.add_column("After", justify="right")
        table.add_column("Depth", justify="right")
        for affected in result.affected_tables:
            table.add_row(
                affected.table_name,
                affected.action,
                str(affected.rows_before),
                str(affected.rows_after),
                str(affected.depth),
            )
        console.print(table)

    for constraint in result.constraints:
        console.print(f"[red]Blocked:[/red] {constraint.message}")
    for warning in result.warnings:
        console.print(f"{_coloured(warning.severity.value)} {warning.message}")
    for circular in result.circular_dependencies:
        console.print(f"[yellow]{circular.message}[/yellow]")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def display_validation(console: Console, report: ValidationReport) -> None:
    if report.is_healthy:
        console.print(f"[green]No constraint violations in {report.database}.[/green]")
    else:
        table = Table(title=f"Constraint violations ({report.total_violations})")
        table.add_column("Id", style="dim")
        table.add_column("Severity")
        table.add_column("Table")
        table.add_column("Rows", justify="right")
        table.add_column("Details")
        table.add_column("Fixes")
        for violation in report.violations:
            table.add_row(
                violation.id,
                _coloured(violation.severity.value),
                violation.table,
                str(violation.affected_rows),
                violation.details,
                ", ".join(s.value for s in violation.fix_strategies),
            )
        console.print(table)

    if report.skipped_tables:
        console.print(f"[yellow]Checks failed for: {', '.join(report.skipped_tables)}[/yellow]")


def display_fix_results(console: Console, results: list[FixResult]) -> None:
    for result in results:
        if result.success:
            console.print(f"[green]{result.violation_id}: {result.rows_affected} row(s) fixed[/green]")
        else:
            console.print(f"[red]{result.violation_id}: {result.error}[/red]")


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------


def display_mutation(console: Console, result: MutationResult) -> None:
    steps = " -> ".join(step.value for step in result.steps)
    console.print(f"[green]{result.operation} on {result.table} complete[/green] [dim]({steps})[/dim]")

    table = Table(title=result.table)
    table.add_column("Column", style="bold")
    table.add_column("Type")
    table.add_column("Not null")
    table.add_column("Default")
    table.add_column("PK", justify="right")
    for column in result.columns:
        table.add_row(
            column.name,
            column.type,
            "yes" if column.notnull else "",
            column.dflt_value or "",
            str(column.pk) if column.pk else "",
        )
    console.print(table)

    for note in result.notes:
        console.print(f"[yellow]{note}[/yellow]")


# ---------------------------------------------------------------------------
# Profiling
# ---------------------------------------------------------------------------


def display_profile(console: Console, stats: list[dict[str, Any]]) -> None:
    """Render per-operation timings collected during the command."""
    if not stats:
        console.print("[dim]No profiled operations.[/dim]")
        return
    table = Table(title="Timings (ms)")
    table.add_column("Operation", style="bold")
    table.add_column("Calls", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("p95", justify="right")
    table.add_column("Max", justify="right")
    for row in stats:
        table.add_row(
            row["operation"],
            str(row["count"]),
            str(row["failures"]) if row["failures"] else "",
            f"{row['mean_ms']:.3f}",
            f"{row['p95_ms']:.3f}",
            f"{row['max_ms']:.3f}",
        )
    console.print(table)
