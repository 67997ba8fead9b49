"""memgraph CLI: knowledge graph stored as a line-delimited JSON file.

Commands:
    memgraph serve                       start stdio MCP server
    memgraph graph                       dump entities and relations
    memgraph search QUERY                search entities (counts as access)
    memgraph stale --days N              entities not updated in N days
    memgraph frequent --min N            most accessed entities
    memgraph verify                      report orphaned relations
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from memgraph.config import load_config
from memgraph.manager import KnowledgeGraphManager
from memgraph.mcp import format_integrity_report, run_server
from memgraph.store import GraphStore

if TYPE_CHECKING:
    from memgraph.config import MemoryConfig
    from memgraph.models import Entity, KnowledgeGraph

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _cfg(ctx: click.Context) -> MemoryConfig:
    return ctx.obj  # type: ignore[no-any-return]


def _manager(ctx: click.Context) -> KnowledgeGraphManager:
    return KnowledgeGraphManager(GraphStore(_cfg(ctx).memory_file_path))


def _entity_table(title: str, entities: list[Entity]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Name", no_wrap=True)
    table.add_column("Type", style="dim")
    table.add_column("Obs", justify="right")
    table.add_column("Access", justify="right")
    table.add_column("Updated", style="dim")
    for e in entities:
        table.add_row(
            e.name, e.entity_type, str(len(e.observations)),
            str(e.metadata.access_count), e.updated_at[:19],
        )
    return table


def _print_graph(console: Console, graph: KnowledgeGraph, title: str) -> None:
    console.print(_entity_table(title, graph.entities))
    if graph.relations:
        rel_table = Table(show_header=True, header_style="bold")
        rel_table.add_column("From")
        rel_table.add_column("Relation", style="cyan")
        rel_table.add_column("To")
        for r in graph.relations:
            rel_table.add_row(r.source, r.relation_type, r.target)
        console.print(rel_table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="memgraph")
@click.option("--file", "file_path", default=None, help="Graph file (overrides MEMORY_FILE_PATH)")
@click.pass_context
def cli(ctx: click.Context, file_path: str | None) -> None:
    """Knowledge graph memory backed by a JSONL file."""
    try:
        cfg = load_config(file_path=str(Path(file_path).resolve()) if file_path else None)
    except (OSError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    logging.basicConfig(
        level=cfg.log_level_value,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = cfg


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Start the stdio MCP server."""
    run_server(_cfg(ctx))


@cli.command()
@click.pass_context
def graph(ctx: click.Context) -> None:
    """Show every entity and relation."""
    cfg = _cfg(ctx)
    store = GraphStore(cfg.memory_file_path)
    g, corrupt = asyncio.run(store.load_with_diagnostics())
    console = Console()
    _print_graph(console, g, f"{cfg.memory_file_path}")
    for c in corrupt:
        console.print(f"[yellow]⚠ skipped line {c.line_number}: {c.error}[/yellow]")


@cli.command()
@click.argument("query")
@click.pass_context
def search(ctx: click.Context, query: str) -> None:
    """Search entity names, types and observations."""
    result = asyncio.run(_manager(ctx).search_nodes(query))
    if not result.entities:
        click.echo("(no results)")
        return
    _print_graph(Console(), result, f"search: {query}")


@cli.command()
@click.option("--days", "-d", type=float, default=30, show_default=True, help="Age threshold in days")
@click.option("--type", "entity_type", default=None, help="Only entities of this type")
@click.pass_context
def stale(ctx: click.Context, days: float, entity_type: str | None) -> None:
    """List entities not updated recently, most used first."""
    rows = asyncio.run(_manager(ctx).get_stale_entities(days, entity_type))
    if not rows:
        click.echo("No stale entities.")
        return
    table = Table(title=f"stale > {days:g} days", show_header=True, header_style="bold")
    table.add_column("Name", no_wrap=True)
    table.add_column("Type", style="dim")
    table.add_column("Days", justify="right")
    table.add_column("Recommendation")
    for s in rows:
        table.add_row(s.entity.name, s.entity.entity_type, str(s.days_since_update), s.recommendation)
    Console().print(table)


@cli.command()
@click.option("--min", "min_access_count", type=int, default=5, show_default=True)
@click.option("--type", "entity_type", default=None, help="Only entities of this type")
@click.pass_context
def frequent(ctx: click.Context, min_access_count: int, entity_type: str | None) -> None:
    """List entities accessed at least --min times."""
    entities = asyncio.run(_manager(ctx).get_frequently_used(min_access_count, entity_type))
    if not entities:
        click.echo("No entities reach that access count.")
        return
    Console().print(_entity_table(f"accessed >= {min_access_count}", entities))


@cli.command()
@click.option("--max-suggestions", "-n", type=int, default=3, show_default=True)
@click.pass_context
def verify(ctx: click.Context, max_suggestions: int) -> None:
    """Check that every relation points at existing entities."""
    report = asyncio.run(_manager(ctx).verify_graph_integrity(max_suggestions))
    click.echo(format_integrity_report(report, include_json=False))
    if not report.is_valid:
        ctx.exit(1)
