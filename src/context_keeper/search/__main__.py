"""CLI entry point for search.

Allows searching archived contexts and recurring patterns via command line.
"""

import sys
from datetime import datetime
from pathlib import Path

import click

from context_keeper import api
from context_keeper.config import load_config
from context_keeper.errors import ContextKeeperError
from context_keeper.logging import get_logger
from context_keeper.models import SearchResult, parse_timestamp
from context_keeper.search.patterns import PATTERN_TYPES
from context_keeper.search.retriever import SearchFilters

logger = get_logger("search")


def format_timestamp(ts: str) -> str:
    """Format timestamp for display."""
    dt = parse_timestamp(ts)
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else ts or "unknown"


def headline(result: SearchResult) -> str:
    context = result.context
    if context.problems:
        return context.problems[0].question
    if context.decisions:
        return context.decisions[0].decision
    if context.implementations:
        return context.implementations[0].description
    return "(no extracted items)"


def print_result(result: SearchResult, verbose: bool = False) -> None:
    """Print one search hit."""
    context = result.context
    lines = headline(result).splitlines()
    first_line = lines[0] if lines else ""
    click.echo(
        f"\033[36m[{format_timestamp(context.timestamp)}]\033[0m "
        f"\033[1m{first_line[:100]}\033[0m  ({result.relevance:.2f})"
    )
    click.echo(f"Session: {context.session_id}")
    if verbose:
        click.echo(f"Project: {context.project_path}")
        click.echo(
            f"Problems: {len(context.problems)} | Implementations: {len(context.implementations)}"
            f" | Decisions: {len(context.decisions)}"
        )
    for match in result.matches[:3]:
        click.echo(f"  {match.field}: {match.snippet}")
    click.echo("-" * 40)


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file")
@click.option("--root", type=click.Path(path_type=Path), help="Override the storage root")
@click.option("--debug", is_flag=True, help="Log at DEBUG level")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, root: Path | None, debug: bool) -> None:
    """Search archived session context."""
    config = load_config(config_path)
    api.configure_logging("search", config, debug=debug)
    ctx.obj = {"config": config, "root": root}


@cli.command()
@click.argument("query")
@click.option("--project", help="Filter by project path")
@click.option("--since", type=click.DateTime(), help="Only contexts extracted after this time")
@click.option("--until", type=click.DateTime(), help="Only contexts extracted before this time")
@click.option("--file", "file_pattern", help="Glob over files touched in the session")
@click.option("--min-relevance", type=float, help="Minimum context relevance")
@click.option("--limit", "-n", type=int, help="Number of results")
@click.option("--verbose", "-v", is_flag=True, help="Show more details")
@click.pass_obj
def search(
    obj: dict,
    query: str,
    project: str | None,
    since: datetime | None,
    until: datetime | None,
    file_pattern: str | None,
    min_relevance: float | None,
    limit: int | None,
    verbose: bool,
) -> None:
    """Search archived contexts."""
    filters = SearchFilters(
        project_path=project,
        since=since,
        until=until,
        file_pattern=file_pattern,
        min_relevance=min_relevance,
    )
    try:
        results = api.search(query, filters=filters, limit=limit, root=obj["root"], config=obj["config"])
    except ContextKeeperError as e:
        logger.error("Search failed: query=%s error=%s", query, e)
        sys.exit(1)

    click.echo(f"Found {len(results)} contexts:\n")
    for result in results:
        print_result(result, verbose)


@cli.command()
@click.option("--project", help="Filter by project path")
@click.option("--limit", "-n", type=int, help="Number of results")
@click.option("--verbose", "-v", is_flag=True, help="Show more details")
@click.pass_obj
def recent(obj: dict, project: str | None, limit: int | None, verbose: bool) -> None:
    """List the most recent contexts."""
    try:
        results = api.search(
            "", filters=SearchFilters(project_path=project), limit=limit, root=obj["root"], config=obj["config"]
        )
    except ContextKeeperError as e:
        logger.error("Listing recent contexts failed: error=%s", e)
        sys.exit(1)
    for result in results:
        print_result(result, verbose)


@cli.command()
@click.option("--type", "pattern_type", type=click.Choice(PATTERN_TYPES), help="Pattern type")
@click.option("--min-frequency", type=int, default=2, show_default=True, help="Minimum total occurrences")
@click.option("--project", help="Filter by project path")
@click.option("--limit", "-n", default=10, help="Number of results")
@click.pass_obj
def patterns(obj: dict, pattern_type: str | None, min_frequency: int, project: str | None, limit: int) -> None:
    """Show recurring patterns across sessions."""
    try:
        found = api.get_patterns(
            type=pattern_type,
            min_frequency=min_frequency,
            limit=limit,
            root=obj["root"],
            project_path=project,
            config=obj["config"],
        )
    except ContextKeeperError as e:
        logger.error("Pattern analysis failed: error=%s", e)
        sys.exit(1)
    if not found:
        click.echo("No recurring patterns found")
        return
    for pattern in found:
        click.echo(f"{pattern.frequency:>4}x  [{pattern.type}] {pattern.value}  (last seen {format_timestamp(pattern.last_seen)})")


@cli.command()
@click.argument("project_path")
@click.pass_obj
def analyze(obj: dict, project_path: str) -> None:
    """Summarize the recurring patterns of one project."""
    try:
        analysis = api.analyze_project(project_path, root=obj["root"], config=obj["config"])
    except ContextKeeperError as e:
        logger.error("Project analysis failed: project=%s error=%s", project_path, e)
        sys.exit(1)

    click.echo(f"Patterns: {len(analysis.patterns)}")
    for insight in analysis.insights:
        click.echo(f"[{insight.severity}] {insight.title}: {insight.description}")
        for path, count in insight.data:
            click.echo(f"  {count:>4}x  {path}")
        for pattern in insight.patterns:
            click.echo(f"  {pattern.frequency:>4}x  {pattern.value}")
    for recommendation in analysis.recommendations:
        click.echo(f"- {recommendation}")


@cli.command("rebuild-index")
@click.pass_obj
def rebuild_index(obj: dict) -> None:
    """Rebuild the search index from the archive."""
    try:
        index = api.rebuild_index(root=obj["root"], config=obj["config"])
    except ContextKeeperError as e:
        logger.error("Index rebuild failed: error=%s", e)
        sys.exit(1)
    click.echo(f"Indexed {len(index.sessions)} sessions, {len(index.postings)} terms")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
