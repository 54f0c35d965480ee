"""CLI entry point for the archiving pipeline.

Allows running the processor as a module:
    python -m context_keeper.processor archive <transcript>...
"""

import sys
from pathlib import Path

import click

from context_keeper import api
from context_keeper.config import load_config
from context_keeper.errors import ContextKeeperError
from context_keeper.logging import get_logger

logger = get_logger("processor")


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file")
@click.option("--root", type=click.Path(path_type=Path), help="Override the storage root")
@click.option("--debug", is_flag=True, help="Log at DEBUG level")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, root: Path | None, debug: bool) -> None:
    """Archive session transcripts."""
    config = load_config(config_path)
    api.configure_logging("processor", config, debug=debug)
    ctx.obj = {"config": config, "root": root}


@cli.command()
@click.argument("transcripts", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Re-archive unchanged transcripts")
@click.option("--project", help="Project path recorded in the archive")
@click.option(
    "--trigger",
    type=click.Choice(["manual", "preCompact", "scheduled"]),
    default="manual",
    help="What triggered the extraction",
)
@click.pass_obj
def archive(obj: dict, transcripts: tuple[Path, ...], force: bool, project: str | None, trigger: str) -> None:
    """Extract and archive one or more transcripts."""
    failures = 0
    for transcript in transcripts:
        try:
            result = api.archive_transcript(
                transcript,
                force=force,
                root=obj["root"],
                project_path=project,
                extracted_at=trigger,
                config=obj["config"],
            )
        except ContextKeeperError as e:
            failures += 1
            logger.error("Failed to archive transcript: path=%s error=%s", transcript, e)
            continue

        if result.archived:
            click.echo(f"{transcript}: archived session {result.session_id} (relevance {result.relevance:.2f})")
        else:
            click.echo(f"{transcript}: skipped ({result.skipped_reason})")

    if failures:
        sys.exit(1)


@cli.command()
@click.pass_obj
def stats(obj: dict) -> None:
    """Show archive statistics."""
    store = api.build_components(obj["config"], obj["root"]).store
    for key, value in store.stats().items():
        click.echo(f"{key}: {value}")

    index = api.index_stats(root=obj["root"], config=obj["config"])
    click.echo(f"indexed_sessions: {index['sessions']}")
    click.echo(f"indexed_terms: {index['terms']}")
    if index["top_keywords"]:
        keywords = ", ".join(f"{term} ({count})" for term, count in index["top_keywords"])
        click.echo(f"top_keywords: {keywords}")


@cli.command()
@click.option("--days", type=int, help="Retention in days (defaults to the configured value)")
@click.pass_obj
def cleanup(obj: dict, days: int | None) -> None:
    """Delete archived sessions older than the retention period."""
    try:
        result = api.cleanup(days, root=obj["root"], config=obj["config"])
    except ContextKeeperError as e:
        logger.error("Cleanup failed: error=%s", e)
        sys.exit(1)
    click.echo(f"Removed {len(result.files)} session file(s), {len(result.sessions)} session(s) unindexed")


def main() -> None:
    """Main entry point for the processor CLI."""
    cli()


if __name__ == "__main__":
    main()
