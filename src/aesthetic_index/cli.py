"""CLI for the aesthetic scoring pipeline."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, TypeVar

import structlog
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from aesthetic_index import __version__
from aesthetic_index.core.config import ScoringConfig, load_config
from aesthetic_index.core.errors import BatchFailedError, ConfigurationError
from aesthetic_index.pipeline import AestheticIndexPipeline, open_pipeline
from aesthetic_index.services.collection import describe_index
from aesthetic_index.services.reporting import (
    format_batch_result,
    format_collection_indices,
    format_leaderboard,
    format_status,
    format_unscored_progress,
)
from aesthetic_index.services.storage import SnapshotDB

T = TypeVar("T")

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="aesthetic-index",
    help="Aesthetic Index - incremental NFT aesthetic scoring from votes, sliders and favorites",
    add_completion=False,
)
console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config YAML file (defaults if omitted)"),
]
DatabaseOption = Annotated[
    str | None,
    typer.Option("--database", help="Override storage.database_url"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-V", help="Verbose output")]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"aesthetic-index v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """Aesthetic Index CLI."""


def _configure_logging(verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load(config_path: Path | None, database: str | None) -> ScoringConfig:
    config = load_config(config_path) if config_path else ScoringConfig()
    if database:
        config.storage.database_url = database
    return config


def _with_pipeline(
    config_path: Path | None,
    database: str | None,
    verbose: bool,
    action: Callable[[AestheticIndexPipeline], Awaitable[T]],
) -> T:
    """Open the pipeline, run `action`, close it, and map errors to exit codes."""
    _configure_logging(verbose)
    try:
        config = _load(config_path, database)

        async def _run() -> T:
            pipeline = open_pipeline(config)
            try:
                return await action(pipeline)
            finally:
                await pipeline.close()

        return asyncio.run(_run())

    except typer.Exit:
        raise
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ConfigurationError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e
    except BatchFailedError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2) from e
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(1) from e


@app.command()
def validate(
    config_path: Annotated[Path, typer.Argument(help="Path to config YAML file")],
) -> None:
    """Validate a configuration file without running.

    Args:
        config_path: Path to YAML configuration file.
    """
    try:
        config = load_config(config_path)
        weights = config.composer.weights
        console.print("[green]Configuration is valid![/green]")
        console.print(f"  Database: {config.storage.database_url}")
        console.print(
            f"  Component weights: rating={weights.rating} slider={weights.slider} "
            f"favorite={weights.favorite}"
        )
        console.print(
            f"  K-factors: normal={config.rating.k_factor} super={config.rating.super_k_factor}"
        )
        console.print(
            f"  Uncertainty bounds: {config.rating.uncertainty_floor}"
            f"-{config.rating.uncertainty_ceiling}"
        )
        console.print(f"  Grace period: {config.publish_gate.grace_period_minutes} min")
        console.print(f"  Batch size: {config.batch.batch_size}")

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ConfigurationError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e


@app.command("init-db")
def init_db(
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Create the database tables."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        console.print("[green]Database ready.[/green]")

    _with_pipeline(config_path, database, verbose, _action)


@app.command("import-catalog")
def import_catalog(
    catalog_path: Annotated[Path, typer.Argument(help="YAML file with collections and voters")],
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Register collections, items and voters from a YAML catalog."""
    if not catalog_path.exists():
        console.print(f"[red]Error:[/red] Catalog file not found: {catalog_path}")
        raise typer.Exit(1)
    with catalog_path.open() as f:
        data = yaml.safe_load(f) or {}

    async def _action(pipeline: AestheticIndexPipeline) -> dict[str, int]:
        return await pipeline.store.catalog.import_catalog(data)

    counts = _with_pipeline(config_path, database, verbose, _action)
    console.print(
        f"[green]Imported[/green] {counts['collections']} collections, "
        f"{counts['items']} new items, {counts['voters']} new voters"
    )


@app.command("mark-dirty")
def mark_dirty(
    item_ids: Annotated[list[str], typer.Argument(help="Items to re-score")],
    priority: Annotated[int, typer.Option("--priority", "-p", help="Queue priority")] = 0,
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Queue items for re-scoring."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        for item_id in item_ids:
            await pipeline.mark_dirty(item_id, priority)

    _with_pipeline(config_path, database, verbose, _action)
    console.print(f"Marked {len(item_ids)} item(s) dirty at priority {priority}")


@app.command("run-batch")
def run_batch(
    limit: Annotated[int | None, typer.Option("--limit", help="Maximum items to claim")] = None,
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Run one batch over the dirty queue."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        result = await pipeline.run_batch(limit=limit)
        console.print(format_batch_result(result))
        for error in result.errors:
            console.print(f"  [yellow]{error}[/yellow]")
        if not result.success:
            raise BatchFailedError(len(result.errors), result.claimed)

    _with_pipeline(config_path, database, verbose, _action)


@app.command()
def schedule(
    max_runs: Annotated[
        int | None, typer.Option("--max-runs", help="Stop after this many runs")
    ] = None,
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Run batches on the configured interval until interrupted."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, pipeline.scheduler.stop)
        console.print(
            f"[bold green]Scheduler started[/bold green] "
            f"(every {pipeline.config.batch.interval_minutes} min)"
        )
        await pipeline.scheduler.run_forever(max_runs=max_runs)

    _with_pipeline(config_path, database, verbose, _action)


@app.command()
def score(
    item_id: Annotated[str, typer.Argument(help="Item id")],
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show an item's published score."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        view = await pipeline.get_published_score(item_id)
        console.print(f"[bold]{view.item_id}[/bold]  score={view.score:.2f}")
        console.print(f"  Confidence: {view.confidence:.1f}")
        console.print(f"  Provisional: {view.provisional}")
        console.print(f"  State: {view.state}")
        if view.rating_component is not None:
            console.print(
                f"  Components: rating={view.rating_component} slider={view.slider_component} "
                f"favorite={view.favorite_component}"
            )

    _with_pipeline(config_path, database, verbose, _action)


@app.command()
def progress(
    item_id: Annotated[str, typer.Argument(help="Item id")],
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show which first-publish minimums an item still lacks."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        console.print(format_unscored_progress(await pipeline.get_unscored_progress(item_id)))

    _with_pipeline(config_path, database, verbose, _action)


@app.command("collection-index")
def collection_index(
    collection_id: Annotated[str, typer.Argument(help="Collection id")],
    refresh: Annotated[bool, typer.Option("--refresh", help="Recompute before showing")] = False,
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show a collection's aesthetic index."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        if refresh:
            result = await pipeline.collections.refresh(collection_id)
            if result is not None:
                console.print(describe_index(result))
        view = await pipeline.get_collection_index(collection_id)
        console.print(f"[bold]{view.collection_id}[/bold]  index={view.index:.2f}")
        console.print(f"  Confidence: {view.confidence:.0f}")
        console.print(f"  Provisional: {view.provisional}")
        console.print(f"  Scored items: {view.scored_items}")

    _with_pipeline(config_path, database, verbose, _action)


@app.command("refresh-collections")
def refresh_collections(
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Recompute collection indices that are missing or stale."""

    async def _action(pipeline: AestheticIndexPipeline) -> list[str]:
        return await pipeline.refresh_collections()

    refreshed = _with_pipeline(config_path, database, verbose, _action)
    console.print(f"Refreshed {len(refreshed)} collection(s)")


@app.command()
def status(
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show queue depth and publication counts."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        console.print(format_status(await pipeline.status()))

    _with_pipeline(config_path, database, verbose, _action)


@app.command()
def leaderboard(
    collection_id: Annotated[
        str | None, typer.Option("--collection", help="Restrict to one collection")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Rows to show")] = 20,
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Print the top published scores and collection indices."""

    async def _action(pipeline: AestheticIndexPipeline) -> None:
        rows = await pipeline.store.scores.get_leaderboard(collection_id, limit)
        console.print(format_leaderboard(rows))
        if collection_id is None:
            console.print(format_collection_indices(await pipeline.store.collections.list_indices()))

    _with_pipeline(config_path, database, verbose, _action)


@app.command()
def export(
    output: Annotated[Path, typer.Argument(help="DuckDB snapshot file to write")],
    config_path: ConfigOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Write published scores and collection indices to a DuckDB snapshot."""

    async def _action(pipeline: AestheticIndexPipeline) -> dict[str, int]:
        rows = await pipeline.store.scores.get_leaderboard(limit=1_000_000)
        indices = await pipeline.store.collections.list_indices()
        return await SnapshotDB(output).write(rows, indices)

    counts = _with_pipeline(config_path, database, verbose, _action)
    console.print(
        f"[green]Snapshot written[/green] to {output}: "
        f"{counts['published_scores']} scores, {counts['collection_indices']} collections"
    )


@app.command()
def info() -> None:
    """Show tool information and example commands."""
    console.print("[bold]Aesthetic Index[/bold]")
    console.print(f"Version: {__version__}\n")

    console.print("[bold]Example Commands:[/bold]")
    console.print("  # Validate config")
    console.print("  aesthetic-index validate config.yaml\n")

    console.print("  # Register collections, items and voters")
    console.print("  aesthetic-index import-catalog catalog.yaml -c config.yaml\n")

    console.print("  # Drain the dirty queue once")
    console.print("  aesthetic-index run-batch -c config.yaml\n")

    console.print("  # Hourly batches until interrupted")
    console.print("  aesthetic-index schedule -c config.yaml\n")

    console.print("  # Inspect results")
    console.print("  aesthetic-index score ITEM_ID -c config.yaml")
    console.print("  aesthetic-index progress ITEM_ID -c config.yaml")
    console.print("  aesthetic-index collection-index COLLECTION_ID --refresh -c config.yaml")
    console.print("  aesthetic-index leaderboard -c config.yaml\n")

    console.print("  # Analytics snapshot")
    console.print("  aesthetic-index export snapshot.duckdb -c config.yaml")


if __name__ == "__main__":
    app()
