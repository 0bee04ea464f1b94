"""
Command line entry point for cache maintenance of the booking core.

Usage:
    atelier rebuild [DATASET|all]
    atelier info
    atelier versions
    atelier health
    atelier clear [--yes]
    atelier sync-ids
    atelier check-config
"""

import asyncio
from typing import Any, Awaitable, Callable

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .app import AtelierApp, build_app
from .cache.config import CacheConfigurationError, CacheWriteError
from .cache.datasets import DATASETS, get_dataset_spec
from .services.lock_manager import LockTimeoutError
from .store.base import RowStoreError
from .utils.config import configure_logging, get_config, validate_required_settings

# Initialize typer app and rich console
app = typer.Typer(help="Cache maintenance for the class booking core")
console = Console()


def _run(action: Callable[[AtelierApp], Awaitable[Any]]) -> Any:
    """Build the app, run ``action`` on it and close it again."""

    async def runner():
        application = await build_app(get_config())
        try:
            return await action(application)
        finally:
            await application.close()

    try:
        return asyncio.run(runner())
    except (RowStoreError, CacheConfigurationError, CacheWriteError, LockTimeoutError) as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at debug level")
):
    """Load configuration and set up logging before any command."""
    try:
        config = get_config()
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    if verbose:
        config.debug = True
    configure_logging(config)


@app.command()
def rebuild(
    dataset: str = typer.Argument("all", help="Dataset to rebuild, or 'all'")
):
    """Rebuild cached datasets from the row store."""
    if dataset != "all":
        try:
            spec = get_dataset_spec(dataset)
        except KeyError:
            names = ", ".join(key.value for key in DATASETS)
            console.print(f"[red]❌ Unknown dataset '{dataset}'. Choose one of: {names}, all[/red]")
            raise typer.Exit(1)

        rebuilt = _run(lambda application: application.cache.rebuild(spec.key))
        if not rebuilt.cached:
            console.print(f"[red]❌ {spec.key.value} read {len(rebuilt.rows)} rows but Valkey refused the write[/red]")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] {spec.key.value} rebuilt: v{rebuilt.version}, {len(rebuilt.rows)} rows")
        return

    versions = _run(lambda application: application.cache.rebuild_all())

    table = Table(title="Rebuild", box=box.ROUNDED)
    table.add_column("Dataset", style="cyan bold")
    table.add_column("Version", justify="right")
    for name, version in versions.items():
        table.add_row(name, str(version) if version is not None else "[red]failed[/red]")
    console.print(table)

    if any(version is None for version in versions.values()):
        raise typer.Exit(1)


@app.command()
def info():
    """Show what is cached for every dataset."""
    infos = _run(lambda application: application.cache.get_all_cache_info())

    table = Table(title="📊 Dataset cache", box=box.ROUNDED, show_lines=True)
    table.add_column("Dataset", style="cyan bold")
    table.add_column("Cached", justify="center")
    table.add_column("Version", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("TTL", style="dim", justify="right")

    for entry in infos:
        if not entry.exists:
            table.add_row(entry.key, "[yellow]no[/yellow]", "-", "-", "-", "-")
            continue
        table.add_row(
            entry.key,
            "[green]yes[/green]",
            str(entry.version),
            str(entry.total_count),
            str(entry.total_chunks) if entry.chunked else "single",
            f"{entry.ttl_seconds}s" if entry.ttl_seconds is not None else "-",
        )
    console.print(table)


@app.command()
def versions():
    """Print the cached version of every dataset."""
    cached = _run(lambda application: application.cache.get_cache_versions())
    for name, version in cached.items():
        console.print(f"{name}: {version if version is not None else '[yellow]not cached[/yellow]'}")


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")
):
    """Drop every cached dataset; the next read rebuilds from the row store."""
    if not yes:
        typer.confirm("Clear all cached datasets?", abort=True)
    deleted = _run(lambda application: application.cache.clear_all())
    console.print(f"[green]✓[/green] Cleared {deleted} cache entries")


@app.command()
def health():
    """Probe the cache backend and show its counters."""

    async def probe(application: AtelierApp):
        return (await application.cache_manager.health_check(),
                await application.cache_manager.get_stats())

    result, stats = _run(probe)
    colour = {"healthy": "green", "degraded": "yellow"}.get(result["status"], "red")
    console.print(f"[{colour}]{result['status']}[/{colour}] ({result['backend']}, {result.get('latency_ms', '-')} ms)")
    for error in result["errors"]:
        console.print(f"  [yellow]• {error}[/yellow]")
    console.print(
        f"hits {stats['hit_count']}, misses {stats['miss_count']}, "
        f"errors {stats['error_count']}, in-process entries {stats['in_process_entries']}"
    )
    if result["status"] == "unhealthy":
        raise typer.Exit(1)


@app.command("sync-ids")
def sync_ids():
    """Reconcile every lesson's reservation_ids with the reservations."""
    updated = _run(lambda application: application.reservations.sync_reservation_ids())
    console.print(f"[green]✓[/green] Updated reservation_ids of {updated} lessons")


@app.command("check-config")
def check_config():
    """Validate and display the configuration."""
    config = get_config()
    try:
        validate_required_settings(config)
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Configuration", box=box.ROUNDED, show_header=False)
    table.add_column("Setting", style="cyan bold")
    table.add_column("Value", style="white")
    table.add_row("Database", config.database_url.split("@")[-1])
    table.add_row("Cache backend", f"valkey {config.valkey_host}:{config.valkey_port}" if config.use_valkey else "in-process")
    table.add_row("Cache expiry", f"{config.cache_expiry_seconds}s")
    table.add_row("Chunk limit", f"{config.chunk_size_limit_kb}KB x {config.max_chunks}")
    table.add_row("Entry ceiling", f"{config.max_entry_size_kb}KB")
    table.add_row("Lock wait / TTL", f"{config.lock_wait_timeout_seconds}s / {config.lock_ttl_seconds}s")
    table.add_row("Log level", "DEBUG" if config.debug else config.log_level)

    console.print(Panel.fit("[bold cyan]Atelier booking core[/bold cyan]", box=box.DOUBLE))
    console.print(table)


if __name__ == "__main__":
    app()
