"""Click-based CLI for price-cache.

Thin wrapper around library modules. Every command delegates
to the cache coordinator, the store, or the API factory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, timedelta
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

import uvicorn

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call, and set up logging."""
    if "config" not in ctx.obj:
        from price_cache.core import load_config

        config = load_config(config_path=ctx.obj.get("config_path"))
        level = logging.DEBUG if ctx.obj.get("verbose") else config.logging.level
        logging.basicConfig(level=level, format=config.logging.format, force=True)
        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)
        ctx.obj["config"] = config
    return ctx.obj["config"]


@asynccontextmanager
async def _coordinator(config):
    """Build catalog → store → client → coordinator, closing the client after."""
    from price_cache.cache import CacheCoordinator
    from price_cache.catalog import load_catalog
    from price_cache.prices import PriceStore, YahooFinanceClient

    catalog = load_catalog(config.cache.catalog_path)
    store = PriceStore(config.cache.snapshot_path)
    store.load()
    async with YahooFinanceClient(config.provider) as client:
        yield CacheCoordinator(
            store=store,
            provider=client,
            catalog=catalog,
            cache_config=config.cache,
            refresh_config=config.refresh,
        )


def _parse_date(value: str | None, name: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=name) from e


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PRICE_CACHE_CONFIG",
    default=None,
    help="Path to price-cache.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.version_option(package_name="price-cache")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Price Cache: cached historical prices for a fixed asset catalog."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--mode",
    "-m",
    type=click.Choice(["incremental", "full"], case_sensitive=False),
    default="incremental",
    help="incremental: merge the trailing window. full: rebuild from inception.",
)
@click.pass_context
def refresh(ctx: click.Context, mode: str) -> None:
    """Run one batch refresh over the whole catalog."""
    config = _load_config(ctx)

    async def _run():
        from price_cache.core import RefreshMode

        async with _coordinator(config) as coordinator:
            plan = coordinator.plan_for(RefreshMode(mode.lower()))
            return await coordinator.refresh(plan)

    report = _run_async(_run())
    _output_report(report)
    if report.failed or not report.persisted:
        raise SystemExit(1)


def _output_report(report) -> None:
    table = Table(title=f"{report.mode.capitalize()} refresh")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Refreshed", str(len(report.refreshed)))
    table.add_row("Empty", str(len(report.empty)))
    table.add_row("Failed", str(len(report.failed)))
    table.add_row("Persisted", "yes" if report.persisted else "no")
    elapsed = (report.finished_at - report.started_at).total_seconds()
    table.add_row("Elapsed", f"{elapsed:.1f}s")
    console.print(table)

    for symbol, reason in report.failed.items():
        console.print(f"[red]✗ {symbol}[/red]: {reason}")
    if report.persist_error:
        console.print(f"[red]Snapshot not written:[/red] {report.persist_error}")


# ---------------------------------------------------------------------------
# refresh-symbol
# ---------------------------------------------------------------------------


@cli.command("refresh-symbol")
@click.argument("symbol")
@click.pass_context
def refresh_symbol(ctx: click.Context, symbol: str) -> None:
    """Overwrite one symbol with a fresh default-range fetch."""
    config = _load_config(ctx)

    async def _run():
        async with _coordinator(config) as coordinator:
            return await coordinator.refresh_symbol(symbol)

    from price_cache.core import FetchError

    try:
        entry = _run_async(_run())
    except FetchError as e:
        console.print(f"[red]Refresh failed for {symbol.upper()}: {e}[/red]")
        raise SystemExit(1)

    if entry is None:
        console.print(f"[yellow]No data returned for {symbol.upper()}; entry unchanged.[/yellow]")
        return
    console.print(
        f"[green]✓[/green] Refreshed {entry.symbol} ({len(entry)} records, "
        f"{entry.first_date} → {entry.last_date})"
    )


# ---------------------------------------------------------------------------
# chart
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbol")
@click.option("--start", "-s", type=str, default=None, help="First date (YYYY-MM-DD).")
@click.option("--end", "-e", type=str, default=None, help="Last date (YYYY-MM-DD).")
@click.option(
    "--interval",
    "-i",
    type=click.Choice(["1d", "1wk", "1mo"]),
    default="1d",
    help="Bar interval for a live fetch.",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.option("--tail", type=int, default=20, help="Rows to show in table format.")
@click.pass_context
def chart(
    ctx: click.Context,
    symbol: str,
    start: str | None,
    end: str | None,
    interval: str,
    output_format: str,
    tail: int,
) -> None:
    """Read a symbol's chart through the cache."""
    config = _load_config(ctx)
    start_date = _parse_date(start, "--start")
    end_date = _parse_date(end, "--end")

    async def _run():
        from price_cache.core import PriceInterval

        async with _coordinator(config) as coordinator:
            return await coordinator.get_chart(
                symbol, start_date, end_date, PriceInterval(interval)
            )

    from price_cache.core import NoDataAvailable

    try:
        result = _run_async(_run())
    except NoDataAvailable as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    if output_format == "json":
        click.echo(
            json.dumps(
                {
                    "symbol": result.symbol,
                    "source": str(result.source),
                    "lastUpdated": result.last_updated.isoformat(),
                    "data": [
                        {"date": p.date.isoformat(), "close": p.close} for p in result.data
                    ],
                },
                indent=2,
            )
        )
        return

    table = Table(
        title=f"{result.symbol} ({result.source}, updated {result.last_updated:%Y-%m-%d %H:%M} UTC)"
    )
    table.add_column("Date")
    table.add_column("Close", justify="right")
    for p in result.data[-tail:]:
        table.add_row(p.date.isoformat(), f"{p.close:,.2f}")
    console.print(table)
    console.print(f"{len(result.data)} records total")


# ---------------------------------------------------------------------------
# assets
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def assets(ctx: click.Context) -> None:
    """List the asset catalog."""
    from price_cache.catalog import load_catalog

    config = _load_config(ctx)
    catalog = load_catalog(config.cache.catalog_path)

    table = Table(title=f"Asset catalog ({len(catalog)} assets)")
    table.add_column("Symbol", style="bold")
    table.add_column("Name")
    table.add_column("Inception", justify="right")
    for asset in catalog:
        table.add_row(asset.symbol, asset.name, asset.inception_date.isoformat())
    console.print(table)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default: api.host).")
@click.option("--port", "-p", type=int, default=None, help="Port number (default: api.port).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port
    if ctx.obj.get("config_path"):
        # the app factory runs in uvicorn and re-reads config from the env
        os.environ["PRICE_CACHE_CONFIG"] = str(Path(ctx.obj["config_path"]).resolve())

    console.print(f"Starting price-cache API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")
    if config.scheduler.enabled:
        console.print(
            f"Daily incremental refresh at {config.scheduler.hour:02d}:"
            f"{config.scheduler.minute:02d} UTC"
        )

    uvicorn.run(
        "price_cache.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show snapshot status and cache coverage."""
    from price_cache.cache import utc_now
    from price_cache.catalog import load_catalog
    from price_cache.prices import PriceStore

    config = _load_config(ctx)
    catalog = load_catalog(config.cache.catalog_path)
    store = PriceStore(config.cache.snapshot_path)
    store.load()
    stats = store.stats()

    ttl = timedelta(hours=config.cache.ttl_hours)
    now = utc_now()
    fresh = sum(1 for s in store.symbols() if now - store.get(s).last_updated < ttl)
    missing = [a.symbol for a in catalog if a.symbol not in store]

    table = Table(title="Price Cache Status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Snapshot path", str(store.path))
    table.add_row("Snapshot exists", "yes" if store.path.exists() else "no")
    table.add_section()
    table.add_row("Catalog assets", str(len(catalog)))
    table.add_row("Cached symbols", str(stats["symbols"]))
    table.add_row("Fresh (< TTL)", str(fresh))
    table.add_row("Stale", str(stats["symbols"] - fresh))
    table.add_row("Never fetched", str(len(missing)))
    table.add_row("Total points", str(stats["points"]))
    table.add_section()
    table.add_row(
        "Oldest update",
        f"{stats['oldest_update']:%Y-%m-%d %H:%M}" if stats["oldest_update"] else "N/A",
    )
    table.add_row(
        "Newest update",
        f"{stats['newest_update']:%Y-%m-%d %H:%M}" if stats["newest_update"] else "N/A",
    )
    table.add_row("Schedule", "enabled" if config.scheduler.enabled else "disabled")

    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
