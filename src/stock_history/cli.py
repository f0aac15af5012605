"""Click-based CLI for stock-history.

Thin wrapper around library modules. Every command opens the same
store/cache/engine wiring the API uses and delegates to it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import date

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from stock_history.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


@asynccontextmanager
async def _open_state(config):
    """Build the engine wiring for one command and close it afterwards."""
    from stock_history.api.deps import build_app_state

    state = await build_app_state(config)
    try:
        yield state
    finally:
        await state.close()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _fail(message: str) -> None:
    console.print(f"[red]✗ {message}[/red]")
    raise SystemExit(1)


def _parse_date_option(value: str | None, name: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=name)


TIMEFRAME_CHOICE = click.Choice(["5Y", "1Y", "YTD", "1M", "1W"], case_sensitive=False)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="STOCK_HISTORY_CONFIG",
    default=None,
    help="Path to stock-history.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="stock-history")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Stock History: cached historical prices, ratios and fundamentals."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# history / ratio
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbol")
@click.option("--timeframe", "-t", type=TIMEFRAME_CHOICE, default="1M", show_default=True)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
)
@click.pass_context
def history(ctx: click.Context, symbol: str, timeframe: str, output_format: str) -> None:
    """Show daily prices for SYMBOL over a timeframe."""
    from stock_history.core import StockHistoryError

    async def _run(config):
        async with _open_state(config) as state:
            return await state.query.fetch_history(symbol, timeframe)

    try:
        result = _run_async(_run(_load_config(ctx)))
    except StockHistoryError as e:
        _fail(str(e))

    if output_format == "json":
        output = [r.model_dump(mode="json", by_alias=True) for r in result.records]
        click.echo(json.dumps(output, indent=2))
        return

    if not result.records:
        _fail(f"No data for {result.symbol} ({result.timeframe})")

    table = Table(title=f"{result.symbol} {result.timeframe} ({result.status.value})")
    table.add_column("Date")
    for col in ("Open", "High", "Low", "Close", "Volume", "Change %"):
        table.add_column(col, justify="right")
    for r in result.records:
        table.add_row(
            str(r.date),
            f"{r.open:.2f}",
            f"{r.high:.2f}",
            f"{r.low:.2f}",
            f"{r.close:.2f}",
            f"{r.volume:,}",
            f"{r.change_percent:+.2f}",
        )
    console.print(table)
    if result.degraded:
        console.print(
            f"[yellow]Refresh failed, showing stored data: "
            f"{'; '.join(result.sync_errors) or 'no rows saved'}[/yellow]"
        )


@cli.command()
@click.argument("base")
@click.argument("compare")
@click.option("--timeframe", "-t", type=TIMEFRAME_CHOICE, default="1M", show_default=True)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
)
@click.pass_context
def ratio(
    ctx: click.Context, base: str, compare: str, timeframe: str, output_format: str
) -> None:
    """Show the close-price ratio BASE/COMPARE over a timeframe."""
    from stock_history.core import StockHistoryError

    async def _run(config):
        async with _open_state(config) as state:
            return await state.query.get_price_ratio(base, compare, timeframe)

    try:
        points = _run_async(_run(_load_config(ctx)))
    except StockHistoryError as e:
        _fail(str(e))

    if output_format == "json":
        output = [p.model_dump(mode="json", by_alias=True) for p in points]
        click.echo(json.dumps(output, indent=2))
        return

    table = Table(title=f"{base.upper()}/{compare.upper()} {timeframe.upper()}")
    table.add_column("Date")
    table.add_column("Ratio", justify="right")
    table.add_column(base.upper(), justify="right")
    table.add_column(compare.upper(), justify="right")
    for p in points:
        table.add_row(
            str(p.date),
            f"{p.ratio:.4f}",
            f"{p.symbol1_price:.2f}",
            f"{p.symbol2_price:.2f}",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# sync
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option("--start", "-s", default=None, help="First date to fetch (YYYY-MM-DD).")
@click.option("--end", "-e", default=None, help="Last date to fetch (YYYY-MM-DD).")
@click.option(
    "--latest",
    is_flag=True,
    default=False,
    help="Fetch only days after the last stored date.",
)
@click.pass_context
def sync(
    ctx: click.Context,
    symbols: tuple[str, ...],
    start: str | None,
    end: str | None,
    latest: bool,
) -> None:
    """Fetch daily prices for SYMBOLS from upstream into the store."""
    from stock_history.core import StockHistoryError

    start_date = _parse_date_option(start, "--start")
    end_date = _parse_date_option(end, "--end")
    if latest and (start_date or end_date):
        raise click.UsageError("--latest cannot be combined with --start/--end")

    async def _run(config):
        async with _open_state(config) as state:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task(f"Syncing {len(symbols)} symbols...", total=None)
                if latest:
                    return list(
                        await asyncio.gather(
                            *(state.price_sync.sync_latest(s) for s in symbols)
                        )
                    )
                return await state.price_sync.sync_multiple(
                    list(symbols), start_date, end_date
                )

    try:
        results = _run_async(_run(_load_config(ctx)))
    except StockHistoryError as e:
        _fail(str(e))

    table = Table(title="Price Sync")
    table.add_column("Symbol", style="bold")
    table.add_column("Fetched", justify="right")
    table.add_column("Saved", justify="right")
    table.add_column("Range")
    table.add_column("Errors")
    for r in results:
        span = (
            f"{r.date_range.start} → {r.date_range.end}"
            if r.date_range.start
            else "-"
        )
        table.add_row(
            r.symbol,
            str(r.records_fetched),
            str(r.records_saved),
            span,
            "[red]" + "; ".join(r.errors) + "[/red]" if r.errors else "",
        )
    console.print(table)

    if any(r.errors for r in results):
        raise SystemExit(1)


@cli.command("sync-fundamentals")
@click.argument("symbols", nargs=-1, required=True)
@click.pass_context
def sync_fundamentals(ctx: click.Context, symbols: tuple[str, ...]) -> None:
    """Fetch quarterly fundamentals for SYMBOLS into the store."""
    from stock_history.core import StockHistoryError

    async def _run(config):
        async with _open_state(config) as state:
            return await asyncio.gather(
                *(state.fundamental_sync.sync_fundamentals(s) for s in symbols)
            )

    try:
        results = _run_async(_run(_load_config(ctx)))
    except StockHistoryError as e:
        _fail(str(e))

    failed = 0
    for r in results:
        if r.errors:
            failed += 1
            console.print(f"[red]✗[/red] {r.symbol}: {'; '.join(r.errors)}")
        else:
            console.print(
                f"[green]✓[/green] {r.symbol}: "
                f"{r.records_fetched} fetched, {r.records_saved} saved"
            )
    if failed:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# date-range / warmup
# ---------------------------------------------------------------------------


@cli.command("date-range")
@click.argument("symbol")
@click.pass_context
def date_range(ctx: click.Context, symbol: str) -> None:
    """Show the earliest and latest stored dates for SYMBOL."""
    from stock_history.core import StockHistoryError

    async def _run(config):
        async with _open_state(config) as state:
            return await state.query.get_available_date_range(symbol)

    try:
        span = _run_async(_run(_load_config(ctx)))
    except StockHistoryError as e:
        _fail(str(e))

    if span is None:
        console.print(f"No stored data for {symbol.upper()}")
        return
    click.echo(f"{symbol.upper()}: {span.earliest} → {span.latest}")


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option(
    "--timeframe",
    "-t",
    "timeframes",
    type=TIMEFRAME_CHOICE,
    multiple=True,
    help="Timeframe to warm (repeatable). Default: configured warmup set.",
)
@click.pass_context
def warmup(ctx: click.Context, symbols: tuple[str, ...], timeframes: tuple[str, ...]) -> None:
    """Pre-populate the cache for SYMBOLS."""
    from stock_history.core import StockHistoryError

    async def _run(config):
        async with _open_state(config) as state:
            if not state.cache.is_available:
                console.print("[yellow]Cache not available; reads will not be cached.[/yellow]")
            return await state.query.warmup_cache(
                list(symbols), [t.upper() for t in timeframes] or None
            )

    try:
        report = _run_async(_run(_load_config(ctx)))
    except StockHistoryError as e:
        _fail(str(e))

    console.print(
        f"[green]✓[/green] Warmed {len(report['warmed'])} entries"
        + (f" ({len(report['failed'])} failed: {', '.join(report['failed'])})"
           if report["failed"] else "")
    )


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
    import uvicorn

    from stock_history.core import StockHistoryError

    try:
        config = _load_config(ctx)
    except StockHistoryError as e:
        _fail(str(e))

    host = host or config.api.host
    port = port or config.api.port

    # The app factory runs in uvicorn's process and reloads config itself
    if ctx.obj.get("config_path"):
        os.environ["STOCK_HISTORY_CONFIG"] = ctx.obj["config_path"]

    console.print(f"Starting stock-history API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "stock_history.api.app:create_app",
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
    """Show storage and cache status and per-symbol coverage."""
    from stock_history.core import StockHistoryError

    async def _run(config):
        async with _open_state(config) as state:
            stats = await state.store.get_statistics()
            coverage = []
            for symbol in await state.store.list_symbols():
                bounds = await state.store.get_price_date_bounds(symbol)
                count = await state.store.count_prices(symbol)
                coverage.append((symbol, count, bounds))
            return stats, coverage, state.cache.is_available

    try:
        config = _load_config(ctx)
        stats, coverage, cache_ok = _run_async(_run(config))
    except StockHistoryError as e:
        _fail(str(e))

    table = Table(title="Stock History Status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Database path", config.storage.sqlite_path)
    table.add_row("Cache", "connected" if cache_ok else "unavailable")
    table.add_section()
    table.add_row("Symbols", str(stats["symbols"]))
    table.add_row("Price rows", str(stats["price_rows"]))
    table.add_row("Fundamental rows", str(stats["fundamental_rows"]))
    console.print(table)

    if coverage:
        detail = Table(title="Coverage")
        detail.add_column("Symbol", style="bold")
        detail.add_column("Rows", justify="right")
        detail.add_column("Range")
        for symbol, count, bounds in coverage:
            span = f"{bounds[0]} → {bounds[1]}" if bounds else "N/A"
            detail.add_row(symbol, str(count), span)
        console.print(detail)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
