"""Click-based CLI for tradeboard.

Thin wrapper around the engine. Zero business logic: every operation
delegates to the store, orchestrator, quote cache, or backup codec.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tradeboard.core.exceptions import TradeboardError

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    try:
        return asyncio.run(coro)
    except TradeboardError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1) from e


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from tradeboard.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


def _create_engine(ctx: click.Context):
    from tradeboard.engine import Engine

    return Engine(_load_config(ctx))


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _fmt(value: float | None, spec: str = ",.2f") -> str:
    return "n/a" if value is None else format(value, spec)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="TRADEBOARD_CONFIG",
    default=None,
    help="Path to tradeboard.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.version_option(package_name="tradeboard")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Tradeboard: local market data engine for a trading dashboard."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create or migrate the local store."""

    async def _run():
        async with _create_engine(ctx) as engine:
            health = await engine.storage_health()
            console.print(
                f"[green]✓[/green] Store '{health.key}' ready at schema "
                f"version {health.schema_version} ({health.size_bytes:,} bytes)"
            )

    _run_async(_run())


# ---------------------------------------------------------------------------
# fetch
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbol")
@click.option(
    "--kind",
    "-k",
    type=click.Choice(["daily_bars", "fundamentals", "quote"], case_sensitive=False),
    default="daily_bars",
    help="Kind of market data to fetch.",
)
@click.option("--force", is_flag=True, default=False, help="Ignore fresh cached data.")
@click.pass_context
def fetch(ctx: click.Context, symbol: str, kind: str, force: bool) -> None:
    """Fetch one kind of data for SYMBOL through the provider cascade."""
    from tradeboard.core.models import DataKind

    async def _run():
        async with _create_engine(ctx) as engine:
            result = await engine.orchestrator.fetch(symbol, DataKind(kind.lower()), force=force)
            for failure in result.attempts:
                console.print(f"[yellow]{failure.provider} failed:[/yellow] {failure.reason}")

            if result.kind == DataKind.DAILY_BARS:
                bars = result.value
                detail = f"{len(bars)} bars, {bars[0].date} → {bars[-1].date}"
            elif result.kind == DataKind.FUNDAMENTALS:
                detail = f"market cap {_fmt(result.value.market_cap, ',.0f')}"
            else:
                detail = f"price {_fmt(result.value.price)}"
            console.print(
                f"[green]✓[/green] {result.symbol} {result.kind}: {detail} "
                f"(source: {result.source})"
            )

    _run_async(_run())


# ---------------------------------------------------------------------------
# quotes
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.pass_context
def quotes(ctx: click.Context, symbols: tuple[str, ...]) -> None:
    """Show live quotes for SYMBOLS (stale cached quotes on failure)."""
    from tradeboard.ingestion.freshness import age_of, format_age

    async def _run():
        async with _create_engine(ctx) as engine:
            result = await engine.quotes.batch_fetch(symbols)

        table = Table(title="Quotes")
        table.add_column("Symbol", style="bold")
        table.add_column("Price", justify="right")
        table.add_column("Change", justify="right")
        table.add_column("Change %", justify="right")
        table.add_column("Source")
        table.add_column("Age")
        for symbol in dict.fromkeys(s.upper() for s in symbols):
            quote = result.get(symbol)
            if quote is None:
                table.add_row(symbol, "[red]unavailable[/red]", "", "", "", "")
                continue
            table.add_row(
                symbol,
                _fmt(quote.price),
                _fmt(quote.change, "+,.2f"),
                _fmt(quote.change_pct, "+.2f"),
                quote.source,
                format_age(age_of(quote.fetched_at)),
            )
        console.print(table)

    _run_async(_run())


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbols", nargs=-1)
@click.option("--force", is_flag=True, default=False, help="Ignore fresh cached data.")
@click.option("--concurrency", type=int, default=None, help="Symbols refreshed at once.")
@click.pass_context
def refresh(
    ctx: click.Context,
    symbols: tuple[str, ...],
    force: bool,
    concurrency: int | None,
) -> None:
    """Refresh bars and fundamentals for SYMBOLS (default: positions + watchlist)."""

    async def _run():
        async with _create_engine(ctx) as engine:
            report = await engine.orchestrator.refresh_all(
                symbols or None, concurrency=concurrency, force=force
            )

        if report.total == 0:
            console.print("[yellow]Nothing to refresh. Add positions or pass symbols.[/yellow]")
            return
        for symbol, reason in report.failed.items():
            console.print(f"[red]✗ {symbol}:[/red] {reason}")
        if ctx.obj["verbose"]:
            for symbol, reason in report.fundamentals_failed.items():
                console.print(f"[yellow]{symbol} fundamentals:[/yellow] {reason}")
        console.print(
            f"[green]✓[/green] Refreshed {len(report.successful)}/{report.total} symbols"
            + (f" ({len(report.failed)} failed)" if report.failed else "")
        )
        if report.failed:
            raise SystemExit(1)

    _run_async(_run())


# ---------------------------------------------------------------------------
# freshness
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.pass_context
def freshness(ctx: click.Context, symbols: tuple[str, ...]) -> None:
    """Show data age and quality for SYMBOLS."""

    async def _run():
        async with _create_engine(ctx) as engine:
            rows = [await engine.orchestrator.check_freshness(s) for s in symbols]

        table = Table(title="Data Freshness")
        table.add_column("Symbol", style="bold")
        table.add_column("Prices")
        table.add_column("Fundamentals")
        table.add_column("Quality")
        for row in rows:
            table.add_row(
                row.symbol,
                ("[green]" if row.prices_fresh else "[yellow]") + row.price_age,
                ("[green]" if row.fundamentals_fresh else "[yellow]") + row.fundamentals_age,
                str(row.quality),
            )
        console.print(table)

    _run_async(_run())


# ---------------------------------------------------------------------------
# export / import
# ---------------------------------------------------------------------------


@cli.command("export")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--raw", is_flag=True, default=False, help="Write the raw SQLite image.")
@click.pass_context
def export_cmd(ctx: click.Context, path: Path, raw: bool) -> None:
    """Write a backup of the whole store to PATH."""

    async def _run():
        async with _create_engine(ctx) as engine:
            if raw:
                data = await engine.backup.export_bytes()
                path.write_bytes(data)
            else:
                text = await engine.backup.export_json()
                path.write_text(text, encoding="utf-8")
        console.print(f"[green]✓[/green] Backup written to {path}")

    _run_async(_run())


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--raw", is_flag=True, default=False, help="PATH is a raw SQLite image.")
@click.confirmation_option(prompt="Replace ALL local data with this backup?")
@click.pass_context
def import_cmd(ctx: click.Context, path: Path, raw: bool) -> None:
    """Replace the store with the backup at PATH."""

    async def _run():
        async with _create_engine(ctx) as engine:
            if raw:
                version = await engine.backup.import_bytes(path.read_bytes())
            else:
                version = await engine.backup.import_json(path.read_text(encoding="utf-8"))
        console.print(f"[green]✓[/green] Imported {path} (schema version {version})")

    _run_async(_run())


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show storage health and data coverage."""

    async def _run():
        async with _create_engine(ctx) as engine:
            health = await engine.storage_health()
            symbols = await engine.store.get_all_symbols()
            tracked = await engine.orchestrator.tracked_symbols()
            positions = await engine.store.get_all_positions()
            journal = await engine.store.get_journal_entries()

        config = _load_config(ctx)
        table = Table(title="Tradeboard Status")
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right")

        table.add_row("Data directory", config.storage.data_dir)
        table.add_row("Store key", health.key)
        table.add_row("Schema version", str(health.schema_version))
        table.add_row("Image size", f"{health.size_mb:.2f} MB ({health.size_bytes:,} bytes)")
        table.add_section()
        table.add_row("Symbols", str(len(symbols)))
        table.add_row("Tracked symbols", str(len(tracked)))
        table.add_row("Positions", str(len(positions)))
        table.add_row("Journal entries", str(len(journal)))
        errored = [s.symbol for s in symbols if s.data_quality == "error"]
        table.add_row("Symbols with errors", ", ".join(errored) if errored else "none")

        console.print(table)

    _run_async(_run())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
