"""
Tickdex CLI

Command-line interface for building the catalog store and searching it.

Usage::

    tickdex index --curated data/stocks.csv --nse data/nse_equity.csv
    tickdex search "top banking stocks"
    tickdex get RELIANCE --exchange BSE
    tickdex stats
    tickdex mcp                     # Start the MCP server
"""

import json
import logging
import os
import time
from pathlib import Path

import click

from tickdex.core.config import TickdexConfig
from tickdex.core.loader import CatalogLoader
from tickdex.core.search import ResultFormatter
from tickdex.core.sectors import SectorTable
from tickdex.core.store import CatalogStore
from tickdex.exceptions import TickdexError


# ---------------------------------------------------------------------------
# Logging helpers
# ---------------------------------------------------------------------------

def _configure_logging(config: TickdexConfig, verbose: bool) -> None:
    """Set up logging for the CLI session."""
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.log_format)


# ---------------------------------------------------------------------------
# Top-level group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(package_name="tickdex")
@click.option("--store-dir", type=click.Path(file_okay=False), default=None,
              envvar="TICKDEX_STORE_DIR",
              help="Directory holding the catalog store (default: ./.tickdex).")
@click.option("--sectors", "sector_table", type=click.Path(dir_okay=False), default=None,
              envvar="TICKDEX_SECTOR_TABLE",
              help="JSON sector table for thematic queries (default: bundled table).")
@click.pass_context
def cli(ctx: click.Context, store_dir: str | None, sector_table: str | None):
    """Tickdex — ranked instrument search over a fixed catalog."""
    ctx.ensure_object(dict)
    config = TickdexConfig.from_env()
    if store_dir:
        config.store_dir = store_dir
    if sector_table:
        config.sector_table_path = sector_table
    ctx.obj["config"] = config


# ---------------------------------------------------------------------------
# tickdex index
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--curated", type=click.Path(), default=None,
              help="Curated CSV: Symbol,Name,Exchange,Type,Brand.")
@click.option("--nse", type=click.Path(), default=None, help="NSE equity listing CSV.")
@click.option("--bse", type=click.Path(), default=None, help="BSE equity listing CSV.")
@click.option("--brands", type=click.Path(), default=None, help="JSON brand alias mappings.")
@click.option("--rebuild", is_flag=True, help="Rebuild and replace an existing store.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def index(ctx: click.Context, curated: str | None, nse: str | None, bse: str | None,
          brands: str | None, rebuild: bool, verbose: bool):
    """Load catalog files and build the catalog store.

    An existing store is left untouched unless --rebuild is given.
    """
    config: TickdexConfig = ctx.obj["config"]
    config.curated_csv = curated or config.curated_csv
    config.nse_csv = nse or config.nse_csv
    config.bse_csv = bse or config.bse_csv
    config.brand_mappings_path = brands or config.brand_mappings_path
    _configure_logging(config, verbose)

    db = config.get_store_path()
    if db.exists() and not rebuild:
        click.echo(f"Catalog store already exists at {db} (use --rebuild to replace it).")
        return

    # Build beside the live store and swap it in only once complete
    staging = db.with_name(db.name + ".tmp")
    if staging.exists():
        staging.unlink()

    t0 = time.perf_counter()
    try:
        config.validate()
        sectors = SectorTable.load(config.sector_table_path)
        instruments = CatalogLoader(config, sectors=sectors).load()
        store = CatalogStore.open(staging, instruments, show_progress=True)
    except TickdexError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)

    stats = store.stats()
    store.close()
    os.replace(staging, db)
    click.echo(f"  Indexed {stats.instruments:,} instruments into {db} "
               f"in {time.perf_counter() - t0:.2f} seconds")


# ---------------------------------------------------------------------------
# tickdex search
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("query")
@click.option("-f", "--format", "fmt",
              type=click.Choice(["console", "json", "compact"]),
              default="console", help="Output format.")
@click.option("-n", "--max-results", type=int, default=None,
              help="Maximum number of results.")
@click.option("--explain", is_flag=True, help="Show text and final scores.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def search(ctx: click.Context, query: str, fmt: str, max_results: int | None,
           explain: bool, verbose: bool):
    """Search the catalog with a symbol, name, brand, or thematic QUERY."""
    config: TickdexConfig = ctx.obj["config"]
    _configure_logging(config, verbose)
    if not query.strip():
        click.echo("Error: QUERY must not be empty.", err=True)
        raise SystemExit(1)

    client = _open_client(config)
    t0 = time.perf_counter()
    try:
        limit = max_results or config.max_display_results
        results = client.ranked(query, limit=limit)
    finally:
        client.close()
    elapsed = time.perf_counter() - t0

    if fmt == "json":
        click.echo(ResultFormatter.format_json(results, explain=explain))
    elif fmt == "compact":
        click.echo(ResultFormatter.format_compact(results))
    else:
        click.echo(ResultFormatter.format_console(results, explain=explain, elapsed_time=elapsed))


# ---------------------------------------------------------------------------
# tickdex get
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("symbol")
@click.option("-e", "--exchange", default="", help="Preferred exchange (falls back to any listing).")
@click.pass_context
def get(ctx: click.Context, symbol: str, exchange: str):
    """Look up one instrument by SYMBOL (and optionally exchange)."""
    config: TickdexConfig = ctx.obj["config"]
    _configure_logging(config, False)
    client = _open_client(config)
    try:
        instrument = client.get_stock(symbol, exchange)
    finally:
        client.close()

    if instrument is None:
        click.echo(f"No instrument found for '{symbol}'.", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(instrument.to_dict(), indent=2))


# ---------------------------------------------------------------------------
# tickdex stats
# ---------------------------------------------------------------------------

@cli.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show catalog store statistics."""
    config: TickdexConfig = ctx.obj["config"]
    db = config.get_store_path()
    if not db.exists():
        click.echo(f"No catalog store found at {db}. Run 'tickdex index' first.", err=True)
        raise SystemExit(1)

    try:
        store = CatalogStore.open(db)
    except TickdexError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)
    s = store.stats()
    store.close()

    click.echo("─" * 50)
    click.echo("  TICKDEX — Catalog Statistics")
    click.echo("─" * 50)
    click.echo(f"  Store location : {db}")
    click.echo()
    click.echo(f"  Instruments     {s.instruments:>8,}")
    for exchange, count in s.exchanges.items():
        click.echo(f"    {exchange:<12}  {count:>8,}")
    click.echo("─" * 50)


# ---------------------------------------------------------------------------
# tickdex mcp
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--transport", type=click.Choice(["stdio", "sse", "streamable-http"]),
              default="stdio", help="MCP transport (default: stdio).")
@click.option("-v", "--verbose", is_flag=True)
@click.pass_context
def mcp(ctx: click.Context, transport: str, verbose: bool):
    """Start the Tickdex MCP server for agent integration."""
    config: TickdexConfig = ctx.obj["config"]
    _configure_logging(config, verbose)
    try:
        from tickdex.mcp.server import create_server  # noqa: E402
    except ImportError:
        click.echo(
            "Error: MCP dependencies not installed.\n"
            "Install with:  pip install 'tickdex[mcp]'",
            err=True,
        )
        raise SystemExit(1)

    server = create_server(config)
    server.run(transport=transport)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _open_client(config: TickdexConfig):
    """Open a client on an existing store, exiting with a message on failure."""
    from tickdex.client import Tickdex

    db = config.get_store_path()
    if not config.in_memory and not Path(db).exists():
        click.echo(f"Error: Catalog store not found at {db}", err=True)
        click.echo("Run 'tickdex index' first to build it.", err=True)
        raise SystemExit(1)
    try:
        return Tickdex(config=config)
    except TickdexError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
