import json, os, sys

import typer
import uvloop
from loguru import logger

from txray_indexer.aggregates import refresh_aggregates
from txray_indexer.config import IndexerConfig
from txray_indexer.cursor import CursorStore
from txray_indexer.db import db, ensure_schema
from txray_indexer.errors import IndexerError
from txray_indexer.indexer import Indexer
from txray_indexer.queries import get_health

app = typer.Typer(help="Incremental transaction indexer for a watched set of contracts.")


def setup_logging(level: str | None = None) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _open(config: IndexerConfig):
    conn = db(config.db_path)
    ensure_schema(conn, config.start_block)
    return conn


@app.callback()
def _root(log_level: str = typer.Option(None, help="DEBUG, INFO, WARNING ...")):
    setup_logging(log_level)


@app.command()
def run():
    """Run one bounded indexing pass and print the result."""
    config = IndexerConfig.from_env()
    indexer = Indexer(config, _open(config))
    try:
        res = uvloop.run(indexer.run_once())
    except IndexerError as e:
        typer.echo(json.dumps({"ok": False, "error": str(e)}))
        raise typer.Exit(code=1)
    typer.echo(json.dumps(res.as_dict()))


@app.command()
def loop(iterations: int = typer.Option(None, help="Stop after N runs (default: forever).")):
    """Run passes on LOOP_INTERVAL_S, back to back while catching up."""
    from txray_indexer.main import main

    config = IndexerConfig.from_env().validate()
    uvloop.run(main(config, iterations))


@app.command()
def serve():
    """HTTP API (/index, /summary, /txs ...) plus MCP tools."""
    from txray_indexer.mcp_main import serve as _serve

    _serve(IndexerConfig.from_env())


@app.command()
def refresh(finalized_only: bool = typer.Option(None, help="Only count finalized transactions.")):
    """Rebuild the KPI rollups from stored rows."""
    config = IndexerConfig.from_env()
    fo = config.aggregate_finalized_only if finalized_only is None else finalized_only
    stats = refresh_aggregates(_open(config), finalized_only=fo)
    typer.echo(json.dumps(stats))


@app.command("reset-cursor")
def reset_cursor(block: int, yes: bool = typer.Option(False, "--yes", help="Skip confirmation.")):
    """Move the checkpoint to BLOCK. The next run rescans from there."""
    if not yes:
        typer.confirm(f"Reset cursor to block {block}?", abort=True)
    cur = CursorStore(_open(IndexerConfig.from_env())).reset(block)
    typer.echo(json.dumps(cur.public()))


@app.command()
def health():
    """Print the checkpoint state."""
    typer.echo(json.dumps(get_health(_open(IndexerConfig.from_env()))))


if __name__ == "__main__":
    app()
