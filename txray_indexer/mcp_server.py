# mcp_server.py
from fastmcp import FastMCP
from pydantic import BaseModel, Field

from txray_indexer import queries
from txray_indexer.api import AppContext, build_context, make_routes
from txray_indexer.config import IndexerConfig


# --------- Pydantic input models ----------
class TxPageIn(BaseModel):
    limit: int = Field(queries.DEFAULT_PAGE, ge=1, le=queries.MAX_PAGE)
    offset: int = Field(0, ge=0)
    cursor: str | None = None

class TxQueryIn(BaseModel):
    hash: str

class TimeseriesQueryIn(BaseModel):
    granularity: str = "day"
    order: str = "desc"
    limit: int = Field(30, ge=1, le=1000)


def create_server(config: IndexerConfig | None = None, ctx: AppContext | None = None) -> FastMCP:
    """FastMCP app carrying the REST routes plus unscoped read tools."""
    ctx = ctx or build_context(config or IndexerConfig.from_env())
    mcp = FastMCP("txray-indexer", version="0.1.0")

    for path, methods, handler in make_routes(ctx):
        mcp.custom_route(path, methods=methods)(handler)

    # ----------------- Tools ------------------
    # wallet scoping needs a bearer token, so the tools only expose global views

    @mcp.tool(name="kpi_summary")
    def kpi_summary() -> dict:
        """Global KPI summary (totals, gas, 24h/7d counts)."""
        return queries.get_summary(ctx.conn)

    @mcp.tool(name="kpi_timeseries")
    def kpi_timeseries(args: TimeseriesQueryIn) -> list:
        """Transaction count and gas per hour/day/week/month bucket."""
        return queries.get_timeseries(ctx.conn, args.granularity, order=args.order)[:args.limit]

    @mcp.tool(name="txs_latest")
    def txs_latest(args: TxPageIn) -> dict:
        """Latest indexed transactions (descending by block_number, tx_index)."""
        rows, next_cursor = queries.list_transactions(ctx.conn, args.limit, args.offset, cursor=args.cursor)
        return {"transactions": rows, "next_cursor": next_cursor, "has_more": next_cursor is not None}

    @mcp.tool(name="tx_get")
    def tx_get(args: TxQueryIn) -> dict:
        """Return a transaction by its hash."""
        row = queries.tx_by_hash(ctx.conn, args.hash)
        return row if row else {"error": f"tx {args.hash} not found"}

    @mcp.tool(name="network_health")
    def network_health() -> dict:
        """Indexer checkpoint state."""
        return queries.get_health(ctx.conn)

    return mcp
