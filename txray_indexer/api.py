"""
HTTP endpoints: the secret-guarded trigger and the read API the dashboard consumes.

Handlers are plain starlette endpoints built around one AppContext; mcp_server
mounts them as custom routes next to the MCP tools.
"""
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from txray_indexer import queries
from txray_indexer.auth import check_cron_secret, resolve_wallet
from txray_indexer.config import IndexerConfig
from txray_indexer.db import db, ensure_schema
from txray_indexer.errors import AuthorizationError, ConfigError, LeaseHeldError
from txray_indexer.indexer import Indexer

ALLOW_HEADERS = "content-type,authorization,x-wallet-address,x-cron-secret"
CACHE_CONTROL = "max-age=60, stale-while-revalidate=300"

ROUTE_LIST = [
    "POST /index",
    "GET /summary?wallet=<address>",
    "GET /all",
    "GET /timeseries?granularity=hour|day|week|month&from=&to=&wallet=<address>",
    "GET /txs?limit=&offset=&cursor=&wallet=<address>",
    "GET /search-wallets?q=",
    "GET /health",
]


@dataclass
class AppContext:
    config: IndexerConfig
    conn: sqlite3.Connection
    indexer: Indexer


def build_context(config: IndexerConfig, conn: sqlite3.Connection | None = None,
                  indexer: Indexer | None = None) -> AppContext:
    if conn is None:
        conn = db(config.db_path)
        ensure_schema(conn, config.start_block)
    return AppContext(config=config, conn=conn, indexer=indexer or Indexer(config, conn))


# --------- query parameter models ----------
class TimeseriesIn(BaseModel):
    granularity: Literal["hour", "day", "week", "month"] = "day"
    start: datetime | None = Field(None, alias="from")
    end: datetime | None = Field(None, alias="to")
    order: Literal["asc", "desc"] = "desc"

class TxsIn(BaseModel):
    limit: int = queries.DEFAULT_PAGE
    offset: int = 0
    cursor: str | None = None


def _utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def _validation_message(e: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())


def make_routes(ctx: AppContext) -> list[tuple[str, list[str], object]]:
    cfg = ctx.config

    def cors(request: Request) -> dict:
        origin = request.headers.get("origin")
        allow = "*" if cfg.app_origin == "*" else (cfg.app_origin if origin == cfg.app_origin else "")
        h = {
            "access-control-allow-methods": "GET,POST,OPTIONS",
            "access-control-allow-headers": ALLOW_HEADERS,
            "vary": "Origin",
        }
        if allow:
            h["access-control-allow-origin"] = allow
        return h

    def ok(request: Request, data, status: int = 200, headers: dict | None = None) -> JSONResponse:
        h = cors(request)
        if status == 200:
            h["cache-control"] = CACHE_CONTROL
        h.update(headers or {})
        return JSONResponse(data, status_code=status, headers=h)

    def wallet_scope(request: Request) -> str | None:
        requested = request.query_params.get("wallet") or request.headers.get("x-wallet-address")
        return resolve_wallet(requested, request.headers.get("authorization"), cfg.jwt_secret, cfg.jwt_audience)

    def read(fn):
        """OPTIONS preflight, 403 on auth failures, 400 on bad parameters."""
        async def endpoint(request: Request) -> Response:
            if request.method == "OPTIONS":
                return Response(status_code=204, headers=cors(request))
            try:
                return fn(request)
            except AuthorizationError as e:
                return ok(request, {"error": "forbidden", "details": str(e)}, 403)
            except ValidationError as e:
                return ok(request, {"error": _validation_message(e)}, 400)
            except ValueError as e:
                return ok(request, {"error": str(e)}, 400)
        endpoint.__name__ = fn.__name__
        return endpoint

    # --------- write trigger ----------
    async def run_index(request: Request) -> Response:
        try:
            check_cron_secret(cfg.cron_secret, request.query_params.get("secret"),
                              request.headers.get("x-cron-secret"))
        except AuthorizationError:
            return JSONResponse({"error": "forbidden"}, status_code=403)
        try:
            result = await ctx.indexer.run_once()
        except ConfigError as e:
            logger.error(f"[api] config error: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)
        except LeaseHeldError as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        except Exception as e:
            logger.exception(f"[api] indexer run failed: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse(result.as_dict())

    # --------- reads ----------
    @read
    def summary(request: Request):
        return ok(request, queries.get_summary(ctx.conn, wallet_scope(request)))

    @read
    def summary_all(request: Request):
        return ok(request, queries.get_summary(ctx.conn, None))

    @read
    def timeseries(request: Request):
        args = TimeseriesIn.model_validate(dict(request.query_params))
        rows = queries.get_timeseries(ctx.conn, args.granularity, _utc(args.start), _utc(args.end),
                                      wallet_scope(request), args.order)
        return ok(request, rows)

    @read
    def txs(request: Request):
        args = TxsIn.model_validate(dict(request.query_params))
        rows, next_cursor = queries.list_transactions(ctx.conn, args.limit, args.offset,
                                                      wallet_scope(request), args.cursor)
        return ok(request, rows, headers={"x-next-cursor": next_cursor} if next_cursor else None)

    @read
    def search_wallets(request: Request):
        return ok(request, queries.search_wallets(ctx.conn, request.query_params.get("q", "")))

    @read
    def health(request: Request):
        return ok(request, queries.get_health(ctx.conn))

    async def routes_index(request: Request) -> Response:
        return JSONResponse({"routes": ROUTE_LIST})

    read_methods = ["GET", "OPTIONS"]
    return [
        ("/", ["GET"], routes_index),
        ("/index", ["POST"], run_index),
        ("/summary", read_methods, summary),
        ("/all", read_methods, summary_all),
        ("/timeseries", read_methods, timeseries),
        ("/txs", read_methods, txs),
        ("/search-wallets", read_methods, search_wallets),
        ("/health", read_methods, health),
    ]


def starlette_app(ctx: AppContext):
    """The REST routes alone, without the MCP transport."""
    return Starlette(routes=[Route(p, h, methods=m) for p, m, h in make_routes(ctx)])
