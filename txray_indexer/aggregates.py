"""
Aggregation refresher.

Rebuilds kpi_summary and kpi_timeseries from the transactions table after every
committed chunk, the way a materialized view refresh would. The read path only
ever selects from these rollups.
"""
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger

from txray_indexer.db import transaction
from txray_indexer.helpers import from_unix, iso, utcnow

GRANULARITIES = ("hour", "day", "week", "month")
GLOBAL_SCOPE = ""


def bucket_start(dt: datetime, granularity: str) -> datetime:
    if granularity == "hour":
        return dt.replace(minute=0, second=0, microsecond=0)
    day = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == "day":
        return day
    if granularity == "week":
        return day - timedelta(days=day.weekday())   # weeks start Monday
    if granularity == "month":
        return day.replace(day=1)
    raise ValueError(f"unknown granularity {granularity!r}")


@dataclass
class _Totals:
    count: int = 0
    gas_used: int = 0
    gas_cost: int = 0
    latest_block: int | None = None
    txs_24h: int = 0
    txs_7d: int = 0

@dataclass
class _Bucket:
    count: int = 0
    gas_used: int = 0
    gas_cost: int = 0

@dataclass
class _Rollup:
    summary: dict = field(default_factory=lambda: defaultdict(_Totals))
    series: dict = field(default_factory=lambda: defaultdict(_Bucket))


def compute_rollups(rows, now: datetime) -> _Rollup:
    """rows: (from_address, block_number, gas_used, gas_cost_wei, block_timestamp)."""
    out = _Rollup()
    day_ago, week_ago = now - timedelta(hours=24), now - timedelta(days=7)
    for from_addr, block_number, gas_used, gas_cost, ts in rows:
        dt = from_unix(ts)
        gu = int(gas_used or 0)
        gc = int(gas_cost or 0)
        for scope in (GLOBAL_SCOPE, from_addr):
            t = out.summary[scope]
            t.count += 1
            t.gas_used += gu
            t.gas_cost += gc
            t.latest_block = block_number if t.latest_block is None else max(t.latest_block, block_number)
            if dt >= day_ago: t.txs_24h += 1
            if dt >= week_ago: t.txs_7d += 1
            for g in GRANULARITIES:
                b = out.series[(scope, g, iso(bucket_start(dt, g)))]
                b.count += 1
                b.gas_used += gu
                b.gas_cost += gc
    if GLOBAL_SCOPE not in out.summary:
        out.summary[GLOBAL_SCOPE] = _Totals()
    return out


def refresh_aggregates(conn: sqlite3.Connection, finalized_only: bool = False, now: datetime | None = None) -> dict:
    now = now or utcnow()
    where = "WHERE t.finalized=1" if finalized_only else ""
    rows = conn.execute(f"""
        SELECT t.from_address, t.block_number, t.gas_used, t.gas_cost_wei, b.timestamp
        FROM transactions t JOIN blocks b ON b.number = t.block_number
        {where}
    """).fetchall()
    roll = compute_rollups(rows, now)
    refreshed_at = iso(now)

    with transaction(conn):
        conn.execute("DELETE FROM kpi_summary")
        conn.execute("DELETE FROM kpi_timeseries")
        conn.executemany("""
            INSERT INTO kpi_summary (scope, total_transactions, total_gas_used, total_gas_cost,
                                     avg_gas_per_tx, latest_block, txs_24h, txs_7d, refreshed_at)
            VALUES (?,?,?,?,?,?,?,?,?)
        """, [
            (scope, t.count, t.gas_used, str(t.gas_cost),
             (t.gas_used / t.count) if t.count else None,
             t.latest_block, t.txs_24h, t.txs_7d, refreshed_at)
            for scope, t in roll.summary.items()
        ])
        conn.executemany("""
            INSERT INTO kpi_timeseries (scope, granularity, period, transaction_count, gas_used, gas_cost)
            VALUES (?,?,?,?,?,?)
        """, [
            (scope, g, period, b.count, b.gas_used, str(b.gas_cost))
            for (scope, g, period), b in roll.series.items()
        ])

    stats = {"transactions": len(rows), "scopes": len(roll.summary), "buckets": len(roll.series)}
    logger.info(f"[aggregates] refreshed {stats}")
    return stats
