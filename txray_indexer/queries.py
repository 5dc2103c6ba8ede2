"""Read side: every function here only selects already-committed rows."""
import sqlite3
from datetime import datetime
from typing import Any, Dict, List

from txray_indexer.aggregates import GLOBAL_SCOPE, GRANULARITIES
from txray_indexer.cursor import CursorStore
from txray_indexer.db import row_to_dict
from txray_indexer.helpers import from_unix, iso

DEFAULT_PAGE = 50
MAX_PAGE = 500

TX_COLUMNS = """
    t.hash, t.block_number, t.tx_index, b.timestamp AS block_timestamp,
    t.from_address, t.to_address, t.value_wei, t.gas_used, t.gas_price,
    t.effective_gas_price, t.gas_cost_wei, t.method, t.status, t.finalized
"""


def clamp_limit(limit: int | None, default: int = DEFAULT_PAGE, cap: int = MAX_PAGE) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), cap))


def _tx_out(row: sqlite3.Row) -> Dict[str, Any]:
    d = row_to_dict(row)
    d["block_timestamp"] = iso(from_unix(d["block_timestamp"])) if d["block_timestamp"] is not None else None
    d["finalized"] = bool(d["finalized"])
    return d


# ---------- summary ----------
def get_summary(conn: sqlite3.Connection, wallet: str | None = None) -> Dict[str, Any]:
    scope = wallet.lower() if wallet else GLOBAL_SCOPE
    row = conn.execute("""
        SELECT total_transactions, total_gas_used, total_gas_cost, avg_gas_per_tx,
               latest_block, txs_24h, txs_7d, refreshed_at
        FROM kpi_summary WHERE scope=?
    """, (scope,)).fetchone()
    out: Dict[str, Any] = row_to_dict(row) if row else {
        "total_transactions": 0,
        "total_gas_used": 0,
        "total_gas_cost": "0",
        "avg_gas_per_tx": 0,
        "latest_block": None,
        "txs_24h": 0,
        "txs_7d": 0,
        "refreshed_at": None,
    }
    if out["avg_gas_per_tx"] is None:
        out["avg_gas_per_tx"] = 0
    if wallet:
        out["wallet"] = scope
    return out


# ---------- timeseries ----------
def get_timeseries(conn: sqlite3.Connection, granularity: str = "day", start: datetime | None = None,
                   end: datetime | None = None, wallet: str | None = None, order: str = "desc") -> List[Dict[str, Any]]:
    """Buckets whose start falls in [start, end)."""
    if granularity not in GRANULARITIES:
        raise ValueError(f"granularity must be one of {', '.join(GRANULARITIES)}")
    if order not in ("asc", "desc"):
        raise ValueError("order must be asc or desc")
    sql = """
        SELECT period, transaction_count, gas_used, gas_cost
        FROM kpi_timeseries
        WHERE scope=? AND granularity=?
    """
    params: list = [wallet.lower() if wallet else GLOBAL_SCOPE, granularity]
    if start is not None:
        sql += " AND period >= ?"
        params.append(iso(start))
    if end is not None:
        sql += " AND period < ?"
        params.append(iso(end))
    sql += f" ORDER BY period {'ASC' if order == 'asc' else 'DESC'}"
    return [row_to_dict(r) for r in conn.execute(sql, params).fetchall()]


# ---------- transactions ----------
def parse_keyset(cursor: str) -> tuple[int, str]:
    """'<block_number>:<hash>' -> (block_number, hash)."""
    block, sep, h = cursor.partition(":")
    if not sep or not h:
        raise ValueError("cursor must look like <block_number>:<hash>")
    try:
        return int(block), h.lower()
    except ValueError:
        raise ValueError("cursor block number must be an integer")


def list_transactions(conn: sqlite3.Connection, limit: int | None = None, offset: int = 0,
                      wallet: str | None = None, cursor: str | None = None) -> tuple[List[Dict[str, Any]], str | None]:
    """
    Newest first by (block_number, tx_index). With a keyset cursor the page starts right
    after that transaction and offset is ignored. Returns (rows, next_cursor).
    """
    limit = clamp_limit(limit)
    where, params = [], []
    if wallet:
        where.append("t.from_address = ?")
        params.append(wallet.lower())
    if cursor:
        bn, h = parse_keyset(cursor)
        anchor = conn.execute("SELECT block_number, tx_index FROM transactions WHERE hash = ?", (h,)).fetchone()
        if anchor is None or anchor[0] != bn:
            raise ValueError("cursor does not point at an indexed transaction")
        where.append("(t.block_number < ? OR (t.block_number = ? AND t.tx_index < ?))")
        params += [bn, bn, anchor[1]]
        offset = 0
    sql = f"SELECT {TX_COLUMNS} FROM transactions t LEFT JOIN blocks b ON b.number = t.block_number"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY t.block_number DESC, t.tx_index DESC LIMIT ? OFFSET ?"
    params += [limit, max(0, int(offset))]
    rows = [_tx_out(r) for r in conn.execute(sql, params).fetchall()]
    next_cursor = f"{rows[-1]['block_number']}:{rows[-1]['hash']}" if len(rows) == limit else None
    return rows, next_cursor


def tx_by_hash(conn: sqlite3.Connection, tx_hash: str) -> Dict[str, Any] | None:
    row = conn.execute(f"""
        SELECT {TX_COLUMNS} FROM transactions t LEFT JOIN blocks b ON b.number = t.block_number
        WHERE t.hash = ?
    """, (tx_hash.lower(),)).fetchone()
    return _tx_out(row) if row else None


def search_wallets(conn: sqlite3.Connection, q: str, limit: int = 10) -> List[str]:
    q = (q or "").strip().lower()
    if len(q) < 3:
        return []
    pattern = "%" + q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
    rows = conn.execute("""
        SELECT addr FROM (
            SELECT from_address AS addr FROM transactions WHERE from_address LIKE ? ESCAPE '\\'
            UNION
            SELECT to_address AS addr FROM transactions WHERE to_address LIKE ? ESCAPE '\\'
        ) ORDER BY addr LIMIT ?
    """, (pattern, pattern, limit)).fetchall()
    return [r[0] for r in rows]


# ---------- health ----------
def get_health(conn: sqlite3.Connection) -> Dict[str, Any]:
    cur = CursorStore(conn).load()
    return {"index_cursor": cur.public() if cur else None}
