import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Sequence

from txray_indexer.errors import PersistenceError
from txray_indexer.helpers import chunked

SCHEMA = """
CREATE TABLE IF NOT EXISTS blocks (
    number            INTEGER PRIMARY KEY,
    hash              TEXT NOT NULL,
    parent_hash       TEXT NOT NULL,
    timestamp         INTEGER NOT NULL,       -- unix seconds
    gas_used          INTEGER,
    gas_limit         INTEGER,
    miner             TEXT,
    base_fee_per_gas  TEXT,
    tx_count          INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS transactions (
    hash                 TEXT PRIMARY KEY,
    block_number         INTEGER NOT NULL,
    tx_index             INTEGER NOT NULL DEFAULT 0,
    from_address         TEXT NOT NULL,
    to_address           TEXT,
    value_wei            TEXT NOT NULL,       -- decimal string
    gas_used             INTEGER,
    gas_price            TEXT,
    effective_gas_price  TEXT,
    gas_cost_wei         TEXT,
    input_selector       TEXT,
    method               TEXT NOT NULL,
    status               TEXT NOT NULL,       -- success | fail | pending
    finalized            INTEGER NOT NULL DEFAULT 0,
    indexed_at           TEXT,
    FOREIGN KEY(block_number) REFERENCES blocks(number)
);
CREATE INDEX IF NOT EXISTS idx_tx_order ON transactions(block_number DESC, tx_index DESC);
CREATE INDEX IF NOT EXISTS idx_tx_from  ON transactions(from_address);
CREATE INDEX IF NOT EXISTS idx_tx_final ON transactions(finalized, block_number);

CREATE TABLE IF NOT EXISTS logs (
    id                TEXT PRIMARY KEY,       -- <tx_hash>_<log_index>
    transaction_hash  TEXT NOT NULL,
    log_index         INTEGER NOT NULL,
    block_number      INTEGER NOT NULL,
    block_hash        TEXT,
    address           TEXT NOT NULL,
    topics            TEXT NOT NULL,          -- JSON array
    data              TEXT NOT NULL,
    removed           INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY(transaction_hash) REFERENCES transactions(hash)
);
CREATE INDEX IF NOT EXISTS idx_logs_tx   ON logs(transaction_hash);
CREATE INDEX IF NOT EXISTS idx_logs_addr ON logs(address, block_number);

CREATE TABLE IF NOT EXISTS index_cursor (
    id                 INTEGER PRIMARY KEY CHECK (id=1),
    last_block_number  INTEGER NOT NULL,
    last_run_at        TEXT,
    status             TEXT NOT NULL DEFAULT 'active',
    error_message      TEXT,
    retry_count        INTEGER NOT NULL DEFAULT 0,
    locked_until       REAL,
    lock_owner         TEXT
);

-- rollups, rebuilt by the aggregation refresher. scope '' = all wallets
CREATE TABLE IF NOT EXISTS kpi_summary (
    scope               TEXT PRIMARY KEY,
    total_transactions  INTEGER NOT NULL,
    total_gas_used      INTEGER NOT NULL,
    total_gas_cost      TEXT NOT NULL,
    avg_gas_per_tx      REAL,
    latest_block        INTEGER,
    txs_24h             INTEGER NOT NULL,
    txs_7d              INTEGER NOT NULL,
    refreshed_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS kpi_timeseries (
    scope              TEXT NOT NULL,
    granularity        TEXT NOT NULL,
    period             TEXT NOT NULL,         -- bucket start, ISO8601 UTC
    transaction_count  INTEGER NOT NULL,
    gas_used           INTEGER NOT NULL,
    gas_cost           TEXT NOT NULL,
    PRIMARY KEY (scope, granularity, period)
);
"""


def db(path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    return conn


def ensure_schema(conn: sqlite3.Connection, start_block: int = 0):
    conn.executescript(SCHEMA)
    # the singleton checkpoint is created once and only moved afterwards
    conn.execute(
        "INSERT OR IGNORE INTO index_cursor(id, last_block_number, status, retry_count) VALUES(1, ?, 'active', 0);",
        (int(start_block),),
    )


@contextmanager
def transaction(conn: sqlite3.Connection):
    """BEGIN/COMMIT around a unit of writes; sqlite errors become PersistenceError."""
    try:
        conn.execute("BEGIN IMMEDIATE;")
    except sqlite3.Error as e:
        raise PersistenceError(f"begin failed: {e}") from e
    try:
        yield conn
    except sqlite3.Error as e:
        conn.execute("ROLLBACK;")
        raise PersistenceError(str(e)) from e
    except BaseException:
        conn.execute("ROLLBACK;")
        raise
    try:
        conn.execute("COMMIT;")
    except sqlite3.Error as e:
        conn.execute("ROLLBACK;")
        raise PersistenceError(f"commit failed: {e}") from e


def upsert_rows(conn: sqlite3.Connection, table: str, key: Sequence[str], rows: Iterable[Dict[str, Any]],
                batch_size: int = 500, keep: Sequence[str] = ()) -> int:
    """INSERT ... ON CONFLICT(key) DO UPDATE for every non-key column except `keep`."""
    rows = list(rows)
    if not rows:
        return 0
    cols = list(rows[0].keys())
    qmarks = ",".join(["?"] * len(cols))
    updates = [c for c in cols if c not in key and c not in keep]
    col_sql = ",".join(f'"{c}"' for c in cols)
    set_sql = ", ".join(f'"{c}"=excluded."{c}"' for c in updates)
    sql = f"""
        INSERT INTO {table} ({col_sql}) VALUES ({qmarks})
        ON CONFLICT({",".join(key)}) DO {"UPDATE SET " + set_sql if set_sql else "NOTHING"}
    """
    for batch in chunked(rows, batch_size):
        conn.executemany(sql, [tuple(r[c] for c in cols) for r in batch])
    return len(rows)


def row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {k: row[k] for k in row.keys()}
