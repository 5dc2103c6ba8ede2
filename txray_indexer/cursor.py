import sqlite3, time
from dataclasses import dataclass, replace
from typing import Any, Dict

from loguru import logger

from txray_indexer.errors import LeaseHeldError, PersistenceError
from txray_indexer.helpers import iso, utcnow


@dataclass(frozen=True)
class Cursor:
    last_block_number: int
    last_run_at: str | None = None
    status: str = "active"          # active | error
    error_message: str | None = None
    retry_count: int = 0

    def public(self) -> Dict[str, Any]:
        return {
            "last_block_number": self.last_block_number,
            "last_run_at": self.last_run_at,
            "status": self.status,
        }


class CursorStore:
    """The index_cursor singleton: read once at the start of a run, written once at the end."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def load(self) -> Cursor | None:
        row = self.conn.execute("""
            SELECT last_block_number, last_run_at, status, error_message, retry_count
            FROM index_cursor WHERE id=1
        """).fetchone()
        if row is None:
            return None
        return Cursor(
            last_block_number=int(row[0]),
            last_run_at=row[1],
            status=row[2],
            error_message=row[3],
            retry_count=int(row[4] or 0),
        )

    def save(self, cursor: Cursor) -> None:
        try:
            self.conn.execute("""
                INSERT INTO index_cursor(id, last_block_number, last_run_at, status, error_message, retry_count)
                VALUES (1, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    last_block_number=excluded.last_block_number,
                    last_run_at=excluded.last_run_at,
                    status=excluded.status,
                    error_message=excluded.error_message,
                    retry_count=excluded.retry_count
            """, (cursor.last_block_number, cursor.last_run_at, cursor.status,
                  cursor.error_message, cursor.retry_count))
        except sqlite3.Error as e:
            raise PersistenceError(f"cursor save failed: {e}") from e

    def advance(self, cursor: Cursor, to_block: int) -> Cursor:
        """Successful run: block number and run time move together, error state clears."""
        nxt = Cursor(
            last_block_number=max(cursor.last_block_number, int(to_block)),
            last_run_at=iso(utcnow()),
            status="active",
            error_message=None,
            retry_count=0,
        )
        self.save(nxt)
        return nxt

    def mark_error(self, cursor: Cursor, message: str) -> Cursor:
        nxt = replace(cursor, status="error", error_message=message[:2000], retry_count=cursor.retry_count + 1)
        self.save(nxt)
        return nxt

    def reset(self, block: int) -> Cursor:
        """Operator reset; the only way the checkpoint moves backwards."""
        logger.warning(f"[cursor] manual reset to block {block}")
        cur = Cursor(last_block_number=int(block))
        self.save(cur)
        return cur

    # ---------- lease ----------
    def acquire_lease(self, owner: str, ttl_s: float) -> None:
        now = time.time()
        try:
            cur = self.conn.execute("""
                UPDATE index_cursor SET locked_until=?, lock_owner=?
                WHERE id=1 AND (locked_until IS NULL OR locked_until < ? OR lock_owner=?)
            """, (now + ttl_s, owner, now, owner))
        except sqlite3.Error as e:
            raise PersistenceError(f"lease acquire failed: {e}") from e
        if cur.rowcount != 1:
            row = self.conn.execute("SELECT lock_owner, locked_until FROM index_cursor WHERE id=1").fetchone()
            holder = row[0] if row else None
            raise LeaseHeldError(f"indexer run already in progress (lease held by {holder})")

    def release_lease(self, owner: str) -> None:
        self.conn.execute(
            "UPDATE index_cursor SET locked_until=NULL, lock_owner=NULL WHERE id=1 AND lock_owner=?",
            (owner,),
        )
