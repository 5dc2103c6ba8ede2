from datetime import datetime, timezone

import pytest

from txray_indexer.aggregates import bucket_start, compute_rollups, refresh_aggregates
from txray_indexer.queries import get_summary, get_timeseries

from .conftest import ALICE, BOB

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)   # a Wednesday
TS = int(NOW.timestamp())


def seed(conn, rows):
    """rows: (hash, block, from, gas_used, gas_cost, unix ts, finalized)"""
    for h, bn, frm, gu, gc, ts, fin in rows:
        conn.execute("INSERT OR IGNORE INTO blocks(number, hash, parent_hash, timestamp) VALUES (?,?,?,?)",
                     (bn, f"0xb{bn}", "0x0", ts))
        conn.execute("""
            INSERT INTO transactions(hash, block_number, tx_index, from_address, to_address, value_wei,
                                     gas_used, gas_cost_wei, method, status, finalized)
            VALUES (?,?,0,?,NULL,'0',?,?,'transfer','success',?)
        """, (h, bn, frm, gu, str(gc), fin))


@pytest.mark.parametrize("g,expected", [
    ("hour", datetime(2024, 5, 15, 12, tzinfo=timezone.utc)),
    ("day", datetime(2024, 5, 15, tzinfo=timezone.utc)),
    ("week", datetime(2024, 5, 13, tzinfo=timezone.utc)),
    ("month", datetime(2024, 5, 1, tzinfo=timezone.utc)),
])
def test_bucket_start(g, expected):
    assert bucket_start(NOW.replace(minute=42, second=7), g) == expected


def test_bucket_start_rejects_unknown():
    with pytest.raises(ValueError):
        bucket_start(NOW, "year")


def test_rollups_per_scope():
    rows = [
        (ALICE, 10, 100, 1000, TS - 60),
        (ALICE, 11, 200, 2000, TS - 3 * 86400),
        (BOB, 12, 300, 3000, TS - 30 * 86400),
    ]
    roll = compute_rollups(rows, NOW)
    g = roll.summary[""]
    assert (g.count, g.gas_used, g.gas_cost, g.latest_block, g.txs_24h, g.txs_7d) == (3, 600, 6000, 12, 1, 2)
    a = roll.summary[ALICE]
    assert (a.count, a.txs_24h, a.txs_7d) == (2, 1, 2)
    assert roll.series[(BOB, "day", "2024-04-15T00:00:00Z")].gas_used == 300


def test_refresh_writes_rollups(conn):
    big = 2**64   # past sqlite's integer range once summed
    seed(conn, [
        ("0x01", 10, ALICE, 100, big, TS - 60, 1),
        ("0x02", 11, ALICE, 200, big, TS - 7200, 0),
        ("0x03", 12, BOB, 300, 5, TS - 86400 * 2, 1),
    ])
    stats = refresh_aggregates(conn, now=NOW)
    assert stats["transactions"] == 3

    s = get_summary(conn)
    assert s["total_transactions"] == 3
    assert s["total_gas_used"] == 600
    assert s["total_gas_cost"] == str(2 * big + 5)
    assert s["avg_gas_per_tx"] == 200
    assert s["latest_block"] == 12
    assert (s["txs_24h"], s["txs_7d"]) == (2, 3)

    w = get_summary(conn, ALICE)
    assert w["wallet"] == ALICE and w["total_transactions"] == 2

    hours = get_timeseries(conn, "hour", order="asc")
    assert [h["transaction_count"] for h in hours] == [1, 1, 1]
    days = get_timeseries(conn, "day")
    assert days[0]["period"] == "2024-05-15T00:00:00Z"
    assert days[0]["transaction_count"] == 2


def test_refresh_finalized_only(conn):
    seed(conn, [
        ("0x01", 10, ALICE, 100, 1, TS, 1),
        ("0x02", 11, ALICE, 200, 1, TS, 0),
    ])
    refresh_aggregates(conn, finalized_only=True, now=NOW)
    assert get_summary(conn)["total_transactions"] == 1


def test_refresh_replaces_stale_rows(conn):
    seed(conn, [("0x01", 10, ALICE, 100, 1, TS, 1)])
    refresh_aggregates(conn, now=NOW)
    conn.execute("DELETE FROM transactions")
    refresh_aggregates(conn, now=NOW)
    assert get_summary(conn, ALICE)["total_transactions"] == 0
    assert get_timeseries(conn, "day") == []
    assert get_summary(conn)["total_transactions"] == 0
