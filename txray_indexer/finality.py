import sqlite3


def finality_boundary(head: int, depth: int) -> int:
    return head - depth


def mark_finalized(conn: sqlite3.Connection, head: int, depth: int) -> int:
    """Flag transactions at least `depth` blocks under head. Never clears the flag."""
    boundary = finality_boundary(head, depth)
    if boundary < 0:
        return 0
    cur = conn.execute(
        "UPDATE transactions SET finalized=1 WHERE finalized=0 AND block_number <= ?",
        (boundary,),
    )
    return cur.rowcount
