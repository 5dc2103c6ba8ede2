import json, sqlite3
from dataclasses import asdict, dataclass

from txray_indexer.db import upsert_rows
from txray_indexer.helpers import hex_to_int, iso, to_addr, utcnow


@dataclass(slots=True, frozen=True)
class BlockRow:
    number: int
    hash: str
    parent_hash: str
    timestamp: int
    gas_used: int | None
    gas_limit: int | None
    miner: str | None
    base_fee_per_gas: str | None
    tx_count: int


@dataclass(slots=True, frozen=True)
class TxRow:
    hash: str
    block_number: int
    tx_index: int
    from_address: str
    to_address: str | None
    value_wei: str
    gas_used: int | None
    gas_price: str | None
    effective_gas_price: str | None
    gas_cost_wei: str | None
    input_selector: str | None
    method: str
    status: str


@dataclass(slots=True, frozen=True)
class LogRow:
    id: str
    transaction_hash: str
    log_index: int
    block_number: int
    block_hash: str | None
    address: str
    topics: str
    data: str
    removed: int


def _dec(x) -> str | None:
    v = hex_to_int(x)
    return None if v is None else str(v)


def normalize_block(b: dict) -> BlockRow:
    txs = b.get("transactions") or []
    base_fee = b.get("baseFeePerGas")
    return BlockRow(
        number=hex_to_int(b["number"]),
        hash=b["hash"].lower(),
        parent_hash=b["parentHash"].lower(),
        timestamp=hex_to_int(b["timestamp"]),
        gas_used=hex_to_int(b.get("gasUsed")),
        gas_limit=hex_to_int(b.get("gasLimit")),
        miner=to_addr(b.get("miner") or b.get("coinbase")),
        base_fee_per_gas=_dec(base_fee) if base_fee is not None else None,
        tx_count=len(txs),
    )


def tx_status(receipt: dict | None) -> str:
    if not receipt or receipt.get("status") is None:
        return "pending"
    return "success" if hex_to_int(receipt["status"]) == 1 else "fail"


def normalize_transaction(tx: dict, receipt: dict | None, method: str) -> TxRow:
    gas_used = hex_to_int(receipt.get("gasUsed")) if receipt else None
    gas_price = hex_to_int(tx.get("gasPrice"))
    eff = hex_to_int(receipt.get("effectiveGasPrice")) if receipt else None
    if eff is None:
        eff = gas_price
    inp = (tx.get("input") or "0x").lower()
    return TxRow(
        hash=tx["hash"].lower(),
        block_number=hex_to_int(tx["blockNumber"]),
        tx_index=hex_to_int(tx.get("transactionIndex")) or 0,
        from_address=to_addr(tx["from"]),
        to_address=to_addr(tx.get("to")),
        value_wei=str(hex_to_int(tx.get("value")) or 0),
        gas_used=gas_used,
        gas_price=None if gas_price is None else str(gas_price),
        effective_gas_price=None if eff is None else str(eff),
        gas_cost_wei=str(gas_used * eff) if gas_used is not None and eff is not None else None,
        input_selector="0x" + inp[2:10] if len(inp) >= 10 else None,
        method=method,
        status=tx_status(receipt),
    )


def normalize_log(lg: dict) -> LogRow:
    txh = lg["transactionHash"].lower()
    idx = hex_to_int(lg["logIndex"])
    return LogRow(
        id=f"{txh}_{idx}",
        transaction_hash=txh,
        log_index=idx,
        block_number=hex_to_int(lg["blockNumber"]),
        block_hash=(lg.get("blockHash") or "").lower() or None,
        address=to_addr(lg["address"]),
        topics=json.dumps([t.lower() for t in lg.get("topics") or []]),
        data=lg.get("data") or "0x",
        removed=1 if lg.get("removed") else 0,
    )


# ---------- upserts ----------
def upsert_blocks(conn: sqlite3.Connection, rows: list[BlockRow], batch_size: int = 500) -> int:
    return upsert_rows(conn, "blocks", ("number",), (asdict(r) for r in rows), batch_size)


def upsert_transactions(conn: sqlite3.Connection, rows: list[TxRow], batch_size: int = 500) -> int:
    now = iso(utcnow())
    payload = ({**asdict(r), "indexed_at": now} for r in rows)
    # finalized is only ever flipped by the finality marker
    return upsert_rows(conn, "transactions", ("hash",), payload, batch_size, keep=("indexed_at",))


def upsert_logs(conn: sqlite3.Connection, rows: list[LogRow], batch_size: int = 500) -> int:
    return upsert_rows(conn, "logs", ("id",), (asdict(r) for r in rows), batch_size)
