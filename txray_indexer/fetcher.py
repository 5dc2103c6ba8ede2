import asyncio
from dataclasses import dataclass, field
from typing import Sequence

from loguru import logger

from txray_indexer.chain import ChainReader
from txray_indexer.decoder import MethodDecoder
from txray_indexer.helpers import hex_to_int
from txray_indexer.normalize import (
    BlockRow, LogRow, TxRow, normalize_block, normalize_log, normalize_transaction,
)
from txray_indexer.scanner import ScanWindow


@dataclass(slots=True)
class ChunkResult:
    window: ScanWindow
    processed_to: int
    blocks: list[BlockRow] = field(default_factory=list)
    transactions: list[TxRow] = field(default_factory=list)
    logs: list[LogRow] = field(default_factory=list)
    capped: bool = False


def _order_hashes(logs: list[dict]) -> dict[str, int]:
    """Unique tx hashes -> block number, in (block, log index) order."""
    ordered = sorted(logs, key=lambda lg: (hex_to_int(lg["blockNumber"]), hex_to_int(lg["logIndex"])))
    out: dict[str, int] = {}
    for lg in ordered:
        out.setdefault(lg["transactionHash"].lower(), hex_to_int(lg["blockNumber"]))
    return out


def cap_by_block(tx_blocks: dict[str, int], max_txs: int,
                 keep_through: int = -1) -> tuple[list[str], int | None]:
    """
    Keep whole blocks while the tx count stays within max_txs.
    Returns (kept hashes, first excluded block or None). Blocks up to `keep_through`
    are always kept, as is the first block, so a run always ends past the cursor.
    """
    per_block: dict[int, list[str]] = {}
    for h, bn in tx_blocks.items():
        per_block.setdefault(bn, []).append(h)
    kept: list[str] = []
    for bn in sorted(per_block):
        hashes = per_block[bn]
        if kept and bn > keep_through and len(kept) + len(hashes) > max_txs:
            return kept, bn
        kept.extend(hashes)
    return kept, None


async def fetch_window(reader: ChainReader, decoder: MethodDecoder, window: ScanWindow,
                       addresses: Sequence[str], topics: Sequence[str] = (), max_txs: int = 3000,
                       concurrency: int = 20, keep_through: int = -1) -> ChunkResult:
    raw_logs = await reader.get_logs(window.start, window.end, addresses, topics)
    # a node can hand back logs a hair outside the filter; keep to the monitored set
    watch = {a.lower() for a in addresses}
    raw_logs = [lg for lg in raw_logs if lg.get("address", "").lower() in watch]
    logger.info(f"[indexer] blocks {window.start}..{window.end}: {len(raw_logs)} logs")

    tx_blocks = _order_hashes(raw_logs)
    hashes, first_excluded = cap_by_block(tx_blocks, max_txs, keep_through)
    processed_to = window.end if first_excluded is None else first_excluded - 1
    if first_excluded is not None:
        logger.warning(
            f"[indexer] MAX_TXS_PER_RUN={max_txs} reached; stopping at block {processed_to} "
            f"({len(hashes)}/{len(tx_blocks)} txs)"
        )

    sem = asyncio.Semaphore(concurrency)

    async def limited(coro):
        async with sem:
            return await coro

    async def fetch_tx(h: str):
        tx, rec = await asyncio.gather(
            limited(reader.get_transaction(h)), limited(reader.get_transaction_receipt(h))
        )
        return h, tx, rec

    async def fetch_blk(n: int):
        return n, await limited(reader.get_block(n))

    block_numbers = sorted({tx_blocks[h] for h in hashes})
    tx_results, blk_results = await asyncio.gather(
        asyncio.gather(*(fetch_tx(h) for h in hashes)),
        asyncio.gather(*(fetch_blk(n) for n in block_numbers)),
    )

    blocks = {n: normalize_block(b) for n, b in blk_results if b}
    kept_hashes: set[str] = set()
    txs: list[TxRow] = []
    for h, tx, rec in tx_results:
        if tx is None or tx.get("blockNumber") is None:
            logger.warning(f"[indexer] tx {h} not returned by node (reorged?); skipping")
            continue
        if hex_to_int(tx["blockNumber"]) not in blocks:
            logger.warning(f"[indexer] block of tx {h} missing; skipping")
            continue
        method = decoder.classify(tx.get("input")).label()
        txs.append(normalize_transaction(tx, rec, method))
        kept_hashes.add(h)

    logs = [
        normalize_log(lg) for lg in raw_logs
        if lg["transactionHash"].lower() in kept_hashes
    ]
    used_blocks = {t.block_number for t in txs}
    return ChunkResult(
        window=window,
        processed_to=processed_to,
        blocks=[blocks[n] for n in sorted(used_blocks)],
        transactions=txs,
        logs=logs,
        capped=first_excluded is not None,
    )
