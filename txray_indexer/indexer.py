import sqlite3, uuid
from dataclasses import dataclass

from loguru import logger

from txray_indexer.aggregates import refresh_aggregates
from txray_indexer.chain import ChainReader
from txray_indexer.config import IndexerConfig
from txray_indexer.cursor import Cursor, CursorStore
from txray_indexer.db import transaction
from txray_indexer.decoder import MethodDecoder
from txray_indexer.fetcher import ChunkResult, fetch_window
from txray_indexer.finality import mark_finalized
from txray_indexer.normalize import upsert_blocks, upsert_logs, upsert_transactions
from txray_indexer.notify import Notifier
from txray_indexer.scanner import plan_window


@dataclass(frozen=True)
class RunResult:
    inserted: int
    last_block_number: int
    head_block_number: int
    from_block: int | None = None
    to_block: int | None = None
    capped: bool = False

    def as_dict(self) -> dict:
        return {
            "ok": True,
            "inserted": self.inserted,
            "last_block_number": self.last_block_number,
            "head_block_number": self.head_block_number,
        }


class Indexer:
    """
    One call to run_once() is one bounded unit of work:
    scan -> fetch/decode -> upsert -> finalize -> refresh -> advance cursor.
    """

    def __init__(self, config: IndexerConfig, conn: sqlite3.Connection,
                 reader: ChainReader | None = None, decoder: MethodDecoder | None = None,
                 notifier: Notifier | None = None):
        self.config = config
        self.conn = conn
        self.store = CursorStore(conn)
        self._reader = reader
        self._decoder = decoder
        self.notifier = notifier or Notifier(config.telegram_bot_token, config.telegram_chat_id)

    @property
    def reader(self) -> ChainReader:
        if self._reader is None:
            c = self.config
            self._reader = ChainReader.from_url(
                c.rpc_url, timeout_s=c.rpc_timeout_s, max_retries=c.rpc_max_retries, backoff_s=c.rpc_backoff_s,
            )
        return self._reader

    @property
    def decoder(self) -> MethodDecoder:
        if self._decoder is None:
            self._decoder = MethodDecoder.from_path(self.config.abi_path)
        return self._decoder

    def persist_chunk(self, chunk: ChunkResult) -> None:
        bs = self.config.upsert_batch_size
        with transaction(self.conn):
            # transactions before logs: every log row points at a stored tx
            upsert_blocks(self.conn, chunk.blocks, bs)
            upsert_transactions(self.conn, chunk.transactions, bs)
            upsert_logs(self.conn, chunk.logs, bs)

    async def run_once(self) -> RunResult:
        cfg = self.config.validate()
        owner = uuid.uuid4().hex
        self.store.acquire_lease(owner, cfg.lease_ttl_s)
        cursor: Cursor | None = None
        head: int | None = None
        try:
            cursor = self.store.load()
            head = await self.reader.latest_block_number()
            window = plan_window(cursor.last_block_number, head, cfg.chunk_size, cfg.overlap_blocks)
            if window is None:
                # nothing new; record the run without ever moving backwards
                nxt = self.store.advance(cursor, head)
                logger.info(f"[indexer] up to date at {nxt.last_block_number} (head={head})")
                return RunResult(0, nxt.last_block_number, head)

            logger.info(f"[indexer] cursor={cursor.last_block_number} head={head} window={window.start}..{window.end}")
            chunk = await fetch_window(
                self.reader, self.decoder, window, list(cfg.contracts), list(cfg.event_topics),
                max_txs=cfg.max_txs_per_run, concurrency=cfg.rpc_concurrency,
                # overlap blocks and the first new block are always taken whole
                keep_through=cursor.last_block_number + 1,
            )
            self.persist_chunk(chunk)
            flipped = mark_finalized(self.conn, head, cfg.finality_depth)
            refresh_aggregates(self.conn, finalized_only=cfg.aggregate_finalized_only)
            nxt = self.store.advance(cursor, chunk.processed_to)
            logger.info(
                f"[indexer] indexed {window.start}..{chunk.processed_to}: "
                f"{len(chunk.transactions)} txs, {len(chunk.logs)} logs, {flipped} finalized"
            )
        except Exception as e:
            msg = f"{type(e).__name__}: {e}"
            logger.error(f"[indexer] run failed: {msg}")
            if cursor is not None:
                self.store.mark_error(cursor, msg)
            await self.notifier.indexer_error(msg, cursor.last_block_number if cursor else None, head)
            raise
        finally:
            self.store.release_lease(owner)

        if chunk.transactions:
            await self.notifier.indexer_update(cursor.last_block_number, nxt.last_block_number, len(chunk.transactions))
        return RunResult(
            inserted=len(chunk.transactions),
            last_block_number=nxt.last_block_number,
            head_block_number=head,
            from_block=window.start,
            to_block=chunk.processed_to,
            capped=chunk.capped,
        )
