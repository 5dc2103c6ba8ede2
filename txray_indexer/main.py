import asyncio, uvloop
from loguru import logger

from txray_indexer.config import IndexerConfig
from txray_indexer.db import db, ensure_schema
from txray_indexer.errors import ConfigError, LeaseHeldError
from txray_indexer.indexer import Indexer


async def main(config: IndexerConfig, iterations: int | None = None, indexer: Indexer | None = None):
    """
    Scheduler stand-in: one bounded run every loop_interval_s. Runs back to back while
    the cursor is still behind the head (backfill), then settles into the interval.
    """
    if indexer is None:
        conn = db(config.db_path)
        ensure_schema(conn, config.start_block)
        indexer = Indexer(config, conn)
    head = await indexer.reader.latest_block_number()
    logger.info(f"[loop] connected, head={head}")

    done = 0
    while iterations is None or done < iterations:
        done += 1
        try:
            res = await indexer.run_once()
        except ConfigError:
            raise
        except LeaseHeldError as e:
            logger.warning(f"[loop] {e}")
            await asyncio.sleep(config.loop_interval_s)
            continue
        except Exception:
            # already recorded on the cursor; try again next tick
            await asyncio.sleep(config.loop_interval_s)
            continue
        if res.last_block_number < res.head_block_number:
            continue
        await asyncio.sleep(config.loop_interval_s)


if __name__ == "__main__":
    uvloop.run(main(IndexerConfig.from_env().validate()))
