import asyncio, html

import aiohttp
from loguru import logger

from txray_indexer.helpers import iso, utcnow

TELEGRAM_API = "https://api.telegram.org"


class Notifier:
    """Telegram alerts for indexer runs. A no-op unless token and chat id are set."""

    def __init__(self, bot_token: str | None = None, chat_id: str | None = None, timeout_s: float = 10.0):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout_s = timeout_s

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send(self, text: str) -> bool:
        if not self.enabled:
            return False
        url = f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": text, "parse_mode": "HTML", "disable_web_page_preview": True}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as s:
                async with s.post(url, json=payload) as r:
                    if r.status != 200:
                        logger.warning(f"[notify] telegram answered HTTP {r.status}")
                        return False
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            # alerts never fail the run
            logger.warning(f"[notify] telegram send failed: {e}")
            return False

    async def indexer_update(self, from_block: int, to_block: int, inserted: int) -> bool:
        return await self.send(
            "<b>Indexer update</b>\n"
            f"Blocks: {from_block} → {to_block}\n"
            f"Transactions: {inserted}\n"
            f"Time: {iso(utcnow())}"
        )

    async def indexer_error(self, message: str, last_block: int | None, head_block: int | None) -> bool:
        return await self.send(
            "<b>Indexer error</b>\n"
            f"Error: <code>{html.escape(message)}</code>\n"
            f"Last block: {last_block if last_block is not None else 'unknown'}\n"
            f"Head block: {head_block if head_block is not None else 'unknown'}\n"
            f"Time: {iso(utcnow())}"
        )
