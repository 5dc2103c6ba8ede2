"""
Chain Reader: JSON-RPC calls with retry/backoff over a web3 provider.

Transient failures (HTTP 429/5xx, JSON-RPC rate-limit codes, dropped
connections, timeouts) are retried with exponential backoff; anything else
surfaces immediately as a non-retryable RpcError.
"""
import asyncio
from typing import Any, Sequence

import aiohttp
from loguru import logger
from web3 import AsyncWeb3
from web3.providers.async_rpc import AsyncHTTPProvider

from txray_indexer.errors import RpcError
from txray_indexer.helpers import hex_block, hex_to_int

RATE_LIMIT_CODES = {429, -32005, -32029}


def _is_rate_limit_message(msg: str) -> bool:
    m = msg.lower()
    return "rate limit" in m or "too many requests" in m or "limit exceeded" in m


def _retry_after(headers) -> float | None:
    if not headers:
        return None
    ra = headers.get("Retry-After")
    return float(ra) if ra and ra.isdigit() else None


class ChainReader:
    def __init__(self, w3, max_retries: int = 3, backoff_s: float = 1.0, sleep=asyncio.sleep):
        self.w3 = w3
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self._sleep = sleep

    @classmethod
    def from_url(cls, rpc_url: str, timeout_s: float = 20.0, **kw) -> "ChainReader":
        provider = AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout_s)})
        return cls(AsyncWeb3(provider), **kw)

    async def _once(self, method: str, params: list) -> Any:
        try:
            resp = await self.w3.provider.make_request(method, params)
        except aiohttp.ClientResponseError as e:
            transient = e.status == 429 or e.status >= 500
            raise RpcError(f"{method}: HTTP {e.status}", retryable=transient, status=e.status,
                           retry_after=_retry_after(e.headers)) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError) as e:
            raise RpcError(f"{method}: {type(e).__name__}: {e}", retryable=True) from e

        err = resp.get("error") if isinstance(resp, dict) else None
        if err:
            code = err.get("code") if isinstance(err, dict) else None
            msg = err.get("message", "") if isinstance(err, dict) else str(err)
            transient = (
                code in RATE_LIMIT_CODES
                or (isinstance(code, int) and code >= 500)
                or _is_rate_limit_message(msg)
            )
            raise RpcError(f"{method} RPC error code={code} message={msg}", retryable=transient, status=code)
        return resp.get("result")

    async def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        params = list(params)
        for attempt in range(self.max_retries):
            try:
                return await self._once(method, params)
            except RpcError as e:
                if not e.retryable:
                    raise
                if attempt + 1 >= self.max_retries:
                    raise RpcError(f"Retries exhausted for {method}: {e}", retryable=True, status=e.status) from e
                delay = e.retry_after or self.backoff_s * (2 ** attempt)
                logger.warning(f"[chain] {method} attempt {attempt + 1}/{self.max_retries} failed ({e}); retry in {delay:.1f}s")
                await self._sleep(delay)
        raise RpcError(f"Retries exhausted for {method}", retryable=True)

    # ---------- typed helpers ----------
    async def latest_block_number(self) -> int:
        return hex_to_int(await self.call("eth_blockNumber"))

    async def get_block(self, number: int, full_transactions: bool = False) -> dict | None:
        return await self.call("eth_getBlockByNumber", [hex_block(number), full_transactions])

    async def get_logs(self, from_block: int, to_block: int, addresses: Sequence[str],
                       topics: Sequence[str] = ()) -> list[dict]:
        flt: dict[str, Any] = {
            "fromBlock": hex_block(from_block),
            "toBlock": hex_block(to_block),
            "address": list(addresses),
        }
        if topics:
            flt["topics"] = [list(topics)]
        return await self.call("eth_getLogs", [flt]) or []

    async def get_transaction(self, tx_hash: str) -> dict | None:
        return await self.call("eth_getTransactionByHash", [tx_hash])

    async def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        return await self.call("eth_getTransactionReceipt", [tx_hash])
