"""Shared fixtures: an in-memory fake chain behind a JSON-RPC provider, config and sqlite."""

import itertools
from collections import defaultdict
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from txray_indexer.chain import ChainReader
from txray_indexer.config import IndexerConfig
from txray_indexer.db import db, ensure_schema
from txray_indexer.decoder import MethodDecoder
from txray_indexer.indexer import Indexer
from txray_indexer.notify import Notifier

CONTRACT = "0x" + "c0" * 20
OTHER_CONTRACT = "0x" + "0e" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
GENESIS_TS = 1_700_000_000


class FakeChain:
    """
    Just enough of an EVM node for the indexer: blocks, transactions, receipts and logs.
    Queue an exception or a JSON-RPC error dict in `failures[method]` to make the next
    call to that method fail.
    """

    def __init__(self, head: int = 0):
        self.head = head
        self.blocks: dict[int, dict] = {}
        self.txs: dict[str, dict] = {}
        self.receipts: dict[str, dict] = {}
        self.logs: list[dict] = []
        self.failures: dict[str, list] = defaultdict(list)
        self.calls: list[tuple[str, list]] = []
        self._ids = itertools.count(1)

    def block(self, number: int) -> dict:
        if number not in self.blocks:
            self.blocks[number] = {
                "number": hex(number),
                "hash": "0x" + f"{number:064x}",
                "parentHash": "0x" + f"{max(number - 1, 0):064x}",
                "timestamp": hex(GENESIS_TS + number * 12),
                "gasUsed": hex(1_000_000),
                "gasLimit": hex(30_000_000),
                "miner": "0x" + "99" * 20,
                "baseFeePerGas": hex(7),
                "transactions": [],
            }
        return self.blocks[number]

    def add_tx(self, block: int, sender: str = ALICE, contract: str = CONTRACT, input: str = "0x",
               status: int = 1, gas_used: int = 50_000, gas_price: int = 10**9, logs: int = 1) -> str:
        n = next(self._ids)
        h = "0x" + f"{n:064x}"
        blk = self.block(block)
        idx = len(blk["transactions"])
        blk["transactions"].append(h)
        self.txs[h] = {
            "hash": h,
            "blockNumber": hex(block),
            "transactionIndex": hex(idx),
            "from": sender,
            "to": contract,
            "value": hex(0),
            "gasPrice": hex(gas_price),
            "input": input,
        }
        self.receipts[h] = {
            "transactionHash": h,
            "status": hex(status),
            "gasUsed": hex(gas_used),
            "effectiveGasPrice": hex(gas_price),
        }
        for i in range(logs):
            self.logs.append({
                "address": contract,
                "blockNumber": hex(block),
                "blockHash": blk["hash"],
                "transactionHash": h,
                "logIndex": hex(idx * 10 + i),
                "topics": ["0x" + "dd" * 32],
                "data": "0x",
                "removed": False,
            })
        return h

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    async def make_request(self, method, params):
        self.calls.append((method, params))
        if self.failures[method]:
            f = self.failures[method].pop(0)
            if isinstance(f, BaseException):
                raise f
            return {"jsonrpc": "2.0", "id": 1, "error": f}
        return {"jsonrpc": "2.0", "id": 1, "result": self._answer(method, params)}

    def _answer(self, method, params):
        if method == "eth_blockNumber":
            return hex(self.head)
        if method == "eth_getBlockByNumber":
            return self.blocks.get(int(params[0], 16))
        if method == "eth_getTransactionByHash":
            return self.txs.get(params[0])
        if method == "eth_getTransactionReceipt":
            return self.receipts.get(params[0])
        if method == "eth_getLogs":
            flt = params[0]
            lo, hi = int(flt["fromBlock"], 16), int(flt["toBlock"], 16)
            addrs = {a.lower() for a in flt["address"]}
            return [lg for lg in self.logs
                    if lo <= int(lg["blockNumber"], 16) <= hi and lg["address"].lower() in addrs]
        raise AssertionError(f"unexpected RPC method {method}")


@pytest.fixture
def chain():
    return FakeChain(head=100)


@pytest.fixture
def reader(chain):
    return ChainReader(SimpleNamespace(provider=chain), max_retries=3, backoff_s=0.01, sleep=AsyncMock())


@pytest.fixture
def config(tmp_path):
    return IndexerConfig(
        rpc_url="http://rpc.invalid",
        contracts=(CONTRACT,),
        db_path=str(tmp_path / "index.sqlite"),
        cron_secret="cron-secret",
        jwt_secret="jwt-secret-for-tests-0123456789abcdef",
        loop_interval_s=0,
    )


@pytest.fixture
def conn(config):
    c = db(config.db_path)
    ensure_schema(c, config.start_block)
    yield c
    c.close()


@pytest.fixture
def make_indexer(conn, reader):
    def _make(config):
        return Indexer(config, conn, reader=reader, decoder=MethodDecoder(), notifier=Notifier())
    return _make


@pytest.fixture
def indexer(make_indexer, config):
    return make_indexer(config)
