"""
Call classification for transaction input data.

classify() returns one of four tagged results so the fallback chain
(ABI decode -> selector table -> raw call -> plain transfer) can be checked
without going through a decoding library:

    Decoded(name)            selector in the ABI table and the arguments decode
    KnownSelector(name)      selector found in the heuristic 4-byte table
    UnknownSelector(sel)     input data present but nothing recognises it
    NoInput()                empty input, i.e. a value transfer
"""
from __future__ import annotations

import json, pathlib
from dataclasses import dataclass
from typing import Union

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import function_abi_to_4byte_selector
from loguru import logger

from txray_indexer.errors import DecodeError

# mint / upgrade calls of the monitored collection
DEFAULT_ABI = [
    {
        "type": "function",
        "name": "mint",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "recipient", "type": "address"},
            {"name": "signature", "type": "bytes"},
        ],
    },
    {
        "type": "function",
        "name": "upgradeTokenTo",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "_tokenId", "type": "uint256"}],
    },
]

# 4-byte selectors (no 0x) seen often enough to label without an ABI
KNOWN_SELECTORS = {
    "40c10f19": "mint",                # mint(address,uint256)
    "a0712d68": "mint",                # mint(uint256)
    "a9059cbb": "transfer",            # transfer(address,uint256)
    "23b872dd": "transferFrom",
    "095ea7b3": "approve",
    "a22cb465": "setApprovalForAll",
    "42842e0e": "safeTransferFrom",    # (address,address,uint256)
    "b88d4fde": "safeTransferFrom",    # (address,address,uint256,bytes)
    "f242432a": "safeTransferFrom",    # ERC-1155 single
    "42966c68": "burn",
}


@dataclass(frozen=True)
class Decoded:
    name: str
    def label(self) -> str: return self.name

@dataclass(frozen=True)
class KnownSelector:
    name: str
    def label(self) -> str: return self.name

@dataclass(frozen=True)
class UnknownSelector:
    selector: str
    def label(self) -> str: return "unknown_contract_call"

@dataclass(frozen=True)
class NoInput:
    def label(self) -> str: return "transfer"

CallKind = Union[Decoded, KnownSelector, UnknownSelector, NoInput]


@dataclass(frozen=True)
class _AbiFn:
    name: str
    types: tuple[str, ...]


def _arg_type(inp: dict) -> str:
    t = inp["type"]
    if t.startswith("tuple"):
        inner = ",".join(_arg_type(c) for c in inp.get("components", []))
        return f"({inner})" + t[len("tuple"):]
    return t


class MethodDecoder:
    def __init__(self, abi: list[dict] | None = None, known: dict[str, str] | None = None):
        self.functions: dict[str, _AbiFn] = {}
        for item in abi if abi is not None else DEFAULT_ABI:
            if item.get("type", "function") != "function":
                continue
            sel = function_abi_to_4byte_selector(item).hex().removeprefix("0x")
            self.functions[sel] = _AbiFn(item["name"], tuple(_arg_type(i) for i in item.get("inputs", [])))
        self.known = dict(KNOWN_SELECTORS if known is None else known)

    @classmethod
    def from_path(cls, path: str | None) -> "MethodDecoder":
        if not path:
            return cls()
        abi = json.loads(pathlib.Path(path).read_text())
        if isinstance(abi, dict):           # hardhat/foundry artifact
            abi = abi.get("abi", [])
        return cls(abi)

    def decode(self, data: bytes) -> str:
        """Full ABI decode; raises DecodeError when the selector or arguments don't fit."""
        sel = data[:4].hex()
        fn = self.functions.get(sel)
        if fn is None:
            raise DecodeError(f"selector 0x{sel} not in ABI")
        try:
            abi_decode(list(fn.types), data[4:])
        except (DecodingError, ValueError, OverflowError) as e:
            raise DecodeError(f"bad arguments for {fn.name}: {e}") from e
        return fn.name

    def classify(self, input_hex: str | None) -> CallKind:
        h = (input_hex or "").lower()
        h = h[2:] if h.startswith("0x") else h
        if not h:
            return NoInput()
        if len(h) % 2:
            h = "0" + h
        try:
            data = bytes.fromhex(h)
        except ValueError:
            logger.warning(f"[decode] non-hex input {input_hex[:18]!r}")
            return UnknownSelector(h[:8])
        sel = data[:4].hex()
        if len(data) >= 4:
            try:
                return Decoded(self.decode(data))
            except DecodeError as e:
                logger.debug(f"[decode] {e}")
            if sel in self.known:
                return KnownSelector(self.known[sel])
        return UnknownSelector(sel)
