import os, json, pathlib
from dataclasses import dataclass, field
from dotenv import load_dotenv
from loguru import logger

from txray_indexer.errors import ConfigError

# always load from local file
load_dotenv(".env")

# -------- defaults --------
CHUNK_SIZE        = 2000   # free-tier friendly
OVERLAP_BLOCKS    = 20
FINALITY_DEPTH    = 15
MAX_TXS_PER_RUN   = 3000
UPSERT_BATCH_SIZE = 500


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _split_list(raw: str | None) -> list[str]:
    """Accepts a JSON list or a comma separated string."""
    if not raw:
        return []
    raw = raw.strip()
    if raw.startswith("["):
        try:
            return [str(x).strip() for x in json.loads(raw) if str(x).strip()]
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid JSON list: {e}")
    return [x.strip() for x in raw.split(",") if x.strip()]


def _is_address(a: str) -> bool:
    if not a.startswith("0x") or len(a) != 42:
        return False
    try:
        int(a[2:], 16)
    except ValueError:
        return False
    return True


def load_watchlist(path: str) -> list[str]:
    """Contract watchlist file: [{"address": "0x..", "name": ..}, ...] or plain strings."""
    p = pathlib.Path(path)
    if not p.exists():
        logger.info(f"[contracts] {path} not found; continuing with CONTRACTS only")
        return []
    try:
        items = json.loads(p.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"failed to parse {path}: {e}")
    out = []
    for c in items:
        addr = c.get("address") if isinstance(c, dict) else c
        if addr:
            out.append(str(addr))
    return out


@dataclass(frozen=True)
class IndexerConfig:
    rpc_url: str | None = None
    contracts: tuple[str, ...] = ()
    event_topics: tuple[str, ...] = ()
    abi_path: str | None = None
    db_path: str = "txray_index.sqlite"

    chunk_size: int = CHUNK_SIZE
    overlap_blocks: int = OVERLAP_BLOCKS
    finality_depth: int = FINALITY_DEPTH
    max_txs_per_run: int = MAX_TXS_PER_RUN
    upsert_batch_size: int = UPSERT_BATCH_SIZE
    start_block: int = 0

    rpc_max_retries: int = 3
    rpc_backoff_s: float = 1.0
    rpc_timeout_s: float = 20.0
    rpc_concurrency: int = 20

    cron_secret: str | None = None
    jwt_secret: str | None = None
    jwt_audience: str = "authenticated"
    lease_ttl_s: int = 300
    aggregate_finalized_only: bool = False
    loop_interval_s: float = 120.0

    host: str = "0.0.0.0"
    port: int = 8000
    app_origin: str = "*"

    telegram_bot_token: str | None = field(default=None, repr=False)
    telegram_chat_id: str | None = None

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        contracts = _split_list(os.getenv("CONTRACTS"))
        watch_path = os.getenv("CONTRACTS_PATH")
        if watch_path:
            contracts += load_watchlist(watch_path)
        # normalize & dedupe the addresses we will watch
        seen: dict[str, None] = {}
        for a in contracts:
            seen.setdefault(a.lower(), None)

        return cls(
            rpc_url=os.getenv("RPC_URL") or None,
            contracts=tuple(seen),
            event_topics=tuple(t.lower() for t in _split_list(os.getenv("EVENT_SIGS"))),
            abi_path=os.getenv("ABI_PATH") or None,
            db_path=os.getenv("DB_PATH", "txray_index.sqlite"),
            chunk_size=_env_int("CHUNK_SIZE", CHUNK_SIZE),
            overlap_blocks=_env_int("OVERLAP_BLOCKS", OVERLAP_BLOCKS),
            finality_depth=_env_int("FINALITY_DEPTH", FINALITY_DEPTH),
            max_txs_per_run=_env_int("MAX_TXS_PER_RUN", MAX_TXS_PER_RUN),
            upsert_batch_size=_env_int("UPSERT_BATCH_SIZE", UPSERT_BATCH_SIZE),
            start_block=_env_int("START_BLOCK", 0),
            rpc_max_retries=_env_int("RPC_MAX_RETRIES", 3),
            rpc_backoff_s=_env_float("RPC_BACKOFF_S", 1.0),
            rpc_timeout_s=_env_float("RPC_TIMEOUT_S", 20.0),
            rpc_concurrency=_env_int("RPC_CONCURRENCY", 20),
            cron_secret=os.getenv("CRON_SECRET") or None,
            jwt_secret=os.getenv("JWT_SECRET") or None,
            jwt_audience=os.getenv("JWT_AUDIENCE", "authenticated"),
            lease_ttl_s=_env_int("LEASE_TTL_S", 300),
            aggregate_finalized_only=_env_bool("AGGREGATE_FINALIZED_ONLY", False),
            loop_interval_s=_env_float("LOOP_INTERVAL_S", 120.0),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8000),
            app_origin=os.getenv("APP_ORIGIN", "*"),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID") or None,
        )

    def validate(self) -> "IndexerConfig":
        """Checks what the write path needs. Raises ConfigError."""
        if not self.rpc_url:
            raise ConfigError("Missing RPC_URL")
        if not self.contracts:
            raise ConfigError("Missing monitored contracts (CONTRACTS / CONTRACTS_PATH)")
        bad = [a for a in self.contracts if not _is_address(a)]
        if bad:
            raise ConfigError(f"Invalid contract address(es): {bad}")
        if self.chunk_size < 1:
            raise ConfigError("CHUNK_SIZE must be >= 1")
        if self.overlap_blocks < 0 or self.finality_depth < 0:
            raise ConfigError("OVERLAP_BLOCKS and FINALITY_DEPTH must be >= 0")
        if self.max_txs_per_run < 1 or self.upsert_batch_size < 1:
            raise ConfigError("MAX_TXS_PER_RUN and UPSERT_BATCH_SIZE must be >= 1")
        if self.rpc_max_retries < 1 or self.rpc_concurrency < 1:
            raise ConfigError("RPC_MAX_RETRIES and RPC_CONCURRENCY must be >= 1")
        return self
