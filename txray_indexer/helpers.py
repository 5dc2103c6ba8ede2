from datetime import datetime, timezone
from web3.types import HexBytes

# ---------------- helpers ----------------
def to_hex(x):
    if x is None: return None
    if isinstance(x, (bytes, HexBytes)): return "0x" + bytes(x).hex()
    if isinstance(x, int): return hex(x)
    return str(x)

def to_addr(x):
    """Lowercase 0x address (wallet filters compare on this form)."""
    if x is None: return None
    s = to_hex(x).lower()
    return s if s.startswith("0x") else "0x" + s

def hex_to_int(x):
    if x is None: return None
    if isinstance(x, int): return x
    if isinstance(x, bytes): return int.from_bytes(x, "big")
    s = str(x)
    if s in ("", "0x"): return 0
    return int(s, 16) if s.startswith("0x") else int(s)

def hex_block(n: int) -> str:
    return hex(int(n))

def chunked(seq, size: int):
    for i in range(0, len(seq), size):
        yield seq[i:i + size]

# ---------------- time ----------------
ISO_FMT = "%Y-%m-%dT%H:%M:%SZ"

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime(ISO_FMT)

def from_unix(ts: int) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)
