"""Console logging and JSON artifact helpers shared by the runner and preflight."""

import json
import time
from decimal import Decimal
from enum import Enum
from pathlib import Path

from eth_utils import keccak
from hexbytes import HexBytes
from web3 import Web3


def now_ts() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime())


def log(msg, *args):
    print(f"[{now_ts()}] {msg}", *args, flush=True)


def log_step(name):
    print('\n' + '=' * 8 + f' {name} ' + '=' * 8, flush=True)


def eth(wei):
    """wei -> ether, for human readable output only."""
    return Decimal(Web3.from_wei(wei, 'ether'))


def fmt_amount(wei):
    return f"{eth(wei)} ETH ({wei} wei)"


def to_jsonable(obj):
    """Recursively convert HexBytes, bytes, enums and tuples into JSON-serializable types."""
    if isinstance(obj, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(x) for x in obj]
    if isinstance(obj, (HexBytes, bytes, bytearray)):
        return "0x" + bytes(obj).hex()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj)
    return obj


def save_json(obj, path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(to_jsonable(obj), f, indent=2, sort_keys=True)
    return path


def load_json(path):
    with open(path, "r") as f:
        return json.load(f)


def trace_digest(events) -> HexBytes:
    """keccak over the canonical JSON of an event log; equal runs give equal digests."""
    canonical = json.dumps(to_jsonable(events), sort_keys=True, separators=(",", ":"))
    return HexBytes(keccak(text=canonical))
