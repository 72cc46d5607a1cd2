"""
Runner configuration, read from the environment (and a local .env file).

ENV VARS (all optional):
    MIN_AMOUNT_ETH          deposit floor / withdraw threshold / empty-reserve threshold
    VICTIM_DEPOSIT_ETH      honest user's deposit in the exploit scenario
    ATTACK_DEPOSIT_ETH      attacker's own contribution
    MAX_CALL_DEPTH          nested withdraw frames allowed before CallDepthExceeded
    LEDGER_STRATEGIES       comma separated strategy names to run
    ARTIFACT_DIR            where JSON artifacts are written
    FLAKY_SEED              seed for the FlakyRecipient scenario
"""

import os
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv
from web3 import Web3

from reentrancy_lab.ledger import MAX_CALL_DEPTH as DEFAULT_MAX_CALL_DEPTH
from reentrancy_lab.ledger import Strategy

load_dotenv()


def env_wei(name, default_eth):
    raw = os.getenv(name, default_eth)
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise SystemExit(f"{name} must be an ether amount, got {raw!r}")
    if value < 0:
        raise SystemExit(f"{name} must not be negative, got {raw!r}")
    return int(Web3.to_wei(value, "ether"))


def env_int(name, default):
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise SystemExit(f"{name} must be an integer, got {raw!r}")


def env_strategies(name, default):
    raw = os.getenv(name, default)
    names = [s.strip() for s in raw.split(",") if s.strip()]
    if not names:
        raise SystemExit(f"{name} must name at least one strategy")
    try:
        return [Strategy(n) for n in names]
    except ValueError:
        valid = ", ".join(s.value for s in Strategy)
        raise SystemExit(f"{name} has an unknown strategy in {raw!r} (valid: {valid})")


MIN_AMOUNT = env_wei("MIN_AMOUNT_ETH", "1")
VICTIM_DEPOSIT = env_wei("VICTIM_DEPOSIT_ETH", "20")
ATTACK_DEPOSIT = env_wei("ATTACK_DEPOSIT_ETH", "2")
MAX_CALL_DEPTH = env_int("MAX_CALL_DEPTH", DEFAULT_MAX_CALL_DEPTH)
LEDGER_STRATEGIES = env_strategies("LEDGER_STRATEGIES", ",".join(s.value for s in Strategy))
ARTIFACT_DIR = os.getenv("ARTIFACT_DIR", "./artifacts/T-05")
FLAKY_SEED = env_int("FLAKY_SEED", 1337)

if MIN_AMOUNT < 1:
    raise SystemExit("MIN_AMOUNT_ETH must be at least 1 wei")
if MAX_CALL_DEPTH < 1:
    raise SystemExit("MAX_CALL_DEPTH must be >= 1")


def as_dict():
    return {
        "min_amount": MIN_AMOUNT,
        "victim_deposit": VICTIM_DEPOSIT,
        "attack_deposit": ATTACK_DEPOSIT,
        "max_call_depth": MAX_CALL_DEPTH,
        "strategies": [s.value for s in LEDGER_STRATEGIES],
        "artifact_dir": ARTIFACT_DIR,
        "flaky_seed": FLAKY_SEED,
    }
