"""
Value-custody ledger with an untrusted payout hook.

Three strategies share one data model (balance map + pooled reserve):

  vulnerable                   pays the sink first, zeroes the balance after
                               the sink returns. A re-entering sink sees the
                               stale balance and is paid again.
  checks-effects-interactions  validates, zeroes the balance and debits the
                               reserve, then calls the sink last.
  reentrancy-guard             keeps the vulnerable ordering but holds a
                               non-reentrant lock for the whole call tree, so
                               any nested deposit/withdraw raises Reentered.

Amounts are wei integers. Accounts are addresses, normalised to checksum
form at every entry point; the caller identity is always an argument.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum

from eth_utils import to_checksum_address
from web3 import Web3

from reentrancy_lab.errors import (
    CallDepthExceeded,
    EmptyReserve,
    InsufficientBalance,
    InvalidAmount,
    Reentered,
    TransferFailed,
)
from reentrancy_lab.sinks import Recipient

# One threshold for the deposit floor, withdraw eligibility and "reserve is empty".
MIN_AMOUNT = Web3.to_wei(1, "ether")
MAX_CALL_DEPTH = 64


class Strategy(str, Enum):
    VULNERABLE = "vulnerable"
    CHECKS_EFFECTS_INTERACTIONS = "checks-effects-interactions"
    REENTRANCY_GUARD = "reentrancy-guard"


class Ledger(ABC):
    strategy = None

    def __init__(self, sinks=None, min_amount=MIN_AMOUNT, max_depth=MAX_CALL_DEPTH, default_sink=None, name=None):
        if not isinstance(min_amount, int) or min_amount < 1:
            raise ValueError(f"min_amount must be a positive integer, got {min_amount!r}")
        if max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {max_depth}")
        self.min_amount = min_amount
        self.max_depth = max_depth
        self.name = name or self.strategy.value
        self.events = []
        self._balances = {}
        self._reserve = 0
        self._depth = 0
        self._sinks = {}
        self._default_sink = default_sink if default_sink is not None else Recipient()
        for account, sink in (sinks or {}).items():
            self.install_sink(account, sink)

    # -------------------------
    # Queries
    # -------------------------
    def total_reserve(self) -> int:
        return self._reserve

    def balance_of(self, account) -> int:
        return self._balances.get(to_checksum_address(account), 0)

    totalReserve = total_reserve
    balanceOf = balance_of

    def accounts(self):
        return list(self._balances)

    def liabilities(self) -> int:
        return sum(self._balances.values())

    def is_solvent(self) -> bool:
        return self.liabilities() <= self._reserve

    @property
    def depth(self) -> int:
        """Number of withdraw frames currently on the stack."""
        return self._depth

    def snapshot(self):
        return {
            "ledger": self.name,
            "strategy": self.strategy.value,
            "reserve": self._reserve,
            "balances": dict(self._balances),
            "liabilities": self.liabilities(),
            "solvent": self.is_solvent(),
        }

    # -------------------------
    # Sinks
    # -------------------------
    def install_sink(self, account, sink):
        self._sinks[to_checksum_address(account)] = sink

    def sink_for(self, account):
        return self._sinks.get(to_checksum_address(account), self._default_sink)

    # -------------------------
    # Mutations
    # -------------------------
    def deposit(self, account, amount):
        account = to_checksum_address(account)
        self._deposit(account, amount)

    def withdraw(self, account) -> int:
        """Pay the whole balance of `account` to its sink. Returns the amount paid."""
        account = to_checksum_address(account)
        with self._frame(account):
            return self._withdraw(account)

    def _deposit(self, account, amount):
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < self.min_amount:
            self._reject(InvalidAmount(f"deposit of {amount!r} is below the minimum {self.min_amount}", account, amount))
        self._balances[account] = self._balances.get(account, 0) + amount
        self._reserve += amount
        self._emit("deposit", account, amount)

    @abstractmethod
    def _withdraw(self, account):
        """Strategy-specific ordering of check, effects and the sink call."""

    def _check_withdraw(self, account):
        balance = self._balances.get(account, 0)
        if balance < self.min_amount:
            self._reject(InsufficientBalance(f"balance {balance} is below the minimum {self.min_amount}", account, balance))
        if self._reserve < self.min_amount:
            self._reject(EmptyReserve(f"reserve {self._reserve} is below the minimum {self.min_amount}", account, balance))
        if balance > self._reserve:
            self._reject(TransferFailed(f"reserve {self._reserve} cannot cover a payout of {balance}", account, balance))
        return balance

    def _interact(self, account, amount):
        """Call the account's sink. Raises TransferFailed, never touches state."""
        sink = self.sink_for(account)
        try:
            delivered = sink.deliver(account, amount)
        except Exception as exc:
            raise TransferFailed(f"sink raised {type(exc).__name__}: {exc}", account, amount) from exc
        if not delivered:
            raise TransferFailed("sink refused the payout", account, amount)

    @contextmanager
    def _frame(self, account):
        if self._depth >= self.max_depth:
            self._reject(CallDepthExceeded(f"withdraw nested deeper than {self.max_depth} frames", account))
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1

    # -------------------------
    # Event log
    # -------------------------
    def _emit(self, kind, account, amount, error=None):
        self.events.append({
            "seq": len(self.events),
            "kind": kind,
            "account": account,
            "amount": amount,
            "depth": self._depth,
            "reserve": self._reserve,
            "error": error,
        })

    def _reject(self, err):
        kind = "transfer_failed" if isinstance(err, TransferFailed) else "rejected"
        self._emit(kind, err.account, err.amount, error=err.kind)
        raise err

    def __repr__(self):
        return f"<{type(self).__name__} {self.name} reserve={self._reserve} accounts={len(self._balances)}>"


class VulnerableLedger(Ledger):
    strategy = Strategy.VULNERABLE

    def _withdraw(self, account):
        amount = self._check_withdraw(account)
        # value leaves the reserve when it is handed over
        self._reserve -= amount
        try:
            self._interact(account, amount)
        except TransferFailed as err:
            self._reserve += amount
            self._reject(err)
        # balance is only cleared once the sink has returned
        self._balances[account] = 0
        self._emit("withdrawal", account, amount)
        return amount


class ChecksEffectsInteractionsLedger(Ledger):
    strategy = Strategy.CHECKS_EFFECTS_INTERACTIONS

    def _withdraw(self, account):
        amount = self._check_withdraw(account)
        self._balances[account] = 0
        self._reserve -= amount
        try:
            self._interact(account, amount)
        except TransferFailed as err:
            self._balances[account] += amount
            self._reserve += amount
            self._reject(err)
        self._emit("withdrawal", account, amount)
        return amount


class GuardedLedger(VulnerableLedger):
    strategy = Strategy.REENTRANCY_GUARD

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._lock = threading.Lock()

    @contextmanager
    def _non_reentrant(self, account, op):
        if not self._lock.acquire(blocking=False):
            self._reject(Reentered(f"{op} entered while another call is in flight", account))
        try:
            yield
        finally:
            self._lock.release()

    def deposit(self, account, amount):
        account = to_checksum_address(account)
        with self._non_reentrant(account, "deposit"):
            self._deposit(account, amount)

    def withdraw(self, account):
        account = to_checksum_address(account)
        with self._non_reentrant(account, "withdraw"):
            return super().withdraw(account)


LEDGER_CLASSES = {
    Strategy.VULNERABLE: VulnerableLedger,
    Strategy.CHECKS_EFFECTS_INTERACTIONS: ChecksEffectsInteractionsLedger,
    Strategy.REENTRANCY_GUARD: GuardedLedger,
}


def make_ledger(strategy, **kwargs):
    """Build a ledger from a Strategy or its string value."""
    return LEDGER_CLASSES[Strategy(strategy)](**kwargs)
