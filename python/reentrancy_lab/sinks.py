"""
Transfer sinks: whatever receives value when the ledger pays out.

The ledger calls `deliver(account, amount)` on the sink registered for the
account and treats the call as untrusted. A sink may re-enter the ledger, may
refuse the value (falsy return) or may raise. Either of the last two makes
the ledger raise TransferFailed for that payout.
"""

import random
from abc import ABC, abstractmethod


class TransferSink(ABC):

    @abstractmethod
    def deliver(self, account: str, amount: int) -> bool:
        """Receive `amount` wei paid out to `account`. Return False to refuse it."""


class Recipient(TransferSink):
    """Plain externally owned account: accepts everything, never calls back."""

    def __init__(self):
        self.received = 0
        self.payments = []

    def deliver(self, account, amount):
        self.received += amount
        self.payments.append({"account": account, "amount": amount})
        return True


class RevertingRecipient(TransferSink):
    """
    Recipient whose receive hook always fails, like a contract that reverts
    in receive() or a destroyed contract address.
    """

    def __init__(self, raise_on_receive=False, reason="recipient rejected value"):
        self.raise_on_receive = raise_on_receive
        self.reason = reason
        self.attempts = 0

    def deliver(self, account, amount):
        self.attempts += 1
        if self.raise_on_receive:
            raise RuntimeError(self.reason)
        return False


class FlakyRecipient(TransferSink):
    """Accepts or refuses at random. Seeded so a run can be replayed exactly."""

    def __init__(self, failure_rate=0.5, seed=0):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError(f"failure_rate must be within [0, 1], got {failure_rate}")
        self.failure_rate = failure_rate
        self.seed = seed
        self._rng = random.Random(seed)
        self.received = 0
        self.outcomes = []

    def deliver(self, account, amount):
        accepted = self._rng.random() >= self.failure_rate
        self.outcomes.append(accepted)
        if accepted:
            self.received += amount
        return accepted
