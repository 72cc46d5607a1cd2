"""
Ledger failure taxonomy.

Every ledger failure is a LedgerError carrying a short `kind` string, so the
harness and the artifacts can compare failures without importing classes.
A failed call never leaves its own frame's balance or reserve changes behind.
"""


class LedgerError(Exception):
    kind = "LedgerError"

    def __init__(self, message="", account=None, amount=None):
        super().__init__(message or self.kind)
        self.account = account
        self.amount = amount

    def to_dict(self):
        return {"kind": self.kind, "message": str(self), "account": self.account, "amount": self.amount}


class InvalidAmount(LedgerError):
    """Deposit below the configured minimum (or not an integer amount)."""
    kind = "InvalidAmount"


class InsufficientBalance(LedgerError):
    """Withdraw with a sub-minimum or already zeroed balance."""
    kind = "InsufficientBalance"


class EmptyReserve(LedgerError):
    kind = "EmptyReserve"


class TransferFailed(LedgerError):
    """The transfer sink refused the payout or raised while handling it."""
    kind = "TransferFailed"


class Reentered(LedgerError):
    """Nested entry rejected by the reentrancy guard."""
    kind = "Reentered"


class CallDepthExceeded(LedgerError):
    kind = "CallDepthExceeded"


ERROR_KINDS = {
    cls.kind: cls
    for cls in (InvalidAmount, InsufficientBalance, EmptyReserve, TransferFailed, Reentered, CallDepthExceeded)
}


class ScenarioAssertionError(AssertionError):
    """Raised by the harness when an expected outcome is not observed."""
