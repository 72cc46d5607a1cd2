from reentrancy_lab.adversary import ReentrancyAttacker
from reentrancy_lab.errors import (
    CallDepthExceeded,
    EmptyReserve,
    InsufficientBalance,
    InvalidAmount,
    LedgerError,
    Reentered,
    ScenarioAssertionError,
    TransferFailed,
)
from reentrancy_lab.ledger import (
    ChecksEffectsInteractionsLedger,
    GuardedLedger,
    Ledger,
    Strategy,
    VulnerableLedger,
    make_ledger,
)
from reentrancy_lab.sinks import FlakyRecipient, Recipient, RevertingRecipient, TransferSink

__version__ = "0.1.0"
