"""
ReentrancyAttacker: registers itself as the sink for its own account and
calls withdraw again from inside every payout it receives.

Against the vulnerable ledger each nested withdraw still sees the stale
balance, so the loop only stops when the reserve drops below the minimum.
Against a hardened ledger the first nested withdraw is rejected; the attacker
records the rejection instead of propagating it, so its own legitimate
outermost withdraw still completes.
"""

from eth_utils import to_checksum_address

from reentrancy_lab.errors import LedgerError
from reentrancy_lab.sinks import TransferSink


class ReentrancyAttacker(TransferSink):

    def __init__(self, ledger, address, max_reentries=None, register=True):
        self.ledger = ledger
        self.address = to_checksum_address(address)
        self.max_reentries = max_reentries
        # the attacker's own bookkeeping; the ledger's balance map is authoritative
        self.contributed = 0
        self.received = 0
        self.reentries = 0
        self.depth = 0
        self.max_depth_seen = 0
        self.received_events = []
        self.rejections = []
        if register:
            ledger.install_sink(self.address, self)

    def attack(self, contributed_amount: int) -> int:
        """Deposit `contributed_amount` for ourselves, then withdraw. Returns the outer payout."""
        self.ledger.deposit(self.address, contributed_amount)
        self.contributed += contributed_amount
        return self.ledger.withdraw(self.address)

    def deliver(self, account, amount):
        self.received += amount
        self.depth += 1
        self.max_depth_seen = max(self.max_depth_seen, self.depth)
        try:
            reenter = self._should_reenter()
            self.received_events.append({
                "sender": self.ledger.name,
                "amount": amount,
                "depth": self.depth,
                "reserve": self.ledger.total_reserve(),
                "reentered_attempted": reenter,
            })
            if reenter:
                self.reentries += 1
                try:
                    self.ledger.withdraw(self.address)
                except LedgerError as err:
                    self.rejections.append({"depth": self.depth, **err.to_dict()})
        finally:
            self.depth -= 1
        return True

    def on_receive(self, account, amount):
        return self.deliver(account, amount)

    def _should_reenter(self):
        if self.max_reentries is not None and self.reentries >= self.max_reentries:
            return False
        return self.ledger.total_reserve() >= self.ledger.min_amount

    def extracted(self) -> int:
        """Value taken out beyond what was put in."""
        return self.received - self.contributed

    def report(self):
        return {
            "address": self.address,
            "contributed": self.contributed,
            "received": self.received,
            "extracted": self.extracted(),
            "reentries": self.reentries,
            "max_depth": self.max_depth_seen,
            "received_events": list(self.received_events),
            "rejections": list(self.rejections),
        }
