"""
Scenario harness: funds actors, drives deposit/withdraw as any account,
wires sinks (including the attacker) and records every call outcome.

Each scenario_* function builds a fresh ledger for one strategy, runs its
steps and returns a result dict. `passed` means the ledger behaved the way
that strategy is expected to behave: the vulnerable ledger must be drained
by the attacker, the hardened ones must hold.
"""

from web3 import Web3

from reentrancy_lab.accounts import actor_address
from reentrancy_lab.adversary import ReentrancyAttacker
from reentrancy_lab.artifacts import trace_digest
from reentrancy_lab.errors import LedgerError, ScenarioAssertionError
from reentrancy_lab.ledger import MAX_CALL_DEPTH, MIN_AMOUNT, Strategy, make_ledger
from reentrancy_lab.sinks import FlakyRecipient, Recipient, RevertingRecipient

UNIT = Web3.to_wei(1, "ether")
VICTIM_DEPOSIT = 20 * UNIT
ATTACK_DEPOSIT = 2 * UNIT

# failure kind a hardened ledger must raise for the nested withdraw
REENTRY_REJECTION = {
    Strategy.CHECKS_EFFECTS_INTERACTIONS: "InsufficientBalance",
    Strategy.REENTRANCY_GUARD: "Reentered",
}


def at_least(amount, min_amount):
    """Raise a scenario amount to the ledger minimum so a large MIN_AMOUNT_ETH cannot fail the setup."""
    return max(amount, min_amount)


class ScenarioHarness:

    def __init__(self, strategy, min_amount=MIN_AMOUNT, max_depth=MAX_CALL_DEPTH, strict=False, name=None):
        self.strategy = Strategy(strategy)
        self.ledger = make_ledger(self.strategy, min_amount=min_amount, max_depth=max_depth, name=name)
        self.strict = strict
        self.actors = {}
        self.sinks = {}
        self.outcomes = []
        self.assertions = []

    # -------------------------
    # Actors & sinks
    # -------------------------
    def actor(self, label):
        if label not in self.actors:
            self.actors[label] = actor_address(label)
        return self.actors[label]

    def resolve(self, who):
        """Accept either an actor label or an address."""
        return self.actors.get(who) or (who if Web3.is_address(who) else self.actor(who))

    def install_sink(self, who, sink):
        address = self.resolve(who)
        self.ledger.install_sink(address, sink)
        self.sinks[address] = sink
        return sink

    def install_adversary(self, label="attacker", max_reentries=None):
        address = self.actor(label)
        attacker = ReentrancyAttacker(self.ledger, address, max_reentries=max_reentries, register=False)
        self.install_sink(address, attacker)
        return attacker

    def seed(self, label, amount, sink=None):
        """Create an actor (with an optional sink) and deposit `amount` for it."""
        address = self.actor(label)
        if sink is not None:
            self.install_sink(address, sink)
        self.expect_ok(self.deposit(address, amount), f"seed {label}")
        return address

    # -------------------------
    # Calls
    # -------------------------
    def deposit(self, who, amount):
        account = self.resolve(who)
        return self._call("deposit", account, lambda: self.ledger.deposit(account, amount), amount)

    def withdraw(self, who):
        account = self.resolve(who)
        return self._call("withdraw", account, lambda: self.ledger.withdraw(account))

    def attack(self, attacker, amount):
        return self._call("attack", attacker.address, lambda: attacker.attack(amount), amount)

    def _call(self, op, account, fn, amount=None):
        before = self.ledger.snapshot()
        outcome = {"op": op, "account": account, "amount": amount}
        try:
            result = fn()
        except LedgerError as err:
            outcome.update(ok=False, result=None, error=err.kind, message=str(err))
            # a failed outermost call must leave balances and reserve untouched
            outcome["state_changed"] = self.ledger.snapshot() != before
        else:
            outcome.update(ok=True, result=result, error=None)
        outcome["reserve_after"] = self.ledger.total_reserve()
        self.outcomes.append(outcome)
        return outcome

    # -------------------------
    # Reads
    # -------------------------
    def reserve(self):
        return self.ledger.total_reserve()

    def balance(self, who):
        return self.ledger.balance_of(self.resolve(who))

    def snapshot(self):
        return self.ledger.snapshot()

    @staticmethod
    def diff(before, after):
        accounts = set(before["balances"]) | set(after["balances"])
        changed = {
            a: {"before": before["balances"].get(a, 0), "after": after["balances"].get(a, 0)}
            for a in sorted(accounts)
            if before["balances"].get(a, 0) != after["balances"].get(a, 0)
        }
        return {
            "reserve_before": before["reserve"],
            "reserve_after": after["reserve"],
            "reserve_delta": after["reserve"] - before["reserve"],
            "balances_changed": changed,
            "accounts_added": sorted(set(after["balances"]) - set(before["balances"])),
        }

    # -------------------------
    # Assertions
    # -------------------------
    def check(self, name, condition, detail=None):
        self.assertions.append({"name": name, "passed": bool(condition), "detail": detail})
        if self.strict and not condition:
            raise ScenarioAssertionError(f"{self.ledger.name}: {name} ({detail})")
        return bool(condition)

    def expect_ok(self, outcome, name=None):
        return self.check(name or f"{outcome['op']} succeeds", outcome["ok"], outcome.get("message"))

    def expect_error(self, outcome, *kinds, name=None):
        name = name or f"{outcome['op']} fails with {'/'.join(kinds)}"
        ok = not outcome["ok"] and outcome["error"] in kinds and not outcome.get("state_changed")
        return self.check(name, ok, outcome.get("error"))

    @property
    def passed(self):
        return all(a["passed"] for a in self.assertions)

    def result(self, scenario, **extra):
        return {
            "scenario": scenario,
            "strategy": self.strategy.value,
            "passed": self.passed,
            "assertions": list(self.assertions),
            "outcomes": list(self.outcomes),
            "events": list(self.ledger.events),
            "digest": trace_digest(self.ledger.events),
            "final_state": self.snapshot(),
            **extra,
        }


# -------------------------
# Scenarios
# -------------------------
def scenario_deposit_floor(strategy, min_amount=MIN_AMOUNT, max_depth=MAX_CALL_DEPTH, strict=False):
    h = ScenarioHarness(strategy, min_amount=min_amount, max_depth=max_depth, strict=strict)
    alice = h.actor("alice")
    before = h.snapshot()
    h.expect_error(h.deposit(alice, min_amount - 1), "InvalidAmount", name="deposit below minimum rejected")
    h.expect_error(h.deposit(alice, 0), "InvalidAmount", name="zero deposit rejected")
    h.check("nothing mutated", h.snapshot() == before, h.diff(before, h.snapshot()))

    out = h.deposit(alice, min_amount)
    h.expect_ok(out, "deposit at the minimum accepted")
    h.check("balance grew by exactly the deposit", h.balance(alice) == min_amount, h.balance(alice))
    h.check("reserve grew by exactly the deposit", h.reserve() == before["reserve"] + min_amount, h.reserve())
    return h.result("deposit_floor")


def scenario_underfunded_withdraw(strategy, victim_deposit=VICTIM_DEPOSIT, min_amount=MIN_AMOUNT,
                                  max_depth=MAX_CALL_DEPTH, strict=False):
    h = ScenarioHarness(strategy, min_amount=min_amount, max_depth=max_depth, strict=strict)
    h.seed("bob", at_least(victim_deposit, min_amount))
    before = h.snapshot()
    h.expect_error(h.withdraw("alice"), "InsufficientBalance", name="withdraw with zero balance rejected")
    h.check("state unchanged", h.snapshot() == before, h.diff(before, h.snapshot()))
    h.check("no entry created for alice", h.actor("alice") not in h.ledger.accounts())
    return h.result("underfunded_withdraw")


def scenario_honest_round_trip(strategy, victim_deposit=VICTIM_DEPOSIT, attack_deposit=ATTACK_DEPOSIT,
                               min_amount=MIN_AMOUNT, max_depth=MAX_CALL_DEPTH, strict=False):
    """An honest account deposits the same amount the attacker would and takes it back out."""
    amount = at_least(attack_deposit, min_amount)
    h = ScenarioHarness(strategy, min_amount=min_amount, max_depth=max_depth, strict=strict)
    h.seed("bob", at_least(victim_deposit, min_amount))
    wallet = h.install_sink("alice", Recipient())
    reserve_before = h.reserve()

    h.expect_ok(h.deposit("alice", amount))
    h.check("balance credited", h.balance("alice") == amount, h.balance("alice"))
    out = h.withdraw("alice")
    h.expect_ok(out)
    h.check("payout equals deposit", out["result"] == amount, out["result"])
    h.check("balance zeroed", h.balance("alice") == 0, h.balance("alice"))
    h.check("zeroed entry kept", h.actor("alice") in h.ledger.accounts())
    h.check("reserve back to pre-deposit value", h.reserve() == reserve_before, h.reserve())
    h.check("recipient received the payout", wallet.received == amount, wallet.received)
    return h.result("honest_round_trip")


def scenario_reentrancy_drain(strategy, victim_deposit=VICTIM_DEPOSIT, attack_deposit=ATTACK_DEPOSIT,
                              min_amount=MIN_AMOUNT, max_depth=MAX_CALL_DEPTH, strict=False):
    victim_deposit = at_least(victim_deposit, min_amount)
    attack_deposit = at_least(attack_deposit, min_amount)
    h = ScenarioHarness(strategy, min_amount=min_amount, max_depth=max_depth, strict=strict)
    victim = h.seed("victim", victim_deposit)
    attacker = h.install_adversary("attacker")
    pre = h.snapshot()

    out = h.attack(attacker, attack_deposit)
    post = h.snapshot()
    h.expect_ok(out, "outermost attacker withdraw completes")

    if h.strategy is Strategy.VULNERABLE:
        h.check("attacker re-entered", attacker.reentries > 0, attacker.reentries)
        h.check("attacker extracted more than it contributed", attacker.received > attack_deposit, attacker.received)
        h.check("reserve drained below one more payout", h.reserve() < attack_deposit, h.reserve())
        h.check("victim balance still recorded", h.balance(victim) == victim_deposit, h.balance(victim))
        h.check("ledger left insolvent", not h.ledger.is_solvent(), post["liabilities"])
    else:
        expected_kind = REENTRY_REJECTION[h.strategy]
        kinds = [r["kind"] for r in attacker.rejections]
        h.check("nested withdraw rejected", expected_kind in kinds, kinds)
        h.check("recursion stopped after one nested attempt", attacker.max_depth_seen == 1, attacker.max_depth_seen)
        h.check("reserve holds the victim deposit", h.reserve() == victim_deposit, h.reserve())
        h.check("victim balance unchanged", h.balance(victim) == victim_deposit, h.balance(victim))
        h.check("attacker balance zeroed", h.balance(attacker.address) == 0, h.balance(attacker.address))
        h.check("attacker received only its own deposit", attacker.received == attack_deposit, attacker.received)
        h.check("ledger solvent", h.ledger.is_solvent(), post["liabilities"])

    return h.result(
        "reentrancy_drain",
        attacker=attacker.report(),
        drained_all=h.reserve() == 0,
        pre=pre,
        diff=h.diff(pre, post),
    )


def scenario_rejecting_recipient(strategy, amount=5 * UNIT, victim_deposit=VICTIM_DEPOSIT, min_amount=MIN_AMOUNT,
                                 max_depth=MAX_CALL_DEPTH, strict=False):
    amount = at_least(amount, min_amount)
    h = ScenarioHarness(strategy, min_amount=min_amount, max_depth=max_depth, strict=strict)
    h.seed("bob", at_least(victim_deposit, min_amount))
    h.seed("carol", amount, sink=RevertingRecipient())
    h.seed("dave", amount, sink=RevertingRecipient(raise_on_receive=True))
    before = h.snapshot()

    h.expect_error(h.withdraw("carol"), "TransferFailed", name="refused payout fails")
    h.expect_error(h.withdraw("dave"), "TransferFailed", name="raising recipient fails")
    h.check("balances and reserve untouched", h.snapshot() == before, h.diff(before, h.snapshot()))
    h.check("carol keeps her balance", h.balance("carol") == amount, h.balance("carol"))
    return h.result("rejecting_recipient")


def scenario_guard_release(strategy, victim_deposit=VICTIM_DEPOSIT, attack_deposit=ATTACK_DEPOSIT,
                           min_amount=MIN_AMOUNT, max_depth=MAX_CALL_DEPTH, strict=False):
    """After an attack (success path) and a refused payout (failure path), an unrelated withdraw must work."""
    victim_deposit = at_least(victim_deposit, min_amount)
    attack_deposit = at_least(attack_deposit, min_amount)
    h = ScenarioHarness(strategy, min_amount=min_amount, max_depth=max_depth, strict=strict)
    wallet = Recipient()
    victim = h.seed("victim", victim_deposit, sink=wallet)
    h.seed("carol", min_amount, sink=RevertingRecipient())
    attacker = h.install_adversary("attacker")

    h.attack(attacker, attack_deposit)
    h.withdraw("carol")
    h.check("no frame left open", h.ledger.depth == 0, h.ledger.depth)
    lock = getattr(h.ledger, "_lock", None)
    if lock is not None:
        h.check("guard released", not lock.locked())

    out = h.withdraw(victim)
    if h.strategy is Strategy.VULNERABLE:
        # the drained ledger can no longer honour the victim
        h.expect_error(out, "EmptyReserve", "TransferFailed", name="victim withdraw fails on drained ledger")
    else:
        h.expect_ok(out, "unrelated withdraw succeeds")
        h.check("victim paid in full", wallet.received == victim_deposit, wallet.received)
    return h.result("guard_release")


def scenario_flaky_recipient(strategy, amount=3 * UNIT, seed=0, attempts=8, failure_rate=0.5,
                             victim_deposit=VICTIM_DEPOSIT, min_amount=MIN_AMOUNT, max_depth=MAX_CALL_DEPTH,
                             strict=False):
    amount = at_least(amount, min_amount)
    h = ScenarioHarness(strategy, min_amount=min_amount, max_depth=max_depth, strict=strict)
    h.seed("bob", at_least(victim_deposit, min_amount))
    sink = FlakyRecipient(failure_rate=failure_rate, seed=seed)
    h.seed("erin", amount, sink=sink)
    reserve_before = h.reserve()

    paid = False
    for _ in range(attempts):
        out = h.withdraw("erin")
        if out["ok"]:
            paid = True
            break
        h.expect_error(out, "TransferFailed", name="flaky refusal rolls back")

    if paid:
        h.check("balance zeroed after delivery", h.balance("erin") == 0, h.balance("erin"))
        h.check("reserve debited once", h.reserve() == reserve_before - amount, h.reserve())
    else:
        h.check("balance kept after every refusal", h.balance("erin") == amount, h.balance("erin"))
        h.check("reserve untouched", h.reserve() == reserve_before, h.reserve())
    return h.result("flaky_recipient", delivery_outcomes=list(sink.outcomes), paid=paid, seed=seed)


SCENARIOS = [
    ("deposit_floor", scenario_deposit_floor),
    ("underfunded_withdraw", scenario_underfunded_withdraw),
    ("honest_round_trip", scenario_honest_round_trip),
    ("reentrancy_drain", scenario_reentrancy_drain),
    ("rejecting_recipient", scenario_rejecting_recipient),
    ("guard_release", scenario_guard_release),
    ("flaky_recipient", scenario_flaky_recipient),
]
