#!/usr/bin/env python3
"""
preflight.py

Checks:
 - every ledger strategy exposes the operation contract (deposit, withdraw,
   total_reserve / totalReserve, balance_of / balanceOf, install_sink)
 - every shipped sink, the attacker included, implements deliver()
 - each operation takes the expected arguments, by count and by name

Usage:
  reentrancy-lab-preflight      (or python -m reentrancy_lab.preflight)

Output:
  $ARTIFACT_DIR/preflight_report.json
"""

import inspect
import sys
from pathlib import Path

from eth_utils import keccak

from reentrancy_lab import config
from reentrancy_lab.adversary import ReentrancyAttacker
from reentrancy_lab.artifacts import log, save_json
from reentrancy_lab.ledger import LEDGER_CLASSES
from reentrancy_lab.sinks import FlakyRecipient, Recipient, RevertingRecipient

# operations to check: map role -> list of signatures, written with the
# Python parameter names each class must accept
FUNCTION_SIGNATURES = {
    "ledger_core": [
        "deposit(account,amount)",
        "withdraw(account)",
        "total_reserve()",
        "totalReserve()",
        "balance_of(account)",
        "balanceOf(account)",
        "install_sink(account,sink)",
    ],
    "transfer_sink": [
        "deliver(account,amount)",
    ],
    "reentrancy_attacker": [
        "attack(contributed_amount)",
        "deliver(account,amount)",
        "on_receive(account,amount)",
        "extracted()",
    ],
}


def op_id(sig: str) -> str:
    """Short keccak id ('0x' + 8 hex chars) of a signature string, used only to key report entries."""
    return "0x" + keccak(text=sig)[:4].hex()


def split_signature(sig: str):
    name, _, rest = sig.partition("(")
    args = [a for a in rest.rstrip(")").split(",") if a]
    return name, args


def check_operation(cls, sig: str):
    name, args = split_signature(sig)
    fn = getattr(cls, name, None)
    entry = {"id": op_id(sig), "present": callable(fn), "arity_ok": False, "names_ok": False}
    if entry["present"]:
        params = [p for p in list(inspect.signature(fn).parameters.values())[1:]  # drop self
                  if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)]
        required = [p for p in params if p.default is inspect.Parameter.empty]
        entry["arity_ok"] = len(required) <= len(args) <= len(params)
        entry["names_ok"] = [p.name for p in params[:len(args)]] == args
    return entry


def targets():
    out = {cls.__name__: (cls, "ledger_core") for cls in LEDGER_CLASSES.values()}
    for cls in (Recipient, RevertingRecipient, FlakyRecipient):
        out[cls.__name__] = (cls, "transfer_sink")
    out[ReentrancyAttacker.__name__] = (ReentrancyAttacker, "reentrancy_attacker")
    return out


def build_report():
    report = {"checks": {}, "ok": True}
    for name, (cls, role) in targets().items():
        entry = {"role": role, "abstract": inspect.isabstract(cls), "operations": {}}
        for sig in FUNCTION_SIGNATURES[role]:
            entry["operations"][sig] = check_operation(cls, sig)
        entry["ok"] = not entry["abstract"] and all(
            op["present"] and op["arity_ok"] and op["names_ok"] for op in entry["operations"].values()
        )
        report["ok"] = report["ok"] and entry["ok"]
        report["checks"][name] = entry
    return report


def main(artifact_dir=None):
    report = build_report()
    out_path = save_json(report, Path(artifact_dir or config.ARTIFACT_DIR) / "preflight_report.json")

    log(f"Preflight report saved to {out_path}")
    for name, data in report["checks"].items():
        print(f"\n{name} ({data['role']}):")
        if data["abstract"]:
            print("  ERROR: class is abstract")
        for sig, op in data["operations"].items():
            if not op["present"]:
                status = "MISSING"
            elif not op["arity_ok"]:
                status = "BAD ARITY"
            elif not op["names_ok"]:
                status = "BAD PARAMS"
            else:
                status = "FOUND"
            print(f"    {sig:40} {op['id']} -> {status}")

    if not report["ok"]:
        print("\nOne or more checks failed (missing operations). See the JSON report for details.", file=sys.stderr)
        return 3

    print("\nAll checks passed (operations found where expected).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
