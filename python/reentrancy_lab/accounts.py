"""Deterministic actor identities for scenarios."""

from eth_account import Account
from eth_utils import keccak, to_checksum_address


def actor(label: str):
    """Local account whose key is keccak(label); the same label always gives the same address."""
    return Account.from_key(keccak(text=label))


def actor_address(label: str) -> str:
    return to_checksum_address(actor(label).address)


def actors(*labels):
    return {label: actor_address(label) for label in labels}
