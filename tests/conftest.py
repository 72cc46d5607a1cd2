import pytest

from reentrancy_lab.accounts import actor_address
from reentrancy_lab.ledger import Strategy, make_ledger


@pytest.fixture
def victim():
    return actor_address("victim")


@pytest.fixture
def attacker_address():
    return actor_address("attacker")


@pytest.fixture
def alice():
    return actor_address("alice")


@pytest.fixture(params=list(Strategy), ids=lambda s: s.value)
def strategy(request):
    return request.param


@pytest.fixture
def ledger(strategy):
    return make_ledger(strategy)
