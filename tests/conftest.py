"""
Shared fixtures: one chain per test with a funded token, an oracle,
a registry and one machine owned by `machine_owner`.
"""
import os
import tempfile
from types import SimpleNamespace

# must be set before slotchain.db is imported
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{tempfile.mkdtemp(prefix='slotchain-')}/test.db",
)

import pytest

from slotchain.chain import Chain
from slotchain.engine import SlotConfig
from slotchain.oracle import StaticPriceOracle
from slotchain.registry import SlotRegistry
from slotchain.token import StableToken

FEED_ID = "0x" + "12345678" * 8
GENESIS = 1_700_000_000
ONE = SlotConfig.ONE_TOKEN


@pytest.fixture
def chain():
    return Chain(genesis_time=GENESIS)


@pytest.fixture
def deployer(chain):
    return chain.create_account("deployer")


@pytest.fixture
def house(chain):
    return chain.create_account("house")


@pytest.fixture
def machine_owner(chain):
    return chain.create_account("machine-owner")


@pytest.fixture
def player(chain):
    return chain.create_account("player1")


@pytest.fixture
def player2(chain):
    return chain.create_account("player2")


@pytest.fixture
def token(chain, deployer, player, player2):
    token = StableToken(chain, owner=deployer)
    chain.transact(deployer, token.mint, deployer, 10_000 * ONE)
    chain.transact(deployer, token.mint, player, 1_000 * ONE)
    chain.transact(deployer, token.mint, player2, 1_000 * ONE)
    return token


@pytest.fixture
def oracle(chain, deployer):
    oracle = StaticPriceOracle(chain, owner=deployer)
    chain.transact(deployer, oracle.set_price, FEED_ID, 45_000 * 10 ** 8, 100, -8, GENESIS)
    return oracle


@pytest.fixture
def registry(chain, deployer, token, house):
    return SlotRegistry(chain, owner=deployer, ledger_asset=token.address, house_wallet=house)


@pytest.fixture
def machine(chain, deployer, registry, oracle, token, machine_owner, player, player2):
    """Registered machine with a 1,000 token bankroll; both players approved it."""
    address = chain.transact(deployer, registry.create_machine, oracle.address, FEED_ID, machine_owner)
    chain.transact(deployer, token.mint, address, 1_000 * ONE)
    chain.transact(player, token.approve, address, 1_000 * ONE)
    chain.transact(player2, token.approve, address, 1_000 * ONE)
    return chain.contract_at(address)


class HostileToken(StableToken):
    """Ledger asset that hands control to `on_move` before every balance move."""

    def __init__(self, chain, owner):
        super().__init__(chain, owner=owner)
        self.on_move = None

    def _move(self, sender, to, amount):
        if self.on_move is not None:
            self.on_move(sender, to, amount)
        super()._move(sender, to, amount)


@pytest.fixture
def hostile(chain, deployer, house, oracle, machine_owner, player):
    """Registry + machine settled in a HostileToken; `player` approved the machine."""
    token = HostileToken(chain, owner=deployer)
    chain.transact(deployer, token.mint, deployer, 10_000 * ONE)
    chain.transact(deployer, token.mint, player, 1_000 * ONE)
    registry = SlotRegistry(chain, owner=deployer, ledger_asset=token.address, house_wallet=house)
    address = chain.transact(deployer, registry.create_machine, oracle.address, FEED_ID, machine_owner)
    chain.transact(deployer, token.mint, address, 1_000 * ONE)
    chain.transact(player, token.approve, address, 1_000 * ONE)
    return SimpleNamespace(token=token, registry=registry, machine=chain.contract_at(address))


@pytest.fixture
def no_jackpot(monkeypatch):
    """Jackpot draws always miss."""
    monkeypatch.setattr("slotchain.registry.jackpot_draw", lambda *args: SlotConfig.JACKPOT_ODDS_DENOMINATOR - 1)


@pytest.fixture
def always_jackpot(monkeypatch):
    """Jackpot draws always hit (a non-empty pool still required)."""
    monkeypatch.setattr("slotchain.registry.jackpot_draw", lambda *args: 0)


@pytest.fixture
def fixed_reels(monkeypatch):
    """Pin the reels every spin lands on: fixed_reels(Symbol.BAR, ...)."""
    def _pin(*symbols):
        monkeypatch.setattr("slotchain.machine.reels_from_seed", lambda seed: tuple(symbols))
    return _pin
