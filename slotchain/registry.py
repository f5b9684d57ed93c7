# registry.py
"""
Slot Registry – central coordinator

Responsibilities:
- Creates and registers slot machines (clone + initialize)
- Holds the shared jackpot pool and arbitrates jackpot draws
- Aggregates platform statistics reported by machines
- Enforces global ceilings on jackpot share / house edge
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, NamedTuple, Set

from slotchain.chain import (
    AuthorizationError,
    Chain,
    InsufficientFundsError,
    Ownable,
    ValidationError,
    non_reentrant,
    only_owner,
)
from slotchain.engine import SlotConfig, jackpot_draw, jackpot_odds
from slotchain.machine import SlotMachine
from slotchain.token import StableToken
from slotchain.utils import is_valid_address

logger = logging.getLogger("slotchain.registry")


class JackpotOutcome(NamedTuple):
    won: bool
    payout: int


@dataclass(frozen=True)
class RegistryStats:
    total_volume: int
    total_spins: int
    total_jackpot_wins: int
    jackpot_pool: int
    machine_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SlotRegistry(Ownable):
    """
    One per deployment. Machines reach the pool only through
    deposit_to_jackpot / try_jackpot_win.
    """

    def __init__(
        self,
        chain: Chain,
        owner: str,
        ledger_asset: str,
        house_wallet: str,
        max_jackpot_share: int = SlotConfig.MAX_JACKPOT_SHARE,
        max_house_edge: int = SlotConfig.MAX_HOUSE_EDGE,
    ) -> None:
        if not is_valid_address(ledger_asset):
            raise ValidationError("invalid ledger asset")
        if not is_valid_address(house_wallet):
            raise ValidationError("invalid house wallet")
        if not 0 <= max_jackpot_share <= SlotConfig.BASIS_POINTS:
            raise ValidationError("invalid jackpot share ceiling")
        if not 0 <= max_house_edge <= SlotConfig.BASIS_POINTS:
            raise ValidationError("invalid house edge ceiling")

        super().__init__(chain, owner=owner, label="SlotRegistry")
        self.ledger_asset = ledger_asset
        self.house_wallet = house_wallet

        self._max_jackpot_share = max_jackpot_share
        self._max_house_edge = max_house_edge

        self.default_jackpot_share = min(SlotConfig.DEFAULT_JACKPOT_SHARE, max_jackpot_share)
        self.default_house_edge = min(SlotConfig.DEFAULT_HOUSE_EDGE, max_house_edge)
        self.spins_per_randomness_refresh = SlotConfig.DEFAULT_SPINS_PER_REFRESH

        self.machines: List[str] = []
        self._registered: Set[str] = set()

        self.jackpot_pool = 0
        self.total_volume = 0
        self.total_spins = 0
        self.total_jackpot_wins = 0

        self.machine_template = SlotMachine(chain, disabled=True).address

    # =====================================================
    # VIEWS
    # =====================================================

    @property
    def max_jackpot_share(self) -> int:
        return self._max_jackpot_share

    @property
    def max_house_edge(self) -> int:
        return self._max_house_edge

    def get_stats(self) -> RegistryStats:
        return RegistryStats(
            total_volume=self.total_volume,
            total_spins=self.total_spins,
            total_jackpot_wins=self.total_jackpot_wins,
            jackpot_pool=self.jackpot_pool,
            machine_count=len(self.machines),
        )

    def machine_count(self) -> int:
        return len(self.machines)

    def all_machines(self) -> List[str]:
        return list(self.machines)

    def machine_at(self, index: int) -> str:
        if not 0 <= index < len(self.machines):
            raise ValidationError("index out of bounds")
        return self.machines[index]

    def is_registered(self, address: str) -> bool:
        return address in self._registered

    # =====================================================
    # MACHINE LIFECYCLE
    # =====================================================

    @only_owner
    def create_machine(self, oracle: str, oracle_feed_id: str, clone_owner: str) -> str:
        if not is_valid_address(oracle):
            raise ValidationError("invalid oracle address")
        if not is_valid_address(clone_owner):
            raise ValidationError("invalid owner")

        machine = SlotMachine(self.chain)
        self._call(
            machine.initialize,
            self.address,
            self.ledger_asset,
            oracle,
            oracle_feed_id,
            clone_owner,
            self.house_wallet,
        )
        self.machines.append(machine.address)
        self._registered.add(machine.address)

        self._emit("MachineDeployed", machine=machine.address, owner=clone_owner)
        logger.info(f"Deployed machine #{len(self.machines)} at {machine.address} (owner {clone_owner})")
        return machine.address

    # =====================================================
    # JACKPOT
    # =====================================================

    def deposit_to_jackpot(self, amount: int, source_machine: str) -> None:
        self._only_machine()
        if amount <= 0:
            raise ValidationError("amount must be positive")

        self._call(self._asset().transfer_from, self.chain.msg_sender, self.address, amount)
        self.jackpot_pool += amount
        self._emit("JackpotDeposited", amount=amount, machine=source_machine)

    @non_reentrant
    def try_jackpot_win(self, player: str, bet_amount: int, source_machine: str) -> JackpotOutcome:
        """
        Draw for the whole pool. A win zeroes the pool and pays it to the
        calling machine in the same step; a miss mutates nothing.
        """
        self._only_machine()

        odds = jackpot_odds(bet_amount)
        block = self.chain.block
        draw = jackpot_draw(block.timestamp, block.prevrandao, player, bet_amount, self.jackpot_pool)
        if draw >= odds or self.jackpot_pool == 0:
            return JackpotOutcome(False, 0)

        payout = self.jackpot_pool
        self.jackpot_pool = 0
        self.total_jackpot_wins += 1
        self._call(self._asset().transfer, self.chain.msg_sender, payout)

        self._emit("JackpotWon", winner=player, amount=payout, machine=source_machine)
        logger.info(f"Jackpot won by {player} on {source_machine}: {payout}")
        return JackpotOutcome(True, payout)

    @only_owner
    def fund_jackpot(self, amount: int) -> None:
        if amount <= 0:
            raise ValidationError("amount must be positive")
        self._call(self._asset().transfer_from, self.chain.msg_sender, self.address, amount)
        self.jackpot_pool += amount
        self._emit("JackpotFunded", amount=amount)

    # =====================================================
    # CONFIGURATION & STATS
    # =====================================================

    @only_owner
    def update_configuration(self, jackpot_share: int, house_edge: int, spins_per_refresh: int) -> None:
        """Defaults for machines created from now on; existing machines keep theirs."""
        if jackpot_share > self._max_jackpot_share:
            raise ValidationError("jackpot share too high")
        if house_edge > self._max_house_edge:
            raise ValidationError("house edge too high")
        if jackpot_share < 0 or house_edge < 0:
            raise ValidationError("negative share")
        if spins_per_refresh <= 0:
            raise ValidationError("refresh interval must be positive")

        self.default_jackpot_share = jackpot_share
        self.default_house_edge = house_edge
        self.spins_per_randomness_refresh = spins_per_refresh
        self._emit(
            "ConfigurationUpdated",
            jackpot_share=jackpot_share,
            house_edge=house_edge,
            spins_per_refresh=spins_per_refresh,
        )
        logger.info(f"Registry defaults: jackpot {jackpot_share}bps, edge {house_edge}bps, refresh {spins_per_refresh}")

    @only_owner
    def update_house_wallet(self, house_wallet: str) -> None:
        if not is_valid_address(house_wallet):
            raise ValidationError("invalid house wallet")
        self.house_wallet = house_wallet
        self._emit("HouseWalletUpdated", house_wallet=house_wallet)

    def update_stats(self, volume: int, spins: int) -> None:
        self._only_machine()
        self.total_volume += volume
        self.total_spins += spins

    # =====================================================
    # WITHDRAWALS
    # =====================================================

    @only_owner
    def withdraw_asset(self, amount: int) -> None:
        asset = self._asset()
        if amount > asset.balance_of(self.address):
            raise InsufficientFundsError("insufficient balance")
        self._call(asset.transfer, self.house_wallet, amount)

    @only_owner
    def withdraw_native(self, amount: int) -> None:
        if amount > self.native_balance():
            raise InsufficientFundsError("insufficient balance")
        self.chain.send_native(self.address, self.house_wallet, amount)

    # =====================================================
    # INTERNALS
    # =====================================================

    def _only_machine(self) -> None:
        if self.chain.msg_sender not in self._registered:
            raise AuthorizationError("only registered machines")

    def _asset(self) -> StableToken:
        return self.chain.contract_at(self.ledger_asset)
