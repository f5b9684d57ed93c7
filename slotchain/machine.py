# machine.py
"""
Slot Machine – one gaming unit created by the registry

Responsibilities:
- One-time initialization (UNINITIALIZED -> ACTIVE)
- Bet validation against an exact denomination list
- Spin settlement: debit, seed, reels, jackpot contribution,
  house fee, jackpot draw, winnings cut, payout, history
- Cadence-aligned base randomness refresh
- Owner configuration within registry ceilings
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from slotchain.chain import (
    Chain,
    InsufficientFundsError,
    Ownable,
    ValidationError,
    non_reentrant,
    only_owner,
)
from slotchain.engine import (
    PayoutTable,
    SlotConfig,
    SpinResult,
    Symbol,
    basis_point_share,
    calculate_payout,
    derive_base_randomness,
    derive_spin_seed,
    reels_from_seed,
)
from slotchain.oracle import PriceFeed
from slotchain.utils import DEAD_ADDRESS, ZERO_ADDRESS, is_valid_address

if TYPE_CHECKING:
    from slotchain.registry import SlotRegistry
    from slotchain.token import StableToken

logger = logging.getLogger("slotchain.machine")


class MachineState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"  # registry template, never playable


@dataclass(frozen=True)
class MachineStats:
    spin_count: int
    base_randomness: int
    last_randomness_refresh: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["base_randomness"] = str(self.base_randomness)
        return data


class SlotMachine(Ownable):
    def __init__(self, chain: Chain, disabled: bool = False) -> None:
        super().__init__(
            chain,
            owner=DEAD_ADDRESS if disabled else ZERO_ADDRESS,
            label="SlotMachine",
        )
        self.state = MachineState.DISABLED if disabled else MachineState.UNINITIALIZED

        self.registry = ZERO_ADDRESS
        self.ledger_asset = ZERO_ADDRESS
        self.oracle = ZERO_ADDRESS
        self.oracle_feed_id = ""
        self.house_wallet = ZERO_ADDRESS

        self.jackpot_share = 0
        self.house_edge = 0
        self.randomness_refresh_interval = 0

        self.spin_count = 0
        self.base_randomness = 0
        self.last_randomness_refresh = 0

        self.valid_bet_amounts: List[int] = []
        self.payout_table = PayoutTable()

        self._last_spin: Dict[str, SpinResult] = {}
        self._history: Dict[str, List[SpinResult]] = {}
        self._winnings: Dict[str, int] = {}

    # =====================================================
    # LIFECYCLE
    # =====================================================

    def initialize(
        self,
        registry: str,
        ledger_asset: str,
        oracle: str,
        oracle_feed_id: str,
        owner: str,
        house_wallet: str,
    ) -> None:
        if self.state != MachineState.UNINITIALIZED:
            raise ValidationError("already initialized")
        for address in (registry, ledger_asset, oracle, owner, house_wallet):
            if not is_valid_address(address):
                raise ValidationError("invalid address")

        manager: SlotRegistry = self.chain.contract_at(registry)
        if not hasattr(manager, "spins_per_randomness_refresh"):
            raise ValidationError("invalid registry")

        self.registry = registry
        self.ledger_asset = ledger_asset
        self.oracle = oracle
        self.oracle_feed_id = oracle_feed_id
        self.house_wallet = house_wallet

        self.jackpot_share = manager.default_jackpot_share
        self.house_edge = manager.default_house_edge
        self.randomness_refresh_interval = manager.spins_per_randomness_refresh

        self.valid_bet_amounts = list(SlotConfig.DEFAULT_BET_AMOUNTS)
        self.payout_table = PayoutTable()

        self.state = MachineState.ACTIVE
        self._refresh_randomness()
        self._set_owner(owner)

    # =====================================================
    # SPIN
    # =====================================================

    @non_reentrant
    def spin(self, amount: int) -> SpinResult:
        self._require_active()
        if amount <= 0 or not self.is_valid_bet_amount(amount):
            raise ValidationError("invalid bet amount")

        player = self.chain.msg_sender
        asset = self._asset()
        registry = self._registry()
        block = self.chain.block

        # 1. take the bet before anything is drawn
        self._call(asset.transfer_from, player, self.address, amount)

        # 2. cadence-aligned refresh, then this spin's seed
        if self.spin_count % self.randomness_refresh_interval == 0:
            self._refresh_randomness()
        seed = derive_spin_seed(
            self.base_randomness,
            block.timestamp,
            self.chain.tx_origin,
            player,
            self.spin_count,
        )
        reels = reels_from_seed(seed)
        payout = calculate_payout(reels, amount, self.payout_table)

        self.spin_count += 1

        # 3. jackpot contribution and house fee on the bet
        contribution = basis_point_share(amount, self.jackpot_share)
        if contribution > 0:
            self._call(asset.approve, registry.address, contribution)
            self._call(registry.deposit_to_jackpot, contribution, self.address)

        house_fee = basis_point_share(amount, self.house_edge)
        if house_fee > 0:
            self._call(asset.transfer, self.house_wallet, house_fee)

        # 4. jackpot draw replaces the table payout on a win
        outcome = self._call(registry.try_jackpot_win, player, amount, self.address)
        won_jackpot = outcome.won
        if won_jackpot:
            payout = outcome.payout

        # 5. house cut on table winnings only
        if not won_jackpot and payout > 0:
            cut = basis_point_share(payout, self.house_edge)
            if cut > 0:
                self._call(asset.transfer, self.house_wallet, cut)
                payout -= cut

        if payout > 0:
            self._call(asset.transfer, player, payout)
            self._winnings[player] = self._winnings.get(player, 0) + payout

        result = SpinResult(
            reels=reels,
            payout=payout,
            won_jackpot=won_jackpot,
            timestamp=block.timestamp,
            bet_amount=amount,
            random_seed=seed,
        )
        self._last_spin[player] = result
        self._history.setdefault(player, []).append(result)

        self._call(registry.update_stats, amount, 1)

        self._emit(
            "SpinSettled",
            player=player,
            reels=[int(r) for r in reels],
            payout=payout,
            won_jackpot=won_jackpot,
            bet_amount=amount,
            random_seed=seed,
        )
        logger.debug(f"Spin #{self.spin_count} {player}: {[r.label for r in reels]} -> {payout}")
        return result

    # =====================================================
    # RANDOMNESS
    # =====================================================

    def refresh_randomness(self) -> int:
        """Anyone may refresh at any time; spin also refreshes on cadence."""
        self._require_active()
        return self._refresh_randomness()

    def _refresh_randomness(self) -> int:
        block = self.chain.block
        self.base_randomness = derive_base_randomness(
            self.oracle_price(),
            block.timestamp,
            block.prevrandao,
            block.number,
            self.spin_count,
            self.chain.tx_origin,
        )
        self.last_randomness_refresh = block.timestamp
        self._emit("RandomnessRefreshed", base_randomness=self.base_randomness, spin_count=self.spin_count)
        logger.debug(f"Machine {self.address} randomness refreshed at spin {self.spin_count}")
        return self.base_randomness

    # =====================================================
    # VIEWS
    # =====================================================

    def is_valid_bet_amount(self, amount: int) -> bool:
        for valid in self.valid_bet_amounts:
            if valid == amount:
                return True
        return False

    def get_stats(self) -> MachineStats:
        return MachineStats(
            spin_count=self.spin_count,
            base_randomness=self.base_randomness,
            last_randomness_refresh=self.last_randomness_refresh,
        )

    def get_valid_bet_amounts(self) -> List[int]:
        return list(self.valid_bet_amounts)

    def last_spin(self, player: str) -> Optional[SpinResult]:
        return self._last_spin.get(player)

    def spin_history(self, player: str) -> List[SpinResult]:
        return list(self._history.get(player, []))

    def total_winnings(self, player: str) -> int:
        return self._winnings.get(player, 0)

    def oracle_price(self) -> PriceFeed:
        return self.chain.contract_at(self.oracle).get_price_unsafe(self.oracle_feed_id)

    @staticmethod
    def symbols() -> List[str]:
        return [s.label for s in Symbol]

    # =====================================================
    # OWNER CONFIGURATION
    # =====================================================

    @only_owner
    def update_configuration(self, jackpot_share: int, house_edge: int) -> None:
        registry = self._registry()
        if jackpot_share > registry.max_jackpot_share:
            raise ValidationError("jackpot share too high")
        if house_edge > registry.max_house_edge:
            raise ValidationError("house edge too high")
        if jackpot_share < 0 or house_edge < 0:
            raise ValidationError("negative share")
        self.jackpot_share = jackpot_share
        self.house_edge = house_edge
        self._emit("ConfigurationUpdated", jackpot_share=jackpot_share, house_edge=house_edge)
        logger.info(f"Machine {self.address}: jackpot {jackpot_share}bps, edge {house_edge}bps")

    @only_owner
    def update_payout_table(self, table: PayoutTable) -> None:
        self.payout_table = table
        self._emit("PayoutTableUpdated", **table.to_dict())

    @only_owner
    def update_valid_bet_amounts(self, amounts: List[int]) -> None:
        if not amounts:
            raise ValidationError("bet amounts cannot be empty")
        self.valid_bet_amounts = list(amounts)
        self._emit("BetAmountsUpdated", amounts=list(amounts))

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

    def _require_active(self) -> None:
        if self.state != MachineState.ACTIVE:
            raise ValidationError("machine not active")

    def _asset(self) -> StableToken:
        return self.chain.contract_at(self.ledger_asset)

    def _registry(self) -> SlotRegistry:
        return self.chain.contract_at(self.registry)
