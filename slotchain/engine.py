# engine.py
"""
Slot Machine Ruleset

Responsibilities:
- Deployment constants (ceilings, defaults, bet ladder)
- Symbol / payout table model
- Seed derivation (base randomness, per-spin seed, jackpot draw)
- Reel extraction and combination payout (strict precedence)
- Jackpot odds scaling

Pure functions only: machines and the registry hold the state.
Basis points (denominator 10_000) and payout hundredths
(denominator 100) are kept as separate unit systems.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterable, Tuple

from slotchain.oracle import PriceFeed
from slotchain.utils import hash_words

# =========================
# CONFIGURATION
# =========================

class SlotConfig:
    # --- UNITS ---
    BASIS_POINTS = 10_000
    MULTIPLIER_DENOMINATOR = 100
    TOKEN_DECIMALS = 6
    ONE_TOKEN = 10 ** TOKEN_DECIMALS

    # --- REGISTRY CEILINGS (bps, fixed at deployment) ---
    MAX_JACKPOT_SHARE = 1000
    MAX_HOUSE_EDGE = 1000

    # --- DEFAULTS FOR NEW MACHINES ---
    DEFAULT_JACKPOT_SHARE = 500
    DEFAULT_HOUSE_EDGE = 500
    DEFAULT_SPINS_PER_REFRESH = 1000
    # 1, 5, 10, 25, 50, 100 tokens
    DEFAULT_BET_AMOUNTS = (
        1_000_000,
        5_000_000,
        10_000_000,
        25_000_000,
        50_000_000,
        100_000_000,
    )

    # --- JACKPOT ---
    # Odds are "x in JACKPOT_ODDS_DENOMINATOR"
    JACKPOT_ODDS_DENOMINATOR = 1_000_000
    BASE_JACKPOT_ODDS = 1
    MAX_JACKPOT_ODDS = 10_000  # 1-in-100,000

    REEL_COUNT = 3


# =========================
# SYMBOLS & PAYOUTS
# =========================

class Symbol(IntEnum):
    BAR = 0
    CHERRIES = 1
    WATERMELON = 2
    LOGO = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


Reels = Tuple[Symbol, Symbol, Symbol]


@dataclass(frozen=True)
class PayoutTable:
    """Multipliers in hundredths: 1500 means 15x."""

    three_bar: int = 1500
    two_bar: int = 800
    one_bar: int = 300
    three_cherries: int = 600
    three_watermelon: int = 400
    three_logo: int = 1200

    def multiplier_for(self, reels: Iterable[Symbol]) -> int:
        """First match wins, no stacking."""
        reels = tuple(reels)
        bars = reels.count(Symbol.BAR)
        if bars == 3:
            return self.three_bar
        if bars == 2:
            return self.two_bar
        if bars == 1:
            return self.one_bar
        if reels.count(Symbol.CHERRIES) == 3:
            return self.three_cherries
        if reels.count(Symbol.WATERMELON) == 3:
            return self.three_watermelon
        if reels.count(Symbol.LOGO) == 3:
            return self.three_logo
        return 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "three_bar": self.three_bar,
            "two_bar": self.two_bar,
            "one_bar": self.one_bar,
            "three_cherries": self.three_cherries,
            "three_watermelon": self.three_watermelon,
            "three_logo": self.three_logo,
        }


@dataclass(frozen=True)
class SpinResult:
    reels: Reels
    payout: int
    won_jackpot: bool
    timestamp: int
    bet_amount: int
    random_seed: int = field(repr=False)

    def __deepcopy__(self, memo: Dict[int, Any]) -> "SpinResult":
        # immutable, history snapshots can share entries
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reels": [int(r) for r in self.reels],
            "symbols": [r.label for r in self.reels],
            "payout": self.payout,
            "won_jackpot": self.won_jackpot,
            "timestamp": self.timestamp,
            "bet_amount": self.bet_amount,
            "random_seed": str(self.random_seed),
        }


# =========================
# MATH & RANDOMNESS (CORE LOGIC)
# =========================

def basis_point_share(amount: int, bps: int) -> int:
    return amount * bps // SlotConfig.BASIS_POINTS


def derive_base_randomness(
    feed: PriceFeed,
    timestamp: int,
    prevrandao: int,
    block_number: int,
    spin_count: int,
    origin: str,
) -> int:
    """Seed root mixing the oracle reading with block entropy."""
    return hash_words(
        feed.price,
        feed.confidence,
        feed.exponent,
        feed.publish_time,
        timestamp,
        prevrandao,
        block_number,
        spin_count,
        origin,
    )


def derive_spin_seed(
    base_randomness: int,
    timestamp: int,
    origin: str,
    sender: str,
    spin_count: int,
) -> int:
    """Differs spin to spin inside one refresh window because spin_count does."""
    return hash_words(base_randomness, timestamp, origin, sender, spin_count)


def reels_from_seed(seed: int) -> Reels:
    return tuple(
        Symbol((seed >> (8 * i)) % 4) for i in range(SlotConfig.REEL_COUNT)
    )


def calculate_payout(reels: Iterable[Symbol], amount: int, table: PayoutTable) -> int:
    """Raw payout before the house cut; amount * multiplier / 100."""
    return amount * table.multiplier_for(reels) // SlotConfig.MULTIPLIER_DENOMINATOR


def jackpot_odds(bet_amount: int) -> int:
    """
    Winning threshold out of JACKPOT_ODDS_DENOMINATOR.

    Base odds scale linearly with bet_amount / ONE_TOKEN * 100 and are
    capped at MAX_JACKPOT_ODDS: 1 token -> 100, 100 tokens -> 10_000.
    Odds of BASE_JACKPOT_ODDS (1) need a 0.01 token bet, which the
    default bet ladder does not offer.
    """
    scaled = SlotConfig.BASE_JACKPOT_ODDS * bet_amount * 100 // SlotConfig.ONE_TOKEN
    return min(scaled, SlotConfig.MAX_JACKPOT_ODDS)


def jackpot_draw(
    timestamp: int,
    prevrandao: int,
    player: str,
    bet_amount: int,
    pool: int,
) -> int:
    """Pseudo-random value in [0, JACKPOT_ODDS_DENOMINATOR)."""
    return hash_words(timestamp, prevrandao, player, bet_amount, pool) % SlotConfig.JACKPOT_ODDS_DENOMINATOR
