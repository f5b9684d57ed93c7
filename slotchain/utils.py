# utils.py
"""
Utility functions for the slot machine ledger

Includes:
- Hashing into 256-bit words (seed / draw derivation)
- Address helpers
- Token unit formatting (Decimal based, 6 decimals by default)
- Auxiliary randomness service (digits + verifiable commitment)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

# =========================
# LOGGING CONFIG
# =========================

logger = logging.getLogger("slotchain.utils")

# =========================
# ADDRESSES
# =========================

ZERO_ADDRESS = "0x" + "0" * 40
DEAD_ADDRESS = "0x000000000000000000000000000000000000dead"

WORD_BITS = 256
WORD_MASK = (1 << WORD_BITS) - 1


def is_valid_address(address: Optional[str]) -> bool:
    """True for a 20-byte hex address that is not the zero address."""
    if not isinstance(address, str):
        return False
    if len(address) != 42 or not address.startswith("0x"):
        return False
    try:
        int(address, 16)
    except ValueError:
        return False
    return address.lower() != ZERO_ADDRESS


def to_address(value: int) -> str:
    """Take the low 20 bytes of a word as an address."""
    return "0x" + format(value & ((1 << 160) - 1), "040x")


# =========================
# HASHING
# =========================

WordType = Union[int, str, bool, bytes]


def to_word(value: WordType) -> bytes:
    """
    Encode one value as a 32-byte big-endian word.

    Negative ints use two's complement, hex strings (addresses, feed ids,
    tx hashes) are read as integers, other strings are hashed first.
    """
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, bytes):
        if len(value) > 32:
            value = hashlib.sha256(value).digest()
        value = int.from_bytes(value, "big")
    if isinstance(value, str):
        if value.startswith("0x"):
            value = int(value, 16)
        else:
            value = int.from_bytes(hashlib.sha256(value.encode("utf-8")).digest(), "big")
    if not isinstance(value, int):
        raise TypeError(f"Cannot encode {type(value).__name__} as a word")
    return (value & WORD_MASK).to_bytes(32, "big")


def hash_words(*values: WordType) -> int:
    """SHA-256 over the packed words, as an unsigned 256-bit integer."""
    digest = hashlib.sha256(b"".join(to_word(v) for v in values)).digest()
    return int.from_bytes(digest, "big")


def hash_sha256(value: str) -> str:
    """Standard SHA256 hex digest of a string."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


# =========================
# AUXILIARY RANDOMNESS SERVICE
# =========================

SLOT_RANDOM_COUNT = 3


def _validate_rng_inputs(tx_hash: str, player_address: str, block_timestamp: int) -> None:
    if not tx_hash or not player_address or not block_timestamp:
        raise ValueError("Missing required parameters: tx_hash, player_address, block_timestamp")
    if not isinstance(tx_hash, str) or len(tx_hash) != 66 or not tx_hash.startswith("0x"):
        raise ValueError("Invalid transaction hash format")
    if not isinstance(player_address, str) or not player_address.startswith("0x"):
        raise ValueError("Invalid player address format")


def rng_commitment(tx_hash: str, player_address: str, block_timestamp: int) -> str:
    """Hash of the three request inputs; lets a third party recompute the output."""
    return hash_sha256(f"{tx_hash}{player_address}{block_timestamp}")


def _digits(commitment: str, entropy: str) -> List[int]:
    digest = hash_sha256(f"{commitment}{entropy}")
    return [int(digest[i * 2:i * 2 + 2], 16) % 10 for i in range(SLOT_RANDOM_COUNT)]


def generate_slot_randoms(tx_hash: str, player_address: str, block_timestamp: int) -> dict:
    """
    Random digits for the single-contract game variant.

    Returns:
        {"randoms": [d0, d1, d2], "entropy": hex, "commitment": hex}
    """
    _validate_rng_inputs(tx_hash, player_address, block_timestamp)
    commitment = rng_commitment(tx_hash, player_address, block_timestamp)
    entropy = secrets.token_hex(32)
    randoms = _digits(commitment, entropy)
    logger.info(f"RNG request - player: {player_address}, tx: {tx_hash}, randoms: {randoms}")
    return {"randoms": randoms, "entropy": entropy, "commitment": commitment}


def verify_slot_randoms(
    tx_hash: str,
    player_address: str,
    block_timestamp: int,
    commitment: str,
    entropy: str,
    randoms: List[int],
) -> bool:
    """
    Recompute commitment and digits from the revealed inputs.

    Returns:
        True if the commitment matches the inputs and the digits match
        the commitment + entropy.
    """
    expected = rng_commitment(tx_hash, player_address, block_timestamp)
    # constant time compare, the commitment is attacker supplied
    if not hmac.compare_digest(expected, commitment):
        return False
    return _digits(expected, entropy) == list(randoms)


# =========================
# FORMATTING
# =========================

NumberType = Union[float, Decimal, int, str]

TOKEN_DECIMALS = 6


def parse_units(value: NumberType, decimals: int = TOKEN_DECIMALS) -> int:
    """
    Convert a human amount ("1.5") to smallest units (1_500_000).
    Raises ValueError rather than dropping precision below one unit.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValueError(f"Invalid amount: {value}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value}")
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {value} has more than {decimals} decimal places")
    return int(scaled)


def format_units(amount: int, decimals: int = TOKEN_DECIMALS) -> str:
    """Smallest units to a fixed-point string: 1_500_000 -> '1.500000'."""
    value = Decimal(int(amount)) / (Decimal(10) ** decimals)
    return f"{value:.{decimals}f}"


def format_multiplier(hundredths: int) -> str:
    """Payout multiplier in hundredths, e.g. 1500 -> 'x15.00'."""
    return f"x{Decimal(int(hundredths)) / 100:.2f}"
