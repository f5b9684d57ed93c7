"""Slot machine registry with a shared jackpot, on an in-memory ledger."""

__version__ = "1.0.0"
