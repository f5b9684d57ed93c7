# oracle.py
"""
Price oracle interface.

Machines only read `get_price_unsafe(feed_id)`; no staleness check is
applied by the core.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from slotchain.chain import Chain, Ownable, ValidationError, only_owner

logger = logging.getLogger("slotchain.oracle")


@dataclass(frozen=True)
class PriceFeed:
    price: int          # signed 64-bit
    confidence: int     # unsigned 64-bit
    exponent: int       # signed 32-bit
    publish_time: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "price": self.price,
            "confidence": self.confidence,
            "exponent": self.exponent,
            "publish_time": self.publish_time,
        }


class StaticPriceOracle(Ownable):
    """Oracle whose readings are pushed by its owner."""

    def __init__(self, chain: Chain, owner: str) -> None:
        super().__init__(chain, owner=owner, label="PriceOracle")
        self.feeds: Dict[str, PriceFeed] = {}

    @only_owner
    def set_price(
        self,
        feed_id: str,
        price: int,
        confidence: int,
        exponent: int,
        publish_time: Optional[int] = None,
    ) -> PriceFeed:
        feed = PriceFeed(
            price=price,
            confidence=confidence,
            exponent=exponent,
            publish_time=self.chain.block.timestamp if publish_time is None else publish_time,
        )
        self.feeds[feed_id] = feed
        self._emit("PriceUpdated", feed_id=feed_id, **feed.to_dict())
        logger.debug(f"Feed {feed_id[:10]} -> {price}e{exponent}")
        return feed

    def get_price_unsafe(self, feed_id: str) -> PriceFeed:
        try:
            return self.feeds[feed_id]
        except KeyError:
            raise ValidationError("price feed not found") from None
