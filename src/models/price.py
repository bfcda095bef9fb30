"""Price observations produced by the price oracle sources."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class PriceSourceName(str, Enum):
    COINGECKO = "COINGECKO"
    COINMARKETCAP = "COINMARKETCAP"
    DEFILLAMA = "DEFILLAMA"
    CHAINLINK = "CHAINLINK"


@dataclass(frozen=True)
class TokenPrice:
    """A single USD price observation for a token on one network.

    Observations are never mutated; a fresher one replaces the cache entry.
    """

    token_address: str
    symbol: str
    price_usd: float
    source: PriceSourceName
    confidence: float  # 0-1, source reliability
    timestamp: datetime
    chain_id: int
