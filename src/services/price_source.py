"""Interface implemented by every price source consulted by the oracle."""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.price import PriceSourceName, TokenPrice


class PriceSource(ABC):
    """A single external price feed.

    Implementations map the generic (chain id, checksum address) key into their
    own addressing scheme and stamp results with their confidence score. Any
    failure, including an unsupported network or token, is reported as
    `SourceUnavailableError` so the oracle can fall through to the next source.
    """

    name: PriceSourceName
    confidence: float

    @abstractmethod
    async def get_price(self, chain_id: int, token_address: str) -> TokenPrice:
        """Return a fresh observation for the token."""
