"""Error types shared by the oracle, the pool catalog and the strategy manager.

`SourceUnavailableError` is internal to the data layer: the price oracle and
the pool catalog convert it into a fallthrough to the next source or network.
Every other error surfaces to the caller unchanged.
"""

from __future__ import annotations


class YieldAggregatorError(Exception):
    """Base class for all errors raised by this package."""


class NotFoundError(YieldAggregatorError):
    """Unknown strategy id, network, or no row matching a lookup."""


class SourceUnavailableError(YieldAggregatorError):
    """A single price/yield source failed (network error, bad status or payload)."""


class DataUnavailableError(YieldAggregatorError):
    """Every source able to answer a query failed."""


class PriceUnavailableError(DataUnavailableError):
    """All configured price sources are exhausted for a token."""


class YieldUnavailableError(DataUnavailableError):
    """The yield listing could not be fetched."""


class UnimplementedError(YieldAggregatorError):
    """A capability that is intentionally not wired (scanner, execution adapter)."""


class InvalidInputError(YieldAggregatorError, ValueError):
    """Malformed address or out-of-range parameter."""
