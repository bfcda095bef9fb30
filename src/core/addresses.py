from __future__ import annotations

from typing import Any

from web3 import Web3

from .errors import InvalidInputError


def to_checksum(address: Any) -> str:
    """Return the EIP-55 checksum form of `address`.

    Raises:
        InvalidInputError: If `address` is not a 20-byte hex address, or is
            mixed-case with a wrong checksum.
    """
    if not isinstance(address, str):
        raise InvalidInputError(f"address must be a hex string, got {type(address).__name__}")
    s = address.strip()
    if not Web3.is_address(s):
        raise InvalidInputError(f"malformed address: {address!r}")
    return Web3.to_checksum_address(s)
