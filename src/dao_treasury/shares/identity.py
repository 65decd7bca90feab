"""Recipient identities.

Identities are Ethereum-style 20-byte addresses. They are normalised to
their EIP-55 checksum form on the way in so that the same account can
never be registered twice under different letter casing.
"""

from __future__ import annotations

from typing import Iterable

from web3 import Web3

from dao_treasury.shares.errors import InvalidIdentity

NULL_IDENTITY = "0x0000000000000000000000000000000000000000"


def normalize_identity(identity: str, allow_null: bool = False) -> str:
    """Return the checksummed form of ``identity``.

    Raises:
        InvalidIdentity: If identity is not an address, or is the null
            identity and ``allow_null`` is False.
    """
    if not isinstance(identity, str) or not Web3.is_address(identity):
        raise InvalidIdentity(f"Not a valid identity: {identity!r}")
    checksummed = Web3.to_checksum_address(identity)
    if checksummed == NULL_IDENTITY and not allow_null:
        raise InvalidIdentity("The null identity cannot hold a share")
    return checksummed


def normalize_identities(
    identities: Iterable[str],
    allow_null: bool = False,
) -> list[str]:
    return [normalize_identity(i, allow_null=allow_null) for i in identities]


def is_null_identity(identity: str) -> bool:
    return identity == NULL_IDENTITY
