"""Balance shares — checkpoint ledger, remainder carry, account registry, settlement.

Purely in-memory accounting. Moving funds is the host's job; the
engine only says how much is owed.
"""

from dao_treasury.shares.engine import BalanceShareEngine
from dao_treasury.shares.errors import (
    AccountNotActive,
    AccountNotFinished,
    AlreadySettled,
    BalanceShareError,
    CannotZeroViaDecrease,
    ClaimOverflow,
    EmptySet,
    InvalidBps,
    InvalidIdentity,
    StillLocked,
    Unauthorized,
)
from dao_treasury.shares.identity import NULL_IDENTITY

__all__ = [
    "BalanceShareEngine",
    "NULL_IDENTITY",
    "AccountNotActive",
    "AccountNotFinished",
    "AlreadySettled",
    "BalanceShareError",
    "CannotZeroViaDecrease",
    "ClaimOverflow",
    "EmptySet",
    "InvalidBps",
    "InvalidIdentity",
    "StillLocked",
    "Unauthorized",
]
