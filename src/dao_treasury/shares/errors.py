"""Balance share errors.

Three families:
- Input validation (EmptySet, InvalidIdentity, InvalidBps, ClaimOverflow):
  the call was malformed. Also ValueError.
- Lifecycle (AccountNotActive, AccountNotFinished, AlreadySettled,
  CannotZeroViaDecrease): the call does not fit the account's state.
- Authorization (Unauthorized, StillLocked): wrong caller, or right
  caller at the wrong time.

Every error is raised before any state is touched.
"""

from __future__ import annotations


class BalanceShareError(Exception):
    """Base class for all balance share ledger failures."""


class EmptySet(BalanceShareError, ValueError):
    """Raised when a batch operation receives no entries."""


class InvalidIdentity(BalanceShareError, ValueError):
    """Raised for the null identity or a malformed address."""


class InvalidBps(BalanceShareError, ValueError):
    """Raised when a bps amount or delta is not a positive integer <= MAX_BPS."""


class ClaimOverflow(BalanceShareError, ValueError):
    """Raised when the total claim would exceed MAX_BPS."""


class AccountNotActive(BalanceShareError):
    """Raised when an operation needs an active account share."""


class AccountNotFinished(BalanceShareError):
    """Raised when an identity still holds an unsettled share."""


class AlreadySettled(BalanceShareError):
    """Raised when settling an account that is already finished."""


class CannotZeroViaDecrease(BalanceShareError):
    """Raised when a decrease would drop bps to zero (remove instead)."""


class Unauthorized(BalanceShareError):
    """Raised when the caller may not perform the operation."""


class StillLocked(BalanceShareError):
    """Raised when a non-self caller acts before removable_at."""
