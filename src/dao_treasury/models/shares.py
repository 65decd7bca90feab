"""Balance share models — checkpoints, account shares, and claim periods.

All amounts are plain integers in the smallest unit of the tracked asset.
No floats, no Decimal: every division in the ledger is an explicit floor
against basis points, and the carried remainder accounts for what the
floor drops.

Invariants enforced through these models:
- A checkpoint's total_bps is within [0, MAX_BPS].
- A checkpoint's balance never exceeds MAX_CHECKPOINT_BALANCE.
- An account is finished once its replay cursor has passed end_index
  (or it was never created).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

# 10_000 bps == 100%
MAX_BPS = 10_000

# Ceiling of a single checkpoint balance (240-bit unsigned)
MAX_CHECKPOINT_BALANCE = (1 << 240) - 1


@dataclass
class Checkpoint:
    """One entry of the checkpoint log.

    Mutable only while it is the most recent entry: its balance grows
    with registered revenue, and its total_bps may be rewritten while the
    balance is still zero.
    """
    total_bps: int = 0
    balance: int = 0

    def to_dict(self) -> dict[str, Any]:
        # Balances can exceed what JSON consumers handle as numbers
        return {"total_bps": self.total_bps, "balance": str(self.balance)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        return cls(total_bps=int(data["total_bps"]), balance=int(data["balance"]))


@dataclass
class SharePeriod:
    """A contiguous run of checkpoints over which an account held a fixed bps.

    end_index is None while the period is open.
    """
    bps: int
    start_index: int
    end_index: Optional[int] = None

    def covers(self, index: int) -> bool:
        if index < self.start_index:
            return False
        return self.end_index is None or index <= self.end_index


@dataclass
class AccountShare:
    """A recipient's claim on a balance share ledger.

    Lifecycle:
        created (bps > 0, end_index None)
        → resized any number of times (new SharePeriod per resize)
        → removed (bps 0, end_index fixed)
        → finished (last_balance_check_index > end_index)

    A default-constructed AccountShare (created_at == 0) represents an
    identity that never held a share, and counts as finished.
    """
    bps: int = 0
    created_at: int = 0
    removable_at: int = 0
    last_withdrawn_at: int = 0
    start_index: int = 0
    end_index: Optional[int] = None
    last_balance_check_index: int = 0
    last_balance_pulled: int = 0
    periods: list[SharePeriod] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.created_at > 0 and self.end_index is None

    @property
    def is_finished(self) -> bool:
        """Canonical reuse predicate — never derive this from bps."""
        if self.created_at == 0:
            return True
        return self.end_index is not None and self.last_balance_check_index > self.end_index

    def bps_at(self, index: int) -> int:
        """Return the bps this account held at checkpoint ``index``."""
        for period in self.periods:
            if period.covers(index):
                return period.bps
        return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "bps": self.bps,
            "created_at": self.created_at,
            "removable_at": self.removable_at,
            "last_withdrawn_at": self.last_withdrawn_at,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "last_balance_check_index": self.last_balance_check_index,
            "last_balance_pulled": str(self.last_balance_pulled),
            "periods": [
                {
                    "bps": p.bps,
                    "start_index": p.start_index,
                    "end_index": p.end_index,
                }
                for p in self.periods
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountShare:
        return cls(
            bps=data["bps"],
            created_at=data["created_at"],
            removable_at=data["removable_at"],
            last_withdrawn_at=data["last_withdrawn_at"],
            start_index=data["start_index"],
            end_index=data.get("end_index"),
            last_balance_check_index=data["last_balance_check_index"],
            last_balance_pulled=int(data["last_balance_pulled"]),
            periods=[
                SharePeriod(
                    bps=p["bps"],
                    start_index=p["start_index"],
                    end_index=p.get("end_index"),
                )
                for p in data.get("periods", [])
            ],
        )


@dataclass(frozen=True)
class AccountShareEntry:
    """Input record for adding an account share."""
    identity: str
    bps: int
    removable_at: int = 0
    approvals: tuple[str, ...] = ()


@dataclass(frozen=True)
class AccountDetails:
    """Read-only snapshot of an account share, as returned by queries."""
    identity: str
    bps: int
    created_at: int
    removable_at: int
    last_withdrawn_at: int
    start_index: int
    end_index: Optional[int]
    last_balance_check_index: int
    last_balance_pulled: int
    is_active: bool
    is_finished: bool

    @staticmethod
    def of(identity: str, share: AccountShare) -> AccountDetails:
        return AccountDetails(
            identity=identity,
            bps=share.bps,
            created_at=share.created_at,
            removable_at=share.removable_at,
            last_withdrawn_at=share.last_withdrawn_at,
            start_index=share.start_index,
            end_index=share.end_index,
            last_balance_check_index=share.last_balance_check_index,
            last_balance_pulled=share.last_balance_pulled,
            is_active=share.is_active,
            is_finished=share.is_finished,
        )
