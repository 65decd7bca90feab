"""Checkpoint ledger — the evolution of (total_bps, balance) over time.

The ledger is append-only, with one exception: the most recent
checkpoint may have its total_bps rewritten while its balance is still
zero. A new checkpoint is appended only when the claim total changes
after revenue has landed in the current one, so growth is bounded by
the number of effective claim-percentage changes rather than by
activity.

Balances are capped per checkpoint at MAX_CHECKPOINT_BALANCE. Revenue
that would overflow the cap spills into fresh checkpoints carrying the
same total_bps.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from dao_treasury.models.shares import MAX_BPS, MAX_CHECKPOINT_BALANCE, Checkpoint
from dao_treasury.shares.errors import ClaimOverflow

logger = logging.getLogger(__name__)


class CheckpointLedger:
    """In-memory checkpoint log. Always holds at least one checkpoint.

    Usage:
        ledger = CheckpointLedger()
        ledger.update_total_bps(5_000)
        ledger.add_balance(1_000)
        ledger.latest  # Checkpoint(total_bps=5000, balance=1000)
    """

    def __init__(self, checkpoints: Optional[Iterable[Checkpoint]] = None) -> None:
        self._checkpoints: list[Checkpoint] = list(checkpoints or [])
        if not self._checkpoints:
            self._checkpoints.append(Checkpoint())

    def __len__(self) -> int:
        return len(self._checkpoints)

    @property
    def latest_index(self) -> int:
        return len(self._checkpoints) - 1

    @property
    def latest(self) -> Checkpoint:
        return self._checkpoints[-1]

    @property
    def total_bps(self) -> int:
        return self._checkpoints[-1].total_bps

    def get(self, index: int) -> Checkpoint:
        """Return the checkpoint at ``index``. Negative indices are rejected."""
        if index < 0 or index >= len(self._checkpoints):
            raise IndexError(f"Checkpoint index out of range: {index}")
        return self._checkpoints[index]

    def checkpoints(self) -> list[Checkpoint]:
        """Return the checkpoint list (for settlement and audit)."""
        return self._checkpoints

    def next_claim_index(self) -> int:
        """Index of the checkpoint that would carry a new claim total."""
        if self.latest.balance == 0:
            return self.latest_index
        return self.latest_index + 1

    def update_total_bps(self, new_total_bps: int) -> int:
        """Record a new claim total. Returns the index now carrying it.

        Raises:
            ClaimOverflow: If new_total_bps exceeds MAX_BPS.
        """
        if new_total_bps > MAX_BPS:
            raise ClaimOverflow(
                f"Total claim {new_total_bps} bps exceeds maximum {MAX_BPS} bps"
            )
        if new_total_bps < 0:
            raise ValueError(f"Total claim cannot be negative, got {new_total_bps}")

        latest = self.latest
        if latest.balance == 0:
            latest.total_bps = new_total_bps
        else:
            self._checkpoints.append(Checkpoint(total_bps=new_total_bps))
            logger.debug(
                "Appended checkpoint %d (total_bps=%d)", self.latest_index, new_total_bps
            )
        return self.latest_index

    def add_balance(self, amount: int) -> None:
        """Add revenue to the latest checkpoint, spilling past the ceiling."""
        if amount < 0:
            raise ValueError(f"Balance increase cannot be negative, got {amount}")

        while amount > 0:
            latest = self.latest
            room = MAX_CHECKPOINT_BALANCE - latest.balance
            if amount <= room:
                latest.balance += amount
                return
            latest.balance = MAX_CHECKPOINT_BALANCE
            amount -= room
            self._checkpoints.append(Checkpoint(total_bps=latest.total_bps))
            logger.debug(
                "Checkpoint %d saturated, spilled into checkpoint %d",
                self.latest_index - 1,
                self.latest_index,
            )

    def to_list(self) -> list[dict]:
        return [c.to_dict() for c in self._checkpoints]

    @classmethod
    def from_list(cls, data: list[dict]) -> CheckpointLedger:
        return cls(Checkpoint.from_dict(c) for c in data)
