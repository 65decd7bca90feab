"""Remainder tracker — carries the fraction lost to basis-point division.

Flooring ``amount * bps / MAX_BPS`` on every revenue event would leak a
fraction of a unit each time. The tracker keeps the exact numerator
remainder and feeds it into the next split, so over any sequence of
splits at a fixed bps the allocated total equals
``floor(sum(amounts) * bps / MAX_BPS)``.

Invariant: 0 <= remainder < MAX_BPS.
"""

from __future__ import annotations

import logging

from dao_treasury.models.shares import MAX_BPS

logger = logging.getLogger(__name__)


class RemainderTracker:
    """Single running remainder for one ledger."""

    def __init__(self, remainder: int = 0) -> None:
        if not 0 <= remainder < MAX_BPS:
            raise ValueError(f"Remainder must be in [0, {MAX_BPS}), got {remainder}")
        self._remainder = remainder

    @property
    def value(self) -> int:
        return self._remainder

    def preview_split(self, amount: int, bps: int) -> tuple[int, int]:
        """Return (allocated, new_remainder) without mutating state."""
        if amount < 0:
            raise ValueError(f"Amount cannot be negative, got {amount}")
        numerator = amount * bps + self._remainder
        return numerator // MAX_BPS, numerator % MAX_BPS

    def split_by_bps(self, amount: int, bps: int) -> int:
        """Return the portion of ``amount`` due to ``bps``, carrying the remainder."""
        allocated, self._remainder = self.preview_split(amount, bps)
        logger.debug(
            "Split %d at %d bps: allocated=%d carried=%d",
            amount, bps, allocated, self._remainder,
        )
        return allocated
