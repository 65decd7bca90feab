"""Account share registry — per-recipient claims and their lifecycle.

The registry owns the AccountShare records and keeps the checkpoint
ledger's claim total in step with them: every mutation that changes an
account's bps goes through CheckpointLedger.update_total_bps exactly
once, so the sum of active bps always equals the latest total_bps.

Authorization (who may call what) is the engine's concern. The
registry only applies the lock rule, which depends on whether the
caller is the account itself.
"""

from __future__ import annotations

from typing import Iterator, Optional, Sequence

from dao_treasury.models.shares import (
    MAX_BPS,
    AccountShare,
    AccountShareEntry,
    SharePeriod,
)
from dao_treasury.shares.checkpoints import CheckpointLedger
from dao_treasury.shares.errors import (
    AccountNotActive,
    AccountNotFinished,
    CannotZeroViaDecrease,
    ClaimOverflow,
    EmptySet,
    InvalidBps,
    InvalidIdentity,
    StillLocked,
    Unauthorized,
)
from dao_treasury.shares.identity import is_null_identity


def _check_bps(bps: int, label: str = "bps") -> None:
    if isinstance(bps, bool) or not isinstance(bps, int) or not 0 < bps <= MAX_BPS:
        raise InvalidBps(f"{label} must be an integer in (0, {MAX_BPS}], got {bps!r}")


class AccountShareRegistry:
    """Stores AccountShare records keyed by identity."""

    def __init__(
        self,
        ledger: CheckpointLedger,
        accounts: Optional[dict[str, AccountShare]] = None,
    ) -> None:
        self._ledger = ledger
        self._accounts: dict[str, AccountShare] = dict(accounts or {})

    def get(self, identity: str) -> AccountShare:
        """Return the record for ``identity`` (a blank, finished one if unknown)."""
        return self._accounts.get(identity) or AccountShare()

    def __contains__(self, identity: str) -> bool:
        return identity in self._accounts

    def items(self) -> Iterator[tuple[str, AccountShare]]:
        return iter(list(self._accounts.items()))

    def active_identities(self) -> list[str]:
        return [i for i, share in self._accounts.items() if share.is_active]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add(self, entries: Sequence[AccountShareEntry], now: int) -> int:
        """Create account shares for a batch. Returns their start index.

        The whole batch is validated before anything is written, and the
        ledger total is updated once for all of it.
        """
        if not entries:
            raise EmptySet("No account shares to add")
        if now <= 0:
            raise ValueError(f"Timestamp must be positive, got {now}")

        seen: set[str] = set()
        added_bps = 0
        for entry in entries:
            if is_null_identity(entry.identity):
                raise InvalidIdentity("The null identity cannot hold a share")
            _check_bps(entry.bps)
            if entry.removable_at < 0:
                raise ValueError(f"removable_at cannot be negative, got {entry.removable_at}")
            if entry.identity in seen or not self.get(entry.identity).is_finished:
                raise AccountNotFinished(
                    f"Account {entry.identity} still holds an unfinished share"
                )
            seen.add(entry.identity)
            added_bps += entry.bps

        new_total = self._ledger.total_bps + added_bps
        if new_total > MAX_BPS:
            raise ClaimOverflow(
                f"Adding {added_bps} bps would bring the total to {new_total} bps"
            )

        index = self._ledger.update_total_bps(new_total)
        for entry in entries:
            self._accounts[entry.identity] = AccountShare(
                bps=entry.bps,
                created_at=now,
                removable_at=entry.removable_at,
                last_withdrawn_at=now,
                start_index=index,
                end_index=None,
                last_balance_check_index=index,
                last_balance_pulled=0,
                periods=[SharePeriod(bps=entry.bps, start_index=index)],
            )
        return index

    def remove(self, identities: Sequence[str], caller: str, now: int) -> int:
        """Deactivate a batch of accounts. Returns their end index."""
        if not identities:
            raise EmptySet("No account shares to remove")

        seen: set[str] = set()
        removed_bps = 0
        for identity in identities:
            share = self.get(identity)
            if identity in seen or not share.is_active:
                raise AccountNotActive(f"Account {identity} has no active share")
            self._check_lock(identity, share, caller, now)
            seen.add(identity)
            removed_bps += share.bps

        index = self._ledger.update_total_bps(self._ledger.total_bps - removed_bps)
        # Last checkpoint whose total included these accounts
        end_index = index - 1
        for identity in identities:
            share = self._accounts[identity]
            current = share.periods[-1]
            if current.start_index > end_index:
                share.periods.pop()
            else:
                current.end_index = end_index
            share.bps = 0
            share.end_index = end_index
        return end_index

    def increase_bps(self, identity: str, delta: int) -> int:
        _check_bps(delta, "delta")
        share = self._require_active(identity)
        new_bps = share.bps + delta
        if new_bps > MAX_BPS:
            raise ClaimOverflow(f"Account bps {new_bps} exceeds maximum {MAX_BPS}")
        self._resize(share, new_bps)
        return new_bps

    def decrease_bps(self, identity: str, delta: int, caller: str, now: int) -> int:
        _check_bps(delta, "delta")
        share = self._require_active(identity)
        if delta >= share.bps:
            raise CannotZeroViaDecrease(
                f"Decreasing {identity} by {delta} bps would remove the share; "
                f"use removal instead"
            )
        self._check_lock(identity, share, caller, now)
        new_bps = share.bps - delta
        self._resize(share, new_bps)
        return new_bps

    def update_removable_at(self, identity: str, removable_at: int, by_self: bool) -> None:
        """Move the lock. Accounts may only shorten it, others only extend it."""
        share = self._require_active(identity)
        if removable_at < 0:
            raise ValueError(f"removable_at cannot be negative, got {removable_at}")
        if by_self and removable_at > share.removable_at:
            raise Unauthorized("An account may only bring its own removable_at forward")
        if not by_self and removable_at < share.removable_at:
            raise Unauthorized("Only the account itself may bring removable_at forward")
        share.removable_at = removable_at

    def move(self, old: str, new: str) -> AccountShare:
        """Re-key the record of ``old`` under ``new``."""
        share = self.get(old)
        if share.is_finished:
            raise AccountNotActive(f"Account {old} has no share to move")
        if is_null_identity(new):
            raise InvalidIdentity("Cannot move a share to the null identity")
        if not self.get(new).is_finished:
            raise AccountNotFinished(f"Account {new} still holds an unfinished share")
        self._accounts[new] = self._accounts.pop(old)
        return share

    def record_settlement(
        self,
        identity: str,
        check_index: int,
        balance_pulled: int,
        now: int,
    ) -> None:
        """Advance the replay cursor and drop periods it has fully passed."""
        share = self._accounts[identity]
        if check_index < share.last_balance_check_index:
            raise ValueError("Replay cursor cannot move backwards")
        share.last_balance_check_index = check_index
        share.last_balance_pulled = balance_pulled
        share.last_withdrawn_at = now
        share.periods = [
            p for p in share.periods if p.end_index is None or p.end_index >= check_index
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_active(self, identity: str) -> AccountShare:
        share = self.get(identity)
        if not share.is_active:
            raise AccountNotActive(f"Account {identity} has no active share")
        return share

    @staticmethod
    def _check_lock(identity: str, share: AccountShare, caller: str, now: int) -> None:
        # The account itself is never held by its own lock
        if caller != identity and now < share.removable_at:
            raise StillLocked(
                f"Account {identity} is locked until {share.removable_at} (now {now})"
            )

    def _resize(self, share: AccountShare, new_bps: int) -> None:
        index = self._ledger.update_total_bps(
            self._ledger.total_bps - share.bps + new_bps
        )
        current = share.periods[-1]
        if current.start_index >= index:
            current.bps = new_bps
        else:
            current.end_index = index - 1
            share.periods.append(SharePeriod(bps=new_bps, start_index=index))
        share.bps = new_bps

    def to_dict(self) -> dict[str, dict]:
        return {identity: share.to_dict() for identity, share in self._accounts.items()}

    @classmethod
    def from_dict(cls, ledger: CheckpointLedger, data: dict[str, dict]) -> AccountShareRegistry:
        return cls(
            ledger,
            {identity: AccountShare.from_dict(s) for identity, s in data.items()},
        )
