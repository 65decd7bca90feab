"""Balance share engine — proportional revenue sharing over a dynamic claim set.

The engine composes the checkpoint ledger, the remainder tracker, the
account share registry and the withdrawal approvals into the public
operations a treasury host calls:

- Claim management: add, remove, resize, relock, re-address.
- Revenue registration: process_balance (bps split with remainder
  carry) and add_balance_to_shares (direct allocation).
- Settlement: settle computes what an account is owed since its last
  settlement and advances its replay cursor in the same step.

Every operation takes the acting identity explicitly as ``caller``.
Every failure is raised before any state changes.

Host contract (persist-then-transfer): settle returns the amount owed
with the cursor already advanced. The host must pay it as a direct
continuation of the call. The ledger never double-accounts, but it
cannot stop a host from paying twice out of the same stale answer.

One engine per revenue stream. Streams never share state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from dao_treasury.models.shares import AccountDetails, AccountShareEntry, Checkpoint
from dao_treasury.shares.approvals import WithdrawalApprovals
from dao_treasury.shares.checkpoints import CheckpointLedger
from dao_treasury.shares.errors import AlreadySettled, Unauthorized
from dao_treasury.shares.identity import (
    NULL_IDENTITY,
    normalize_identities,
    normalize_identity,
)
from dao_treasury.shares.registry import AccountShareRegistry
from dao_treasury.shares.remainder import RemainderTracker
from dao_treasury.shares.withdrawal import compute_withdrawal

logger = logging.getLogger(__name__)


def _timestamp(now: Optional[int]) -> int:
    if now is None:
        return int(datetime.now(timezone.utc).timestamp())
    return now


class BalanceShareEngine:
    """Ledger for one revenue stream.

    Usage:
        engine = BalanceShareEngine(owner=treasury, stream_id="deposits")
        engine.add_account_shares(treasury, [AccountShareEntry(alice, 5_000)])

        # Host registers revenue, earmarks the returned amount
        earmarked = engine.process_balance(1_000)

        # Alice (or an approved caller) settles; host pays the result
        owed = engine.settle(alice, alice)
    """

    def __init__(
        self,
        owner: str,
        stream_id: str = "default",
        ledger: Optional[CheckpointLedger] = None,
        remainder: Optional[RemainderTracker] = None,
        registry: Optional[AccountShareRegistry] = None,
        approvals: Optional[WithdrawalApprovals] = None,
    ) -> None:
        self._owner = normalize_identity(owner)
        self._stream_id = stream_id
        self._ledger = ledger or CheckpointLedger()
        self._remainder = remainder or RemainderTracker()
        self._registry = registry or AccountShareRegistry(self._ledger)
        self._approvals = approvals or WithdrawalApprovals()

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def stream_id(self) -> str:
        return self._stream_id

    # ------------------------------------------------------------------
    # Claim management
    # ------------------------------------------------------------------

    def add_account_shares(
        self,
        caller: str,
        entries: Sequence[AccountShareEntry],
        now: Optional[int] = None,
    ) -> None:
        """Register a batch of account shares.

        Approvals listed on an entry are added to any the account has
        already granted.

        Raises:
            Unauthorized: If caller is not the owner.
            EmptySet: If entries is empty.
            InvalidIdentity: For a null or malformed identity.
            InvalidBps: For a non-positive or oversized bps.
            AccountNotFinished: If an identity still holds a share.
            ClaimOverflow: If the total would exceed MAX_BPS.
        """
        self._require_owner(caller)
        now = _timestamp(now)
        normalized = [
            AccountShareEntry(
                identity=normalize_identity(e.identity),
                bps=e.bps,
                removable_at=e.removable_at,
                approvals=tuple(normalize_identities(e.approvals, allow_null=True)),
            )
            for e in entries
        ]

        index = self._registry.add(normalized, now)
        for entry in normalized:
            if entry.approvals:
                self._approvals.approve(entry.identity, entry.approvals)

        logger.info(
            "[%s] Added %d account share(s) at checkpoint %d, total_bps=%d",
            self._stream_id, len(normalized), index, self._ledger.total_bps,
        )

    def remove_account_shares(
        self,
        caller: str,
        identities: Sequence[str],
        now: Optional[int] = None,
    ) -> None:
        """Deactivate account shares.

        The owner may remove any account once its lock has passed. An
        account may always remove itself.

        Raises:
            Unauthorized: If a non-owner removes someone other than itself.
            AccountNotActive: If an account is not active.
            StillLocked: If a non-self caller acts before removable_at.
        """
        caller = normalize_identity(caller, allow_null=True)
        targets = normalize_identities(identities)
        if caller != self._owner and any(t != caller for t in targets):
            raise Unauthorized(f"{caller} may only remove its own share")

        end_index = self._registry.remove(targets, caller, _timestamp(now))
        logger.info(
            "[%s] Removed %d account share(s), end_index=%d, total_bps=%d",
            self._stream_id, len(targets), end_index, self._ledger.total_bps,
        )

    def remove_account_share_self(self, caller: str, now: Optional[int] = None) -> None:
        """Remove the caller's own share, regardless of its lock."""
        self.remove_account_shares(caller, [caller], now)

    def increase_account_bps(self, caller: str, identity: str, delta: int) -> int:
        """Grow an active account's claim. Owner only. Returns the new bps."""
        self._require_owner(caller)
        identity = normalize_identity(identity)
        new_bps = self._registry.increase_bps(identity, delta)
        logger.info("[%s] %s bps increased to %d", self._stream_id, identity, new_bps)
        return new_bps

    def decrease_account_bps(
        self,
        caller: str,
        identity: str,
        delta: int,
        now: Optional[int] = None,
    ) -> int:
        """Shrink an active account's claim. Owner or self. Returns the new bps."""
        caller = normalize_identity(caller, allow_null=True)
        identity = normalize_identity(identity)
        if caller not in (self._owner, identity):
            raise Unauthorized(f"{caller} may not decrease the share of {identity}")
        new_bps = self._registry.decrease_bps(identity, delta, caller, _timestamp(now))
        logger.info("[%s] %s bps decreased to %d", self._stream_id, identity, new_bps)
        return new_bps

    def update_account_removable_at(
        self,
        caller: str,
        identity: str,
        removable_at: int,
    ) -> None:
        """Move an account's lock.

        The account itself may only bring it forward; the owner may only
        push it back.
        """
        caller = normalize_identity(caller, allow_null=True)
        identity = normalize_identity(identity)
        if caller == identity:
            self._registry.update_removable_at(identity, removable_at, by_self=True)
        elif caller == self._owner:
            self._registry.update_removable_at(identity, removable_at, by_self=False)
        else:
            raise Unauthorized(f"{caller} may not change the lock of {identity}")

    def change_account_address(
        self,
        caller: str,
        old: str,
        new: str,
        approvals: Iterable[str] = (),
    ) -> None:
        """Move the caller's share to a new identity.

        A wildcard approval on the old identity carries over. Other
        approvals of the old identity are dropped; ``approvals`` are
        added to whatever the new identity already approved.
        """
        caller = normalize_identity(caller, allow_null=True)
        old = normalize_identity(old)
        if caller != old:
            raise Unauthorized(f"Only {old} may change its own address")
        new = normalize_identity(new)
        granted = normalize_identities(approvals, allow_null=True)

        self._registry.move(old, new)
        carry_wildcard = self._approvals.has_wildcard(old)
        self._approvals.revoke(old, self._approvals.approved_for(old))
        if carry_wildcard:
            self._approvals.approve(new, [NULL_IDENTITY])
        if granted:
            self._approvals.approve(new, granted)
        logger.info("[%s] Account share moved from %s to %s", self._stream_id, old, new)

    # ------------------------------------------------------------------
    # Revenue registration
    # ------------------------------------------------------------------

    def process_balance(self, balance_increased_by: int) -> int:
        """Register pool growth. Returns the amount allocated to shares.

        The host must earmark the returned amount for share payouts.
        A no-op returning 0 while no claims are active.
        """
        if balance_increased_by < 0:
            raise ValueError(f"Balance increase cannot be negative, got {balance_increased_by}")
        total_bps = self._ledger.total_bps
        if total_bps == 0 or balance_increased_by == 0:
            return 0

        allocated = self._remainder.split_by_bps(balance_increased_by, total_bps)
        if allocated > 0:
            self._ledger.add_balance(allocated)
        return allocated

    def add_balance_to_shares(self, amount: int) -> int:
        """Allocate ``amount`` directly to shares. Returns the amount added."""
        if amount < 0:
            raise ValueError(f"Allocation cannot be negative, got {amount}")
        if self._ledger.total_bps == 0 or amount == 0:
            return 0
        self._ledger.add_balance(amount)
        return amount

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def settle(self, caller: str, identity: str, now: Optional[int] = None) -> int:
        """Compute and record what ``identity`` is owed. Returns the amount.

        Raises:
            Unauthorized: If caller is neither the account, an approved
                caller, nor covered by a wildcard approval.
            AlreadySettled: If the account is finished.
        """
        caller = normalize_identity(caller, allow_null=True)
        identity = normalize_identity(identity)
        if not self._approvals.can_withdraw(identity, caller):
            raise Unauthorized(f"{caller} may not withdraw for {identity}")

        share = self._registry.get(identity)
        if share.is_finished:
            raise AlreadySettled(f"Account {identity} is already settled")

        result = compute_withdrawal(share, self._ledger.checkpoints())
        self._registry.record_settlement(
            identity,
            result.last_balance_check_index,
            result.last_balance_pulled,
            _timestamp(now),
        )
        logger.info(
            "[%s] Settled %s: amount=%d cursor=(%d, %d)",
            self._stream_id, identity, result.amount,
            result.last_balance_check_index, result.last_balance_pulled,
        )
        return result.amount

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def approve_for_withdrawal(self, caller: str, approved: Iterable[str]) -> None:
        """Let ``approved`` callers trigger the caller's payouts."""
        account = normalize_identity(caller)
        self._approvals.approve(account, normalize_identities(approved, allow_null=True))

    def revoke_approval(self, caller: str, revoked: Iterable[str]) -> None:
        account = normalize_identity(caller)
        self._approvals.revoke(account, normalize_identities(revoked, allow_null=True))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def total_bps(self) -> int:
        return self._ledger.total_bps

    def account_bps(self, identity: str) -> int:
        return self._registry.get(normalize_identity(identity)).bps

    def preview_balance(self, identity: str) -> int:
        """Amount a settle would return right now (0 if finished)."""
        return self.predicted_balance(identity, 0)

    def predicted_balance(self, identity: str, balance_increase: int) -> int:
        """Amount a settle would return after ``balance_increase`` more revenue.

        An estimate: the hypothetical revenue is split using the current
        remainder, which later real revenue may change.
        """
        if balance_increase < 0:
            raise ValueError(f"Balance increase cannot be negative, got {balance_increase}")
        share = self._registry.get(normalize_identity(identity))
        if share.is_finished:
            return 0
        pending = 0
        if balance_increase > 0 and self._ledger.total_bps > 0:
            pending, _ = self._remainder.preview_split(balance_increase, self._ledger.total_bps)
        return compute_withdrawal(share, self._ledger.checkpoints(), pending).amount

    def is_approved(self, identity: str, caller: str) -> bool:
        return self._approvals.is_approved(
            normalize_identity(identity),
            normalize_identity(caller, allow_null=True),
        )

    def account_details(self, identity: str) -> AccountDetails:
        identity = normalize_identity(identity)
        return AccountDetails.of(identity, self._registry.get(identity))

    def is_finished(self, identity: str) -> bool:
        return self._registry.get(normalize_identity(identity)).is_finished

    def accounts(self) -> list[AccountDetails]:
        return [AccountDetails.of(i, share) for i, share in self._registry.items()]

    def checkpoint_count(self) -> int:
        return len(self._ledger)

    def latest_checkpoint_index(self) -> int:
        return self._ledger.latest_index

    def checkpoint(self, index: int) -> Checkpoint:
        cp = self._ledger.get(index)
        return Checkpoint(total_bps=cp.total_bps, balance=cp.balance)

    def remainder(self) -> int:
        return self._remainder.value

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_owner(self, caller: str) -> None:
        if normalize_identity(caller, allow_null=True) != self._owner:
            raise Unauthorized(f"{caller} is not the owner of stream {self._stream_id}")

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize engine state for persistence."""
        return {
            "stream_id": self._stream_id,
            "owner": self._owner,
            "remainder": self._remainder.value,
            "checkpoints": self._ledger.to_list(),
            "accounts": self._registry.to_dict(),
            "approvals": self._approvals.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BalanceShareEngine:
        """Reconstruct an engine from persisted data."""
        ledger = CheckpointLedger.from_list(data["checkpoints"])
        return cls(
            owner=data["owner"],
            stream_id=data["stream_id"],
            ledger=ledger,
            remainder=RemainderTracker(data.get("remainder", 0)),
            registry=AccountShareRegistry.from_dict(ledger, data.get("accounts", {})),
            approvals=WithdrawalApprovals.from_dict(data.get("approvals", {})),
        )

    def restore(self, data: dict[str, Any]) -> None:
        """Replace this engine's state in place with a ``to_dict`` snapshot."""
        restored = BalanceShareEngine.from_dict(data)
        self._owner = restored._owner
        self._stream_id = restored._stream_id
        self._ledger = restored._ledger
        self._remainder = restored._remainder
        self._registry = restored._registry
        self._approvals = restored._approvals
