"""Treasury service — unified facade over the per-stream balance share ledgers.

This is the primary interface for programmatic access. It plays the
host role the ledger expects:
- Holds one BalanceShareEngine per configured stream (e.g. deposits,
  distributions). Streams share no mutable state.
- Tracks the treasury asset balance and, per stream, the amount
  earmarked for share payouts but not yet paid.
- Pays out settlements as a direct continuation of the settle call
  (persist-then-transfer), with no suspension point in between.
- Records every successful mutation in the audit event log and
  snapshots state to the state store.

All operations return a ServiceResult. Ledger errors never escape the
service; they come back as error strings. If the audit log cannot be
written, in-memory state is rolled back (fail-closed).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence

from dao_treasury.config import TreasuryConfig
from dao_treasury.invariants import check_engine
from dao_treasury.models.shares import AccountDetails, AccountShareEntry
from dao_treasury.persistence.event_log import EventKind, EventLog, EventRecord
from dao_treasury.persistence.state_store import StateStore
from dao_treasury.shares.engine import BalanceShareEngine
from dao_treasury.shares.errors import BalanceShareError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class TreasuryService:
    """Treasury host for the balance share ledgers.

    Usage:
        config = TreasuryConfig.from_config_dir(config_dir)
        service = TreasuryService(config)

        service.add_account_shares("deposits", config.owner, [
            AccountShareEntry(alice, 5_000),
        ])
        service.record_revenue("deposits", 1_000)
        result = service.withdraw("deposits", alice, alice)
        result.data["amount"]  # 500

    Persistence (optional):
        service = TreasuryService(config, event_log=log, state_store=store)
        # State is persisted on each mutation and loaded on construction.
    """

    def __init__(
        self,
        config: TreasuryConfig,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._config = config
        self._event_log = event_log
        self._state_store = state_store

        stored_engines: dict[str, BalanceShareEngine] = {}
        treasury: dict[str, Any] = {}
        if state_store is not None:
            stored_engines, treasury = state_store.load()

        self._engines: dict[str, BalanceShareEngine] = {
            sid: stored_engines.get(sid) or BalanceShareEngine(owner=config.owner, stream_id=sid)
            for sid in config.streams
        }
        self._restore_treasury(treasury)

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0
        self._persistence_degraded = False

    @property
    def config(self) -> TreasuryConfig:
        return self._config

    @property
    def balance(self) -> int:
        return self._balance

    def engine(self, stream_id: str) -> Optional[BalanceShareEngine]:
        return self._engines.get(stream_id)

    def earmarked(self, stream_id: str) -> int:
        return self._earmarked.get(stream_id, 0)

    def paid_out(self, stream_id: str, identity: str) -> int:
        return self._paid_out.get(stream_id, {}).get(identity, 0)

    # ------------------------------------------------------------------
    # Revenue
    # ------------------------------------------------------------------

    def record_revenue(
        self,
        stream_id: str,
        amount: int,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        """Receive revenue into the treasury and split it with the stream's shares."""
        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            if amount <= 0:
                raise ValueError(f"Revenue must be positive, got {amount}")
            self._balance += amount
            allocated = engine.process_balance(amount)
            self._earmarked[stream_id] += allocated
            return {
                "amount": amount,
                "allocated": allocated,
                "remainder": engine.remainder(),
                "checkpoint_index": engine.latest_checkpoint_index(),
            }

        return self._mutate(
            stream_id, EventKind.REVENUE_PROCESSED, actor_id or self._config.owner, _op,
        )

    def allocate_to_shares(
        self,
        stream_id: str,
        amount: int,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        """Allocate unearmarked treasury funds directly to a stream's shares."""
        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            free = self._balance - sum(self._earmarked.values())
            if amount > free:
                raise ValueError(
                    f"Allocation {amount} exceeds unearmarked treasury balance {free}"
                )
            added = engine.add_balance_to_shares(amount)
            self._earmarked[stream_id] += added
            return {"amount": amount, "allocated": added}

        return self._mutate(
            stream_id, EventKind.BALANCE_ALLOCATED, actor_id or self._config.owner, _op,
        )

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def withdraw(
        self,
        stream_id: str,
        caller: str,
        identity: str,
        now: Optional[int] = None,
    ) -> ServiceResult:
        """Settle an account and pay it in the same step."""
        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            amount = engine.settle(caller, identity, now)
            account = engine.account_details(identity)
            if amount > self._earmarked[stream_id]:
                raise ValueError(
                    f"Settlement {amount} exceeds earmarked balance "
                    f"{self._earmarked[stream_id]} for stream {stream_id}"
                )
            self._balance -= amount
            self._earmarked[stream_id] -= amount
            paid = self._paid_out[stream_id]
            paid[account.identity] = paid.get(account.identity, 0) + amount
            return {
                "identity": account.identity,
                "amount": amount,
                "finished": account.is_finished,
            }

        return self._mutate(stream_id, EventKind.ACCOUNT_WITHDRAWAL, caller, _op)

    def approve_for_withdrawal(
        self,
        stream_id: str,
        caller: str,
        approved: Iterable[str],
    ) -> ServiceResult:
        approved = list(approved)

        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            engine.approve_for_withdrawal(caller, approved)
            return {"approved": approved}

        return self._mutate(stream_id, EventKind.WITHDRAWAL_APPROVED, caller, _op)

    def revoke_approval(
        self,
        stream_id: str,
        caller: str,
        revoked: Iterable[str],
    ) -> ServiceResult:
        revoked = list(revoked)

        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            engine.revoke_approval(caller, revoked)
            return {"revoked": revoked}

        return self._mutate(stream_id, EventKind.WITHDRAWAL_APPROVAL_REVOKED, caller, _op)

    # ------------------------------------------------------------------
    # Share management
    # ------------------------------------------------------------------

    def add_account_shares(
        self,
        stream_id: str,
        caller: str,
        entries: Sequence[AccountShareEntry],
        now: Optional[int] = None,
    ) -> ServiceResult:
        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            engine.add_account_shares(caller, entries, now)
            return {
                "accounts": [
                    {"identity": e.identity, "bps": e.bps, "removable_at": e.removable_at}
                    for e in entries
                ],
                "total_bps": engine.total_bps(),
            }

        return self._mutate(stream_id, EventKind.ACCOUNT_SHARES_ADDED, caller, _op)

    def remove_account_shares(
        self,
        stream_id: str,
        caller: str,
        identities: Sequence[str],
        now: Optional[int] = None,
    ) -> ServiceResult:
        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            engine.remove_account_shares(caller, identities, now)
            return {"accounts": list(identities), "total_bps": engine.total_bps()}

        return self._mutate(stream_id, EventKind.ACCOUNT_SHARES_REMOVED, caller, _op)

    def remove_account_share_self(
        self,
        stream_id: str,
        caller: str,
        now: Optional[int] = None,
    ) -> ServiceResult:
        return self.remove_account_shares(stream_id, caller, [caller], now)

    def increase_account_bps(
        self,
        stream_id: str,
        caller: str,
        identity: str,
        delta: int,
    ) -> ServiceResult:
        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            new_bps = engine.increase_account_bps(caller, identity, delta)
            return {"identity": identity, "bps": new_bps, "total_bps": engine.total_bps()}

        return self._mutate(stream_id, EventKind.ACCOUNT_BPS_INCREASED, caller, _op)

    def decrease_account_bps(
        self,
        stream_id: str,
        caller: str,
        identity: str,
        delta: int,
        now: Optional[int] = None,
    ) -> ServiceResult:
        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            new_bps = engine.decrease_account_bps(caller, identity, delta, now)
            return {"identity": identity, "bps": new_bps, "total_bps": engine.total_bps()}

        return self._mutate(stream_id, EventKind.ACCOUNT_BPS_DECREASED, caller, _op)

    def update_account_removable_at(
        self,
        stream_id: str,
        caller: str,
        identity: str,
        removable_at: int,
    ) -> ServiceResult:
        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            engine.update_account_removable_at(caller, identity, removable_at)
            return {"identity": identity, "removable_at": removable_at}

        return self._mutate(stream_id, EventKind.ACCOUNT_REMOVABLE_AT_UPDATED, caller, _op)

    def change_account_address(
        self,
        stream_id: str,
        caller: str,
        new_identity: str,
        approvals: Iterable[str] = (),
    ) -> ServiceResult:
        approvals = list(approvals)

        def _op(engine: BalanceShareEngine) -> dict[str, Any]:
            engine.change_account_address(caller, caller, new_identity, approvals)
            paid = self._paid_out[stream_id]
            old = engine.account_details(caller).identity
            new = engine.account_details(new_identity).identity
            if old in paid:
                paid[new] = paid.get(new, 0) + paid.pop(old)
            return {"old": old, "new": new}

        return self._mutate(stream_id, EventKind.ACCOUNT_ADDRESS_CHANGED, caller, _op)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def preview_balance(
        self,
        stream_id: str,
        identity: str,
        pending_revenue: int = 0,
    ) -> ServiceResult:
        """Estimate what ``identity`` would receive, optionally after more revenue."""
        engine = self._engines.get(stream_id)
        if engine is None:
            return ServiceResult(success=False, errors=[f"Unknown stream: {stream_id}"])
        try:
            if pending_revenue:
                amount = engine.predicted_balance(identity, pending_revenue)
            else:
                amount = engine.preview_balance(identity)
        except (BalanceShareError, ValueError) as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data={"identity": identity, "amount": amount})

    def account_details(self, stream_id: str, identity: str) -> Optional[AccountDetails]:
        engine = self._engines.get(stream_id)
        if engine is None:
            return None
        return engine.account_details(identity)

    def status(self) -> dict[str, Any]:
        streams: dict[str, Any] = {}
        for sid, engine in self._engines.items():
            accounts = engine.accounts()
            streams[sid] = {
                "total_bps": engine.total_bps(),
                "checkpoints": engine.checkpoint_count(),
                "remainder": engine.remainder(),
                "earmarked": self._earmarked[sid],
                "active_accounts": sum(1 for a in accounts if a.is_active),
                "unfinished_accounts": sum(1 for a in accounts if not a.is_finished),
            }
        return {
            "owner": self._config.owner,
            "balance": self._balance,
            "streams": streams,
            "events": self._event_log.count if self._event_log is not None else 0,
            "persistence_degraded": self._persistence_degraded,
        }

    def check_invariants(self) -> list[str]:
        """Ledger invariants for every stream, plus treasury solvency."""
        errors: list[str] = []
        for sid, engine in self._engines.items():
            errors.extend(check_engine(engine))
            owed = sum(
                engine.preview_balance(a.identity)
                for a in engine.accounts()
                if not a.is_finished
            )
            if owed > self._earmarked[sid]:
                errors.append(
                    f"[{sid}] outstanding settlements {owed} exceed earmarked {self._earmarked[sid]}"
                )
        if sum(self._earmarked.values()) > self._balance:
            errors.append(
                f"Earmarked total {sum(self._earmarked.values())} exceeds "
                f"treasury balance {self._balance}"
            )
        return errors

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mutate(
        self,
        stream_id: str,
        kind: EventKind,
        actor_id: str,
        operation: Callable[[BalanceShareEngine], dict[str, Any]],
    ) -> ServiceResult:
        """Run ``operation`` on a stream with audit logging and rollback.

        1. Snapshot stream and treasury state.
        2. Apply the operation (any failure restores the snapshot).
        3. Durable audit append (failure restores the snapshot).
        4. Persist state (failure is a warning; the audit trail is authoritative).
        """
        engine = self._engines.get(stream_id)
        if engine is None:
            return ServiceResult(success=False, errors=[f"Unknown stream: {stream_id}"])

        engine_snapshot = engine.to_dict()
        treasury_snapshot = self._treasury_dict()

        def _rollback() -> None:
            engine.restore(engine_snapshot)
            self._restore_treasury(treasury_snapshot)

        try:
            data = operation(engine)
        except (BalanceShareError, ValueError) as e:
            _rollback()
            return ServiceResult(success=False, errors=[str(e)])

        err = self._record_event(kind, stream_id, actor_id, data)
        if err:
            _rollback()
            return ServiceResult(success=False, errors=[err])

        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self,
        kind: EventKind,
        stream_id: str,
        actor_id: str,
        payload: dict[str, Any],
    ) -> Optional[str]:
        """Append an audit event. Returns an error string or None."""
        if self._event_log is None:
            return None
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                stream_id=stream_id,
                actor_id=actor_id,
                payload=payload,
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            return f"Event log failure: {e}"
        return None

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after the audit event has been committed.

        Never rolls back: the audit trail already holds the change.
        Sets the degraded flag and returns a warning instead.
        """
        if self._state_store is None:
            return None
        try:
            self._state_store.save(self._engines, self._treasury_dict())
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.warning("State store write failed: %s", e)
            return f"Persistence degraded: {e} — change committed in audit trail but state store is stale"

    def _treasury_dict(self) -> dict[str, Any]:
        return {
            "balance": str(self._balance),
            "earmarked": {sid: str(v) for sid, v in self._earmarked.items()},
            "paid_out": {
                sid: {identity: str(v) for identity, v in paid.items()}
                for sid, paid in self._paid_out.items()
            },
        }

    def _restore_treasury(self, data: dict[str, Any]) -> None:
        earmarked = data.get("earmarked", {})
        paid_out = data.get("paid_out", {})
        self._balance = int(data.get("balance", "0"))
        self._earmarked: dict[str, int] = {
            sid: int(earmarked.get(sid, "0")) for sid in self._config.streams
        }
        self._paid_out: dict[str, dict[str, int]] = {
            sid: {identity: int(v) for identity, v in paid_out.get(sid, {}).items()}
            for sid in self._config.streams
        }
