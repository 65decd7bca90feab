"""Ledger invariant checks against live engine state.

Each check appends a human-readable message for every violation found.
An empty list means the engine is consistent.
"""

from __future__ import annotations

from dao_treasury.models.shares import MAX_BPS, MAX_CHECKPOINT_BALANCE
from dao_treasury.shares.engine import BalanceShareEngine


def check_engine(engine: BalanceShareEngine) -> list[str]:
    """Return invariant violations for one stream."""
    errors: list[str] = []
    label = engine.stream_id
    latest = engine.latest_checkpoint_index()

    # --- Claim total ---
    active_bps = sum(a.bps for a in engine.accounts() if a.is_active)
    if active_bps != engine.total_bps():
        errors.append(
            f"[{label}] active bps sum {active_bps} != latest total_bps {engine.total_bps()}"
        )
    if engine.total_bps() > MAX_BPS:
        errors.append(f"[{label}] total_bps {engine.total_bps()} exceeds {MAX_BPS}")

    # --- Remainder ---
    if not 0 <= engine.remainder() < MAX_BPS:
        errors.append(f"[{label}] remainder {engine.remainder()} outside [0, {MAX_BPS})")

    # --- Checkpoints ---
    for index in range(engine.checkpoint_count()):
        cp = engine.checkpoint(index)
        if not 0 <= cp.total_bps <= MAX_BPS:
            errors.append(f"[{label}] checkpoint {index} total_bps {cp.total_bps} out of range")
        if not 0 <= cp.balance <= MAX_CHECKPOINT_BALANCE:
            errors.append(f"[{label}] checkpoint {index} balance exceeds ceiling")
        # Only the latest checkpoint may be empty
        if index < latest and cp.balance == 0:
            errors.append(f"[{label}] closed checkpoint {index} has zero balance")

    # --- Accounts ---
    for account in engine.accounts():
        if account.created_at == 0:
            continue
        if account.last_balance_check_index <= latest:
            cp = engine.checkpoint(account.last_balance_check_index)
            if account.last_balance_pulled > cp.balance:
                errors.append(
                    f"[{label}] {account.identity} pulled {account.last_balance_pulled} "
                    f"beyond checkpoint {account.last_balance_check_index} balance"
                )
        if account.is_active and account.bps <= 0:
            errors.append(f"[{label}] active account {account.identity} has no bps")
        if not account.is_active and account.bps != 0:
            errors.append(f"[{label}] removed account {account.identity} still has bps")
        if account.end_index is not None and account.end_index >= latest:
            errors.append(
                f"[{label}] removed account {account.identity} ends at or past the latest checkpoint"
            )

    return errors
