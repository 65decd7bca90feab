"""Withdrawal calculation — lazy replay of checkpoints for one account.

Each account keeps a replay cursor (last_balance_check_index,
last_balance_pulled). Settling walks forward from the cursor:

    for each checkpoint i from the cursor up to the account's end:
        diff = checkpoint[i].balance - pulled
        owed += diff * bps_at(i) // checkpoint[i].total_bps
        if i is the latest checkpoint: remember its balance and stop
        else: pulled = 0, move to i + 1

Only checkpoints since the last settlement are visited, so the cost of
a settlement is independent of total history.

A removed account's walk runs off the end of its range: the cursor
lands on end_index + 1, which is exactly the "finished" condition.
Checkpoints with total_bps == 0 distribute nothing but are still
stepped over.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from dao_treasury.models.shares import AccountShare, Checkpoint


@dataclass(frozen=True)
class WithdrawalResult:
    """Outcome of a replay: amount owed and the cursor to persist."""
    amount: int
    last_balance_check_index: int
    last_balance_pulled: int


def compute_withdrawal(
    share: AccountShare,
    checkpoints: Sequence[Checkpoint],
    pending_balance: int = 0,
) -> WithdrawalResult:
    """Replay ``checkpoints`` for ``share`` without mutating anything.

    Args:
        share: The account share to settle.
        checkpoints: The full checkpoint log.
        pending_balance: Hypothetical extra balance on the latest
            checkpoint (for predictions of not-yet-registered revenue).

    Returns:
        WithdrawalResult with the amount owed and the advanced cursor.
    """
    latest = len(checkpoints) - 1
    end = latest if share.end_index is None else share.end_index

    index = share.last_balance_check_index
    pulled = share.last_balance_pulled
    owed = 0

    while index <= end:
        checkpoint = checkpoints[index]
        balance = checkpoint.balance
        if index == latest:
            balance += pending_balance

        diff = balance - pulled
        if diff > 0 and checkpoint.total_bps > 0:
            owed += diff * share.bps_at(index) // checkpoint.total_bps

        if index == latest:
            pulled = balance
            break
        pulled = 0
        index += 1

    return WithdrawalResult(
        amount=owed,
        last_balance_check_index=index,
        last_balance_pulled=pulled,
    )
