"""Withdrawal approvals — who may trigger a payout to whom.

Approving the null identity is a wildcard: anyone may then trigger the
account's payout. The payout itself always goes to the account; the
approval only controls who can start it.
"""

from __future__ import annotations

from typing import Iterable, Optional

from dao_treasury.shares.identity import NULL_IDENTITY


class WithdrawalApprovals:
    """Capability table keyed by (account, approved caller)."""

    def __init__(self, approvals: Optional[dict[str, set[str]]] = None) -> None:
        self._approvals: dict[str, set[str]] = {
            account: set(callers) for account, callers in (approvals or {}).items()
        }

    def approve(self, account: str, callers: Iterable[str]) -> None:
        self._approvals.setdefault(account, set()).update(callers)

    def revoke(self, account: str, callers: Iterable[str]) -> None:
        approved = self._approvals.get(account)
        if approved is None:
            return
        approved.difference_update(callers)
        if not approved:
            del self._approvals[account]

    def is_approved(self, account: str, caller: str) -> bool:
        """Whether ``caller`` is explicitly approved for ``account``."""
        return caller in self._approvals.get(account, ())

    def can_withdraw(self, account: str, caller: str) -> bool:
        """Self, an approved caller, or anyone under a wildcard approval."""
        if caller == account:
            return True
        approved = self._approvals.get(account, ())
        return caller in approved or NULL_IDENTITY in approved

    def approved_for(self, account: str) -> set[str]:
        return set(self._approvals.get(account, ()))

    def has_wildcard(self, account: str) -> bool:
        return NULL_IDENTITY in self._approvals.get(account, ())

    def to_dict(self) -> dict[str, list[str]]:
        return {account: sorted(callers) for account, callers in self._approvals.items()}

    @classmethod
    def from_dict(cls, data: dict[str, list[str]]) -> WithdrawalApprovals:
        return cls({account: set(callers) for account, callers in data.items()})
