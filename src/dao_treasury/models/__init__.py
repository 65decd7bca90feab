"""Core data models for the treasury balance share ledger."""

from dao_treasury.models.shares import (
    MAX_BPS,
    MAX_CHECKPOINT_BALANCE,
    AccountDetails,
    AccountShare,
    AccountShareEntry,
    Checkpoint,
    SharePeriod,
)

__all__ = [
    "MAX_BPS",
    "MAX_CHECKPOINT_BALANCE",
    "AccountDetails",
    "AccountShare",
    "AccountShareEntry",
    "Checkpoint",
    "SharePeriod",
]
