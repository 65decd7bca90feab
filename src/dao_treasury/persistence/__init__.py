"""Persistence — append-only audit log and state snapshots."""

from dao_treasury.persistence.event_log import EventKind, EventLog, EventRecord
from dao_treasury.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
