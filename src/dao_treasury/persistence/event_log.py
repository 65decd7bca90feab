"""Append-only event log — the audit trail of every treasury ledger mutation.

Each successful mutating operation appends one EventRecord. Records are
immutable once written and carry a SHA-256 over their canonical JSON
form, so a tampered JSONL file is rejected on load.

The log is an audit trail, not the state of record: ledger state lives
in the state store snapshot. The log answers "who did what, when".
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    """Classification of ledger events."""
    ACCOUNT_SHARES_ADDED = "account_shares_added"
    ACCOUNT_SHARES_REMOVED = "account_shares_removed"
    ACCOUNT_BPS_INCREASED = "account_bps_increased"
    ACCOUNT_BPS_DECREASED = "account_bps_decreased"
    ACCOUNT_REMOVABLE_AT_UPDATED = "account_removable_at_updated"
    ACCOUNT_ADDRESS_CHANGED = "account_address_changed"
    REVENUE_PROCESSED = "revenue_processed"
    BALANCE_ALLOCATED = "balance_allocated"
    ACCOUNT_WITHDRAWAL = "account_withdrawal"
    WITHDRAWAL_APPROVED = "withdrawal_approved"
    WITHDRAWAL_APPROVAL_REVOKED = "withdrawal_approval_revoked"


def _canonical_digest(fields: dict[str, Any]) -> str:
    canonical = json.dumps(fields, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable ledger event.

    event_hash covers every other field, computed at creation time.
    """
    event_id: str
    event_kind: EventKind
    stream_id: str
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        stream_id: str,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        digest = _canonical_digest({
            "event_id": event_id,
            "event_kind": event_kind.value,
            "stream_id": stream_id,
            "timestamp_utc": ts_str,
            "actor_id": actor_id,
            "payload": payload,
        })
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            stream_id=stream_id,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=digest,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "stream_id": self.stream_id,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Usage:
        log = EventLog(storage_path=data_dir / "events.jsonl")
        log.append(EventRecord.create("EVT-00000001", kind, "deposits", actor, payload))
        log.events(stream_id="deposits")
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        # Write first: a failed write leaves the in-memory log untouched
        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(
        self,
        kind: Optional[EventKind] = None,
        stream_id: Optional[str] = None,
    ) -> list[EventRecord]:
        """Return events, optionally filtered by kind and stream."""
        return [
            e for e in self._events
            if (kind is None or e.event_kind == kind)
            and (stream_id is None or e.stream_id == stream_id)
        ]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        """Load events from JSONL, rejecting tampered or replayed records."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected = _canonical_digest({
                    k: data[k]
                    for k in (
                        "event_id", "event_kind", "stream_id",
                        "timestamp_utc", "actor_id", "payload",
                    )
                })
                if data["event_hash"] != expected:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected}"
                    )

                self._events.append(EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    stream_id=data["stream_id"],
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                ))
                self._event_ids.add(event_id)
        logger.debug("Loaded %d events from %s", len(self._events), path)
