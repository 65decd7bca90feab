"""Tests for the audit event log — append-only, hash-verified, replay-safe."""

import json
from pathlib import Path

import pytest

from dao_treasury.persistence.event_log import EventKind, EventLog, EventRecord


def _event(n: int, kind: EventKind = EventKind.REVENUE_PROCESSED, stream: str = "deposits") -> EventRecord:
    return EventRecord.create(
        event_id=f"EVT-{n:08d}",
        event_kind=kind,
        stream_id=stream,
        actor_id="0x00000000000000000000000000000000000000aA",
        payload={"amount": 100 * n},
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        from datetime import datetime, timezone

        ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
        a = EventRecord.create("EVT-1", EventKind.ACCOUNT_WITHDRAWAL, "deposits", "x", {"a": 1}, ts)
        b = EventRecord.create("EVT-1", EventKind.ACCOUNT_WITHDRAWAL, "deposits", "x", {"a": 1}, ts)
        assert a.event_hash == b.event_hash
        assert a.event_hash.startswith("sha256:")
        assert a.timestamp_utc == "2026-01-01T00:00:00Z"

    def test_hash_covers_payload(self) -> None:
        from datetime import datetime, timezone

        ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
        a = EventRecord.create("EVT-1", EventKind.ACCOUNT_WITHDRAWAL, "deposits", "x", {"a": 1}, ts)
        b = EventRecord.create("EVT-1", EventKind.ACCOUNT_WITHDRAWAL, "deposits", "x", {"a": 2}, ts)
        assert a.event_hash != b.event_hash


class TestEventLog:
    def test_append_and_count(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(_event(2))
        assert log.count == 2
        assert log.last_event.event_id == "EVT-00000002"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event(1))
        assert log.count == 1

    def test_filter_by_kind_and_stream(self) -> None:
        log = EventLog()
        log.append(_event(1, EventKind.REVENUE_PROCESSED, "deposits"))
        log.append(_event(2, EventKind.ACCOUNT_WITHDRAWAL, "deposits"))
        log.append(_event(3, EventKind.REVENUE_PROCESSED, "distributions"))
        assert len(log.events(kind=EventKind.REVENUE_PROCESSED)) == 2
        assert len(log.events(stream_id="deposits")) == 2
        assert [e.event_id for e in log.events(EventKind.REVENUE_PROCESSED, "distributions")] == [
            "EVT-00000003",
        ]

    def test_empty_log_has_no_last_event(self) -> None:
        assert EventLog().last_event is None


class TestEventLogPersistence:
    def test_reload_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        log.append(_event(2, EventKind.ACCOUNT_SHARES_ADDED))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events()[1].event_kind == EventKind.ACCOUNT_SHARES_ADDED
        assert reloaded.events()[0].event_hash == log.events()[0].event_hash

    def test_tampered_payload_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))

        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["amount"] = 1_000_000
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_replayed_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)

    def test_blank_lines_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        with path.open("a", encoding="utf-8") as f:
            f.write("\n\n")
        assert EventLog(storage_path=path).count == 1
