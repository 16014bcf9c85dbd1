"""Tests for the event log — proves append-only semantics and integrity checks."""

import json

import pytest

from skillswap.persistence.event_log import EventKind, EventLog, EventRecord


def _make_event(n: int, kind: EventKind = EventKind.REQUEST_CREATED, **payload) -> EventRecord:
    return EventRecord.create(
        event_id=f"EVT-{n:08d}",
        event_kind=kind,
        actor_id="alice",
        payload=payload or {"request_id": f"req_{n}"},
    )


class TestInMemory:
    def test_append_and_count(self) -> None:
        log = EventLog()
        log.append(_make_event(1))
        log.append(_make_event(2, EventKind.REQUEST_TRANSITION))
        assert log.count == 2
        assert log.last_event.event_id == "EVT-00000002"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_make_event(1))
        with pytest.raises(ValueError):
            log.append(_make_event(1))
        assert log.count == 1

    def test_filter_by_kind(self) -> None:
        log = EventLog()
        log.append(_make_event(1))
        log.append(_make_event(2, EventKind.SESSION_SCHEDULED, session_id="sess_1"))
        assert [e.event_id for e in log.events(EventKind.SESSION_SCHEDULED)] == ["EVT-00000002"]

    def test_events_for_entity(self) -> None:
        log = EventLog()
        log.append(_make_event(1, request_id="req_a"))
        log.append(_make_event(2, EventKind.REQUEST_TRANSITION, request_id="req_a"))
        log.append(_make_event(3, request_id="req_b"))
        assert [e.event_id for e in log.events_for("request_id", "req_a")] == [
            "EVT-00000001", "EVT-00000002",
        ]

    def test_hash_covers_payload(self) -> None:
        a = _make_event(1, request_id="req_a")
        b = _make_event(1, request_id="req_b")
        assert a.event_hash.startswith("sha256:")
        assert a.event_hash != b.event_hash


class TestFilePersistence:
    def test_reload_from_file(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_make_event(1))
        log.append(_make_event(2, EventKind.ATTENDANCE_RECORDED, session_id="sess_1"))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.last_event.event_kind == EventKind.ATTENDANCE_RECORDED

    def test_tampered_record_rejected(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_make_event(1))

        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["request_id"] = "req_forged"
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_duplicate_on_recovery_rejected(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        line = json.dumps(_make_event(1).to_dict())
        path.write_text(line + "\n" + line + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate"):
            EventLog(storage_path=path)

    def test_write_failure_keeps_event_out(self, tmp_path) -> None:
        path = tmp_path / "missing_dir" / "events.jsonl"
        log = EventLog(storage_path=path)
        with pytest.raises(OSError):
            log.append(_make_event(1))
        assert log.count == 0
