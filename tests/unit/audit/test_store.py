"""Tests for the append-only audit store."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from medgate.audit.models import AuditEntry, AuditLog, AuditOutcome, AuditQuery
from medgate.core.exceptions import ValidationError

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_entry(offset_seconds=0, **overrides):
    timestamp = BASE_TIME + timedelta(seconds=offset_seconds)
    values = dict(
        id=str(uuid.uuid4()),
        timestamp=timestamp,
        actor_id="user-1",
        action="getPatient",
        resource_type="PATIENT",
        resource_id="p-1",
        phi_accessed=True,
        outcome=AuditOutcome.SUCCESS,
        duration_ms=5,
        retention_expiry=timestamp + timedelta(days=7 * 365),
        request_snapshot={"id": "p-1"},
    )
    values.update(overrides)
    return AuditEntry(**values)


@pytest.mark.audit_required
class TestSQLAlchemyAuditStore:
    def test_append_and_read_back(self, audit_store):
        entry = make_entry(error_code=None)
        audit_store.append(entry)

        page = audit_store.query(AuditQuery())
        assert page.items == [entry]
        assert page.next_cursor is None

    def test_checksum_is_stored(self, audit_store):
        entry = make_entry()
        audit_store.append(entry)
        with audit_store.SessionLocal() as session:
            row = session.get(AuditLog, entry.id)
            assert row.checksum == entry.checksum
            assert len(row.checksum) == 64

    def test_store_exposes_no_mutation(self, audit_store):
        assert not hasattr(audit_store, "update")
        assert not hasattr(audit_store, "delete")

    def test_filters(self, audit_store):
        audit_store.append(make_entry(0, actor_id="user-1"))
        audit_store.append(make_entry(1, actor_id="user-2", resource_type="MEDICAL_RECORD"))
        audit_store.append(make_entry(2, actor_id="user-2", phi_accessed=False))

        assert len(audit_store.query(AuditQuery(actor_id="user-2")).items) == 2
        assert len(audit_store.query(AuditQuery(resource_type="MEDICAL_RECORD")).items) == 1
        assert len(audit_store.query(AuditQuery(phi_accessed=False)).items) == 1
        in_range = audit_store.query(
            AuditQuery(start=BASE_TIME + timedelta(seconds=1), end=BASE_TIME + timedelta(seconds=1))
        )
        assert [e.actor_id for e in in_range.items] == ["user-2"]

    def test_pages_are_reverse_chronological_and_stable(self, audit_store):
        entries = [make_entry(i) for i in range(7)]
        for entry in entries:
            audit_store.append(entry)

        seen = []
        cursor = None
        while True:
            page = audit_store.query(AuditQuery(limit=3, cursor=cursor))
            seen.extend(page.items)
            cursor = page.next_cursor
            if cursor is None:
                break

        assert [e.id for e in seen] == [e.id for e in reversed(entries)]

    def test_same_timestamp_ties_break_by_id(self, audit_store):
        entries = [make_entry(0) for _ in range(4)]
        for entry in entries:
            audit_store.append(entry)

        first = audit_store.query(AuditQuery(limit=2))
        second = audit_store.query(AuditQuery(limit=2, cursor=first.next_cursor))
        ids = [e.id for e in first.items + second.items]
        assert ids == sorted((e.id for e in entries), reverse=True)

    def test_malformed_cursor(self, audit_store):
        with pytest.raises(ValidationError):
            audit_store.query(AuditQuery(cursor="not-a-cursor"))
