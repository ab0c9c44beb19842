"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection and per-account queries.
"""

import pytest
from datetime import datetime, timezone

from value_vault.storage import InMemoryStorage
from value_vault.audit import AuditTrail, AuditEvent, AuditEventType


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def _event(self, **overrides) -> AuditEvent:
        now = datetime.now(timezone.utc)
        fields = dict(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.DEPOSIT,
            account="ALICE",
            sequence=1,
            previous_hash="",
            current_hash="",
            metadata={"amount": 10, "balance_after": 10}
        )
        fields.update(overrides)
        return AuditEvent(**fields)

    def test_hash_is_deterministic(self):
        event = self._event()

        assert event.calculate_hash() == event.calculate_hash()
        assert len(event.calculate_hash()) == 64

    def test_verify_hash_detects_tampering(self):
        event = self._event()
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.metadata["amount"] = 1_000_000
        assert not event.verify_hash()

    def test_metadata_serialization(self):
        """Test datetimes and enums in metadata become JSON values"""
        now = datetime.now(timezone.utc)
        event = self._event(metadata={
            "at": now,
            "kind": AuditEventType.WITHDRAWAL,
            "nested": {"values": (1, 2)}
        })

        assert event.metadata["at"] == now.isoformat()
        assert event.metadata["kind"] == "withdrawal"
        assert event.metadata["nested"] == {"values": [1, 2]}

    def test_dict_round_trip_preserves_hash(self):
        event = self._event()
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())

        assert restored.event_type == AuditEventType.DEPOSIT
        assert restored.verify_hash()


class TestAuditTrail:
    """Test hash chaining and integrity verification"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.trail = AuditTrail(self.storage)

    def test_events_are_chained(self):
        first = self.trail.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": 10})
        second = self.trail.log_event(AuditEventType.WITHDRAWAL, "ALICE", {"amount": 5})

        assert first.previous_hash == ""
        assert first.sequence == 1
        assert second.previous_hash == first.current_hash
        assert second.sequence == 2
        assert self.trail.get_latest_hash() == second.current_hash
        assert self.trail.count_events() == 2

    def test_verify_integrity_on_clean_chain(self):
        for amount in (1, 2, 3):
            self.trail.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": amount})

        result = self.trail.verify_integrity()

        assert result["valid"]
        assert result["total_events"] == 3
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_detects_modified_record(self):
        self.trail.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": 10})
        event = self.trail.log_event(AuditEventType.WITHDRAWAL, "ALICE", {"amount": 5})

        tampered = self.storage.load(self.trail.table_name, event.id)
        tampered["metadata"]["amount"] = 500
        self.storage.save(self.trail.table_name, event.id, tampered)

        result = self.trail.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_verify_integrity_detects_deleted_record(self):
        self.trail.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": 1})
        middle = self.trail.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": 2})
        self.trail.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": 3})

        del self.storage._data[self.trail.table_name][middle.id]

        result = self.trail.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_events_for_account(self):
        self.trail.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": 1})
        self.trail.log_event(AuditEventType.DEPOSIT, "BOB", {"amount": 2})
        self.trail.log_event(AuditEventType.WITHDRAWAL, "ALICE", {"amount": 1})

        alice = self.trail.get_events_for_account("ALICE")
        assert [e.event_type for e in alice] == [AuditEventType.DEPOSIT, AuditEventType.WITHDRAWAL]
        assert len(self.trail.get_events_for_account("ALICE", limit=1)) == 1
        assert self.trail.get_events_for_account("NOBODY") == []
        assert self.trail.get_events_for_account("ALICE", limit=0) == []
        assert self.trail.get_events_for_account("ALICE", limit=-1) == []

    def test_chain_continues_after_reload(self):
        """Test a new trail over the same storage appends to the existing chain"""
        last = self.trail.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": 1})

        reloaded = AuditTrail(self.storage)
        nxt = reloaded.log_event(AuditEventType.DEPOSIT, "ALICE", {"amount": 2})

        assert nxt.previous_hash == last.current_hash
        assert nxt.sequence == 2
        assert reloaded.verify_integrity()["valid"]
