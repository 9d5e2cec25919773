"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection, integrity verification,
and audit event logging.
"""

import pytest
from datetime import datetime, date, timezone
from decimal import Decimal

from erp_core.storage import InMemoryStorage, SQLiteStorage
from erp_core.audit import (
    AuditTrail, AuditEvent, AuditEventType
)


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def _event(self, **overrides):
        now = datetime.now(timezone.utc)
        values = dict(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            sequence=1,
            event_type=AuditEventType.CLIENT_CREATED,
            entity_type="client",
            entity_id="CLI001",
            previous_hash="",
            current_hash="",
            metadata={"name": "Constructora Andina"}
        )
        values.update(overrides)
        return AuditEvent(**values)

    def test_metadata_serialization(self):
        """Test that metadata is converted to JSON-safe values"""
        event = self._event(metadata={
            "amount": Decimal('1234.56'),
            "due": date(2024, 3, 1),
            "kind": AuditEventType.PAYABLE_CREATED,
            "nested": {"values": [Decimal('1'), Decimal('2')]},
        })

        assert event.metadata["amount"] == "1234.56"
        assert event.metadata["due"] == "2024-03-01"
        assert event.metadata["kind"] == "payable_created"
        assert event.metadata["nested"] == {"values": ["1", "2"]}

    def test_hash_calculation(self):
        """Test hash is deterministic SHA-256"""
        event = self._event()
        first = event.calculate_hash()

        assert len(first) == 64
        assert event.calculate_hash() == first

    def test_hash_verification(self):
        """Test stored hash verifies until a field changes"""
        event = self._event()
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.entity_id = "CLI002"
        assert not event.verify_hash()

    def test_round_trip(self):
        """Test to_dict/from_dict keeps the event intact"""
        event = self._event()
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())

        assert restored.event_type == AuditEventType.CLIENT_CREATED
        assert restored.verify_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_log_first_event(self):
        """Test logging the first audit event"""
        event = self.audit_trail.log_event(
            event_type=AuditEventType.SYSTEM_START,
            entity_type="system",
            entity_id="ERP_CORE",
            metadata={"version": "1.0.0"},
            user_id="SYSTEM"
        )

        assert event.sequence == 1
        assert event.previous_hash == ""
        assert len(event.current_hash) == 64
        assert event.user_id == "SYSTEM"

        retrieved = self.audit_trail.get_event_by_id(event.id)
        assert retrieved is not None
        assert retrieved.id == event.id

    def test_log_multiple_events_chain(self):
        """Test logging multiple events creates proper hash chain"""
        event1 = self.audit_trail.log_event(AuditEventType.CLIENT_CREATED, "client", "c1")
        event2 = self.audit_trail.log_event(AuditEventType.INVOICE_CREATED, "invoice", "i1")
        event3 = self.audit_trail.log_event(AuditEventType.INVOICE_PAYMENT_REGISTERED, "invoice", "i1")

        assert event2.previous_hash == event1.current_hash
        assert event3.previous_hash == event2.current_hash
        assert [e.sequence for e in (event1, event2, event3)] == [1, 2, 3]

    def test_get_events_for_entity(self):
        """Test retrieving events for specific entity"""
        self.audit_trail.log_event(AuditEventType.OBLIGATION_CREATED, "obligation", "o1")
        self.audit_trail.log_event(AuditEventType.OBLIGATION_CREATED, "obligation", "o2")
        self.audit_trail.log_event(AuditEventType.OBLIGATION_PAYMENT_REGISTERED, "obligation", "o1")

        events = self.audit_trail.get_events_for_entity("obligation", "o1")

        assert [e.event_type for e in events] == [
            AuditEventType.OBLIGATION_CREATED,
            AuditEventType.OBLIGATION_PAYMENT_REGISTERED
        ]

    def test_get_events_by_type(self):
        """Test filtering by event type"""
        self.audit_trail.log_event(AuditEventType.CODE_CONFLICT, "clients", "CLI-001")
        self.audit_trail.log_event(AuditEventType.CLIENT_CREATED, "client", "c1")

        events = self.audit_trail.get_events_by_type(AuditEventType.CODE_CONFLICT)
        assert len(events) == 1
        assert events[0].entity_id == "CLI-001"

    def test_verify_integrity_valid_chain(self):
        """Test integrity check of an untouched chain"""
        for index in range(5):
            self.audit_trail.log_event(AuditEventType.RECORD_UPDATED, "client", f"c{index}")

        result = self.audit_trail.verify_integrity()

        assert result["valid"] is True
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_detects_hash_tampering(self):
        """Test integrity verification detects hash tampering"""
        event1 = self.audit_trail.log_event(AuditEventType.PAYABLE_CREATED, "payable", "p1")
        self.audit_trail.log_event(AuditEventType.PAYABLE_PAYMENT_MADE, "payable", "p1")

        tampered = self.storage.load(self.audit_trail.table_name, event1.id)
        tampered["current_hash"] = "tampered_hash"
        self.storage.save(self.audit_trail.table_name, event1.id, tampered)

        result = self.audit_trail.verify_integrity()

        assert result["valid"] is False
        assert result["hash_errors"][0]["event_id"] == event1.id
        assert result["hash_errors"][0]["actual_hash"] == "tampered_hash"

    def test_verify_integrity_detects_metadata_tampering(self):
        """Test edits to the payload invalidate the hash"""
        event = self.audit_trail.log_event(
            AuditEventType.INVOICE_PAYMENT_REGISTERED, "invoice", "i1",
            metadata={"amount": Decimal('500000')}
        )

        tampered = self.storage.load(self.audit_trail.table_name, event.id)
        tampered["metadata"]["amount"] = "5000000"
        self.storage.save(self.audit_trail.table_name, event.id, tampered)

        result = self.audit_trail.verify_integrity()
        assert result["valid"] is False
        assert len(result["hash_errors"]) == 1

    def test_verify_integrity_detects_chain_break(self):
        """Test integrity verification detects chain breaks"""
        event1 = self.audit_trail.log_event(AuditEventType.CLIENT_CREATED, "client", "c1")
        event2 = self.audit_trail.log_event(AuditEventType.SUPPLIER_CREATED, "supplier", "s1")

        tampered = self.storage.load(self.audit_trail.table_name, event2.id)
        tampered["previous_hash"] = "broken_chain_hash"
        self.storage.save(self.audit_trail.table_name, event2.id, tampered)

        result = self.audit_trail.verify_integrity()

        assert result["valid"] is False
        assert len(result["chain_breaks"]) == 1
        assert result["chain_breaks"][0]["expected_previous_hash"] == event1.current_hash

    def test_verify_integrity_empty_trail(self):
        """Test integrity verification on empty trail"""
        result = self.audit_trail.verify_integrity()
        assert result["valid"] is True
        assert result["total_events"] == 0

    def test_disabled_trail_logs_nothing(self):
        """Test auditing can be switched off"""
        trail = AuditTrail(InMemoryStorage(), enabled=False)

        assert trail.log_event(AuditEventType.CLIENT_CREATED, "client", "c1") is None
        assert trail.count_events() == 0

    def test_chain_resumes_after_restart(self):
        """Test a new trail on existing storage continues the chain"""
        storage = SQLiteStorage(":memory:")
        first = AuditTrail(storage).log_event(AuditEventType.SYSTEM_START, "system", "ERP_CORE")

        resumed = AuditTrail(storage)
        second = resumed.log_event(AuditEventType.SYSTEM_START, "system", "ERP_CORE")

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert resumed.verify_integrity()["valid"] is True
        storage.close()
