"""
Tests for the hash-chained audit trail
"""

from decimal import Decimal

from accounting_core.audit import AuditTrail, AuditEventType
from accounting_core.storage import InMemoryStorage


class TestAuditTrail:
    """Test audit event logging and chain verification"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_log_event(self):
        event = self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id="acc_1",
            metadata={"code": "1000", "opening": Decimal("0.00")},
            user_id="alice"
        )

        assert event.previous_hash == ""
        assert event.verify_hash()
        assert event.metadata["opening"] == "0.00"
        assert event.metadata["_seq"] == 1
        assert self.audit_trail.count_events() == 1

    def test_events_are_chained(self):
        first = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_1")
        second = self.audit_trail.log_event(AuditEventType.ACCOUNT_UPDATED, "account", "acc_1")

        assert second.previous_hash == first.current_hash
        assert [e.event_type for e in self.audit_trail.get_events_for_entity("account", "acc_1")] == [
            AuditEventType.ACCOUNT_CREATED, AuditEventType.ACCOUNT_UPDATED
        ]

    def test_get_events_by_type(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_1")
        self.audit_trail.log_event(AuditEventType.JOURNAL_ENTRY_POSTED, "journal_entry", "je_1")

        posted = self.audit_trail.get_events_by_type(AuditEventType.JOURNAL_ENTRY_POSTED)
        assert [e.entity_id for e in posted] == ["je_1"]

    def test_verify_integrity_valid_chain(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", f"acc_{i}")

        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_tampered_event_detected(self):
        event = self.audit_trail.log_event(
            AuditEventType.JOURNAL_ENTRY_POSTED, "journal_entry", "je_1",
            metadata={"total": "500.00"}
        )
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_1")

        data = self.storage.load("audit_events", event.id)
        data["metadata"]["total"] = "5000.00"
        self.storage.save("audit_events", event.id, data)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert [error["event_id"] for error in result["hash_errors"]] == [event.id]

    def test_deleted_event_breaks_chain(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_1")
        middle = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_2")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_3")

        self.storage.delete("audit_events", middle.id)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_chain_continues_after_reload(self):
        last = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_1")

        reloaded = AuditTrail(self.storage)
        event = reloaded.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_2")

        assert event.previous_hash == last.current_hash
        assert event.metadata["_seq"] == 2
        assert reloaded.verify_integrity()["valid"]

    def test_disabled_trail_records_nothing(self):
        audit_trail = AuditTrail(self.storage, enabled=False)
        assert audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "acc_1") is None
        assert audit_trail.count_events() == 0
