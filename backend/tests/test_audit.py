"""Tests for audit logging of curation events."""

import logging
from datetime import UTC, datetime

import pytest

from concept_mapper.core.audit import (
    AuditAction,
    AuditEvent,
    log_audit,
    log_export,
    log_import,
)


class TestAuditEvent:
    """Tests for AuditEvent model."""

    def test_audit_event_required_fields(self) -> None:
        """Test AuditEvent with required fields only."""
        event = AuditEvent(
            action=AuditAction.CREATE,
            resource_type="mapping",
        )
        assert event.action == AuditAction.CREATE
        assert event.resource_type == "mapping"
        assert event.success is True
        assert event.timestamp is not None

    def test_audit_event_all_fields(self) -> None:
        event = AuditEvent(
            action=AuditAction.IMPORT,
            resource_type="import",
            resource_id="imp-123",
            alignment_id="al-1",
            user_id="user-456",
            details={"format": "usagi"},
        )
        assert event.resource_id == "imp-123"
        assert event.alignment_id == "al-1"
        assert event.details == {"format": "usagi"}

    def test_audit_event_timestamp_auto_set(self) -> None:
        """Test that timestamp is automatically set."""
        before = datetime.now(UTC)
        event = AuditEvent(action=AuditAction.VOTE, resource_type="mapping")
        after = datetime.now(UTC)
        assert before <= event.timestamp <= after


class TestAuditActions:
    def test_action_values(self) -> None:
        assert AuditAction.CREATE == "create"
        assert AuditAction.DELETE == "delete"
        assert AuditAction.IMPORT == "import"
        assert AuditAction.EXPORT == "export"
        assert AuditAction.VOTE == "vote"


class TestLogFunctions:
    """Tests for audit logging convenience functions."""

    def test_log_audit_writes_to_audit_logger(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="audit"):
            event = log_audit(AuditAction.DELETE, resource_type="mapping", resource_id="m-1", alignment_id="al-1")

        assert event.resource_id == "m-1"
        assert "AUDIT: delete mapping/m-1 alignment=al-1 success=True" in caplog.text

    def test_failed_import_logged_as_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="audit"):
            event = log_import(alignment_id="al-1", import_id=None, import_format="archive", success=False)

        assert event.success is False
        assert event.resource_id is None
        assert caplog.records[-1].levelno == logging.WARNING

    def test_log_import_counts(self) -> None:
        event = log_import(alignment_id="al-1", import_id="imp-1", import_format="stcm", accepted=5, skipped=2)

        assert event.action == AuditAction.IMPORT
        assert event.details == {"format": "stcm", "accepted": 5, "skipped": 2}

    def test_log_export(self) -> None:
        event = log_export(alignment_id="al-1", export_format="usagi", user_id="u-1", record_count=12)

        assert event.action == AuditAction.EXPORT
        assert event.details == {"export_format": "usagi", "record_count": 12}
