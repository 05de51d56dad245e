"""Audit logging for mapping store operations.

Records who changed what in an alignment:
- Mapping creation and deletion
- Import batches (accepted / skipped counts)
- Exports
- Reviewer votes

Audit events go to a dedicated "audit" logger so deployments can route them
to an append-only store.
"""

import logging
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

# Separate audit logger for curation events
audit_logger = logging.getLogger("audit")


class AuditAction(str, Enum):
    """Types of auditable actions."""

    CREATE = "create"
    DELETE = "delete"
    IMPORT = "import"
    EXPORT = "export"
    VOTE = "vote"


class AuditEvent(BaseModel):
    """Audit event record."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    action: AuditAction = Field(..., description="Type of action performed")
    resource_type: str = Field(..., description="Type of resource touched")
    resource_id: str | None = Field(None, description="ID of specific resource")
    alignment_id: str | None = Field(None, description="Alignment the resource belongs to")
    user_id: str | None = Field(None, description="User who performed action")
    details: dict | None = Field(None, description="Additional context")
    success: bool = Field(True, description="Whether action succeeded")


def log_audit(
    action: AuditAction,
    resource_type: str,
    resource_id: str | None = None,
    alignment_id: str | None = None,
    user_id: str | None = None,
    details: dict | None = None,
    success: bool = True,
) -> AuditEvent:
    """Log an audit event.

    Args:
        action: Type of action being audited
        resource_type: The type of resource being changed
        resource_id: Specific resource identifier
        alignment_id: Alignment the resource belongs to
        user_id: User performing the action
        details: Additional context
        success: Whether the action succeeded

    Returns:
        The created AuditEvent
    """
    event = AuditEvent(
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        alignment_id=alignment_id,
        user_id=user_id,
        details=details,
        success=success,
    )

    log_level = logging.INFO if success else logging.WARNING
    audit_logger.log(
        log_level,
        f"AUDIT: {action.value} {resource_type}"
        f"{f'/{resource_id}' if resource_id else ''}"
        f"{f' alignment={alignment_id}' if alignment_id else ''}"
        f" success={success}",
        extra={"audit_event": event.model_dump()},
    )

    return event


def log_import(
    alignment_id: str,
    import_id: str | None,
    import_format: str,
    user_id: str | None = None,
    accepted: int = 0,
    skipped: int = 0,
    success: bool = True,
) -> AuditEvent:
    """Log an import batch.

    Failed batches are logged too, with success=False and no import id.
    """
    return log_audit(
        action=AuditAction.IMPORT,
        resource_type="import",
        resource_id=import_id,
        alignment_id=alignment_id,
        user_id=user_id,
        details={"format": import_format, "accepted": accepted, "skipped": skipped},
        success=success,
    )


def log_export(
    alignment_id: str,
    export_format: str,
    user_id: str | None = None,
    record_count: int = 0,
) -> AuditEvent:
    """Log a mapping export.

    Args:
        alignment_id: Alignment whose mappings are exported
        export_format: Export format (e.g., "stcm", "archive")
        user_id: User performing the export
        record_count: Number of mappings exported

    Returns:
        The created AuditEvent
    """
    return log_audit(
        action=AuditAction.EXPORT,
        resource_type="export",
        alignment_id=alignment_id,
        user_id=user_id,
        details={"export_format": export_format, "record_count": record_count},
    )
