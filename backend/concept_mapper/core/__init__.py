"""Core application configuration and utilities."""

from concept_mapper.core.audit import AuditAction, AuditEvent, log_audit, log_export, log_import
from concept_mapper.core.config import settings
from concept_mapper.core.database import Base, get_db
from concept_mapper.core.errors import (
    DuplicateMappingError,
    ImportValidationError,
    MappingEngineError,
    NotFoundError,
    OwnershipError,
    TransactionFailure,
)

__all__ = [
    # Config
    "settings",
    # Database
    "Base",
    "get_db",
    # Errors
    "MappingEngineError",
    "ImportValidationError",
    "TransactionFailure",
    "NotFoundError",
    "DuplicateMappingError",
    "OwnershipError",
    # Audit
    "AuditAction",
    "AuditEvent",
    "log_audit",
    "log_export",
    "log_import",
]
