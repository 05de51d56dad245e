"""Pydantic schemas and shared enums."""

from concept_mapper.schemas.base import (
    ApprovedPolicy,
    ConsensusStatus,
    ExportFormat,
    ImportFormat,
    StandardConcept,
    Validity,
    Vote,
)

__all__ = [
    "ApprovedPolicy",
    "ConsensusStatus",
    "ExportFormat",
    "ImportFormat",
    "StandardConcept",
    "Validity",
    "Vote",
]
