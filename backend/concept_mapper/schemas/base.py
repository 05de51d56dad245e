"""Base schemas and enums for the concept mapping engine."""

from enum import Enum


class StandardConcept(str, Enum):
    """OMOP standard_concept categories, in display/ranking order."""

    STANDARD = "Standard"
    CLASSIFICATION = "Classification"
    NON_STANDARD = "Non-standard"

    @classmethod
    def from_flag(cls, flag: str | None) -> "StandardConcept":
        """Convert the one-letter OMOP flag (S, C, null) to a category."""
        if flag == "S":
            return cls.STANDARD
        if flag == "C":
            return cls.CLASSIFICATION
        return cls.NON_STANDARD

    @property
    def rank(self) -> int:
        """Sort rank: Standard < Classification < Non-standard."""
        return {
            StandardConcept.STANDARD: 0,
            StandardConcept.CLASSIFICATION: 1,
            StandardConcept.NON_STANDARD: 2,
        }[self]


class Validity(str, Enum):
    """Concept validity derived from invalid_reason."""

    VALID = "Valid"
    INVALID = "Invalid"


class ImportFormat(str, Enum):
    """Supported mapping import formats."""

    CSV = "csv"  # Generic delimited file with user supplied column mapping
    STCM = "stcm"  # OMOP SOURCE_TO_CONCEPT_MAP
    USAGI = "usagi"  # OHDSI Usagi export
    ARCHIVE = "archive"  # Portable zip archive produced by this system


class ExportFormat(str, Enum):
    """Supported mapping export formats."""

    STCM = "stcm"
    USAGI = "usagi"
    ARCHIVE = "archive"


class Vote(str, Enum):
    """A reviewer's vote on a mapping."""

    APPROVE = "approve"
    REJECT = "reject"
    UNCERTAIN = "uncertain"

    @property
    def legacy_value(self) -> int:
        """Integer encoding used in portable archives (is_approved column)."""
        return {Vote.APPROVE: 1, Vote.REJECT: 0, Vote.UNCERTAIN: -1}[self]

    @classmethod
    def from_legacy(cls, value: int) -> "Vote":
        """Decode the archive is_approved integer."""
        mapping = {1: cls.APPROVE, 0: cls.REJECT, -1: cls.UNCERTAIN}
        if value not in mapping:
            raise ValueError(f"Unknown evaluation value: {value}")
        return mapping[value]


class ConsensusStatus(str, Enum):
    """Consensus classification of a mapping derived from its votes."""

    APPROVED = "Approved"
    REJECTED = "Rejected"
    UNCERTAIN = "Uncertain"
    NOT_EVALUATED = "NotEvaluated"


class ApprovedPolicy(str, Enum):
    """Narrowing applied to Approved mappings at export time."""

    ALL = "all"
    MAJORITY = "majority"  # approve_count > reject_count
    NO_REJECTION = "no_rejection"  # reject_count == 0
