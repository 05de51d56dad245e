"""Exceptions raised by the mapping engine services.

Skipped rows (no destination match, duplicates) and unresolved identities are
not exceptions: they are counted and reported in the import summary.
"""


class MappingEngineError(Exception):
    """Base exception for mapping engine failures."""


class ImportValidationError(MappingEngineError):
    """Raised when an import file is malformed. Nothing has been written."""

    def __init__(self, message: str, *, line: int | None = None) -> None:
        self.line = line
        if line is not None:
            message = f"{message} (line {line})"
        super().__init__(message)


class TransactionFailure(MappingEngineError):
    """Raised when a write batch fails in storage and has been rolled back."""


class NotFoundError(MappingEngineError):
    """Raised when a referenced alignment, mapping, import or concept is missing."""


class DuplicateMappingError(MappingEngineError):
    """Raised when a manual mapping repeats an existing (row, target) pair."""


class OwnershipError(MappingEngineError):
    """Raised when a user acts on a record reserved to its author."""
