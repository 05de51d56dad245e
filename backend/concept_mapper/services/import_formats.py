"""Parsers for mapping import files.

Four formats are recognised:

- csv: any delimited file, with a user supplied ColumnMapping
- stcm: OMOP SOURCE_TO_CONCEPT_MAP (source_code, source_vocabulary_id,
  target_concept_id)
- usagi: OHDSI Usagi export (sourceCode, conceptId, optional sourceVocabulary)
- archive: zip bundle written by our own exporter (metadata.json,
  mappings.csv, evaluations.csv, comments.csv). People are identified by
  first/last name so archives move between installations.

Parsing is pure: it validates everything that can be validated without the
database and raises ImportValidationError before anything is written.
"""

import csv
import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

from concept_mapper.core.config import settings
from concept_mapper.core.errors import ImportValidationError
from concept_mapper.schemas.base import ImportFormat, Vote

logger = logging.getLogger(__name__)

# Values treated as empty cells (R and pandas exports write NA / nan)
EMPTY_VALUES = {"", "na", "nan", "null", "none"}

# Usagi rows that carry no usable mapping
USAGI_IGNORED_STATUSES = {"IGNORED", "INVALID_TARGET"}

ARCHIVE_METADATA = "metadata.json"
ARCHIVE_MAPPINGS = "mappings.csv"
ARCHIVE_EVALUATIONS = "evaluations.csv"
ARCHIVE_COMMENTS = "comments.csv"
ARCHIVE_SOURCE_CONCEPTS = "source_concepts.csv"


@dataclass(frozen=True)
class ColumnMapping:
    """Which columns of a generic delimited file hold the mapping fields."""

    source_code: str
    target_concept_id: str
    source_vocabulary_id: str | None = None


STCM_COLUMNS = ColumnMapping(
    source_code="source_code",
    target_concept_id="target_concept_id",
    source_vocabulary_id="source_vocabulary_id",
)


@dataclass
class ImportedMapping:
    """One mapping read from an import file."""

    line: int
    concept_code: str | None
    vocabulary_id: str | None
    target_omop_concept_id: int | None = None
    target_general_concept_id: int | None = None
    target_custom_concept_id: int | None = None
    original_mapping_id: str | None = None
    original_row_id: int | None = None
    author_first_name: str | None = None
    author_last_name: str | None = None
    mapped_at: datetime | None = None


@dataclass
class ImportedEvaluation:
    """A vote read from a portable archive."""

    line: int
    original_mapping_id: str
    vote: Vote
    evaluator_first_name: str | None = None
    evaluator_last_name: str | None = None
    evaluated_at: datetime | None = None


@dataclass
class ImportedComment:
    """A comment read from a portable archive."""

    line: int
    original_mapping_id: str
    comment: str
    author_first_name: str | None = None
    author_last_name: str | None = None
    commented_at: datetime | None = None
    evaluation_status: str | None = None


@dataclass
class ParsedImport:
    """Validated content of an import file."""

    import_format: ImportFormat
    mappings: list[ImportedMapping] = field(default_factory=list)
    evaluations: list[ImportedEvaluation] = field(default_factory=list)
    comments: list[ImportedComment] = field(default_factory=list)
    ignored_rows: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Cell helpers
# ============================================================================


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in EMPTY_VALUES:
        return None
    return text


def parse_concept_id(value: Any, column: str, line: int) -> int | None:
    """Parse an integer id cell. Empty cells give None, garbage raises."""
    text = _clean(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        number = None
    if number is not None and number.is_integer():
        return int(number)
    raise ImportValidationError(f"Column '{column}' must be an integer, got '{text}'", line=line)


def _parse_timestamp(value: Any) -> datetime | None:
    text = _clean(value)
    if text is None:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable timestamp '{text}' ignored")
        return None


def read_delimited(content: bytes | str) -> tuple[list[str], list[dict[str, str]]]:
    """Read a delimited text file with a header row.

    The delimiter is sniffed among comma, semicolon, tab and pipe.

    Returns:
        (column names, rows as dicts)
    """
    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = content.decode("latin-1")
    else:
        text = content

    if not text.strip():
        raise ImportValidationError("File is empty")

    sample = text[:8192]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","

    reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
    fieldnames = [name.strip() for name in (reader.fieldnames or [])]
    reader.fieldnames = fieldnames
    return fieldnames, list(reader)


def _require_columns(columns: list[str], required: list[str]) -> None:
    missing = [column for column in required if column not in columns]
    if missing:
        raise ImportValidationError(f"Missing required columns: {', '.join(missing)}")


# ============================================================================
# Flat formats
# ============================================================================


def _parse_tabular(
    content: bytes | str,
    import_format: ImportFormat,
    column_mapping: ColumnMapping,
    status_column: str | None = None,
) -> ParsedImport:
    columns, rows = read_delimited(content)

    required = [column_mapping.source_code, column_mapping.target_concept_id]
    if column_mapping.source_vocabulary_id:
        required.append(column_mapping.source_vocabulary_id)
    _require_columns(columns, required)

    parsed = ParsedImport(import_format=import_format)
    # Header is line 1
    for line, row in enumerate(rows, start=2):
        if status_column and (row.get(status_column) or "").strip().upper() in USAGI_IGNORED_STATUSES:
            parsed.ignored_rows += 1
            continue

        target_id = parse_concept_id(
            row.get(column_mapping.target_concept_id), column_mapping.target_concept_id, line
        )
        # Usagi and STCM use 0 for "no matching concept"
        if target_id is None or target_id == 0:
            parsed.ignored_rows += 1
            continue

        vocabulary_id = None
        if column_mapping.source_vocabulary_id:
            vocabulary_id = _clean(row.get(column_mapping.source_vocabulary_id))

        parsed.mappings.append(
            ImportedMapping(
                line=line,
                concept_code=_clean(row.get(column_mapping.source_code)),
                vocabulary_id=vocabulary_id,
                target_omop_concept_id=target_id,
            )
        )
    return parsed


def parse_generic_csv(content: bytes | str, column_mapping: ColumnMapping) -> ParsedImport:
    return _parse_tabular(content, ImportFormat.CSV, column_mapping)


def parse_source_to_concept_map(content: bytes | str) -> ParsedImport:
    return _parse_tabular(content, ImportFormat.STCM, STCM_COLUMNS)


def parse_usagi(content: bytes | str) -> ParsedImport:
    columns, _ = read_delimited(content)
    column_mapping = ColumnMapping(
        source_code="sourceCode",
        target_concept_id="conceptId",
        source_vocabulary_id="sourceVocabulary" if "sourceVocabulary" in columns else None,
    )
    status_column = "mappingStatus" if "mappingStatus" in columns else None
    return _parse_tabular(content, ImportFormat.USAGI, column_mapping, status_column=status_column)


# ============================================================================
# Portable archive
# ============================================================================


def _archive_members(archive: zipfile.ZipFile) -> dict[str, str]:
    """Map base file names to archive member names (ignores folders)."""
    members: dict[str, str] = {}
    for name in archive.namelist():
        if name.endswith("/") or name.startswith("__MACOSX"):
            continue
        members.setdefault(PurePosixPath(name).name, name)
    return members


def _read_member_rows(archive: zipfile.ZipFile, members: dict[str, str], filename: str) -> list[dict[str, str]]:
    if filename not in members:
        return []
    content = archive.read(members[filename])
    if not content.strip():
        return []
    _, rows = read_delimited(content)
    return rows


def parse_portable_archive(content: bytes) -> ParsedImport:
    """Parse a zip archive produced by the archive exporter."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile as e:
        raise ImportValidationError("File is not a valid zip archive") from e

    with archive:
        members = _archive_members(archive)
        if ARCHIVE_METADATA not in members:
            raise ImportValidationError(f"Archive is missing {ARCHIVE_METADATA}")

        try:
            metadata = json.loads(archive.read(members[ARCHIVE_METADATA]).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ImportValidationError(f"{ARCHIVE_METADATA} is not valid JSON") from e

        if not isinstance(metadata, dict) or metadata.get("format_type") != settings.export_format_type:
            raise ImportValidationError(f"Invalid format_type in {ARCHIVE_METADATA}")
        if ARCHIVE_MAPPINGS not in members:
            raise ImportValidationError(f"Archive is missing {ARCHIVE_MAPPINGS}")

        parsed = ParsedImport(import_format=ImportFormat.ARCHIVE, metadata=metadata)
        parsed.mappings, parsed.ignored_rows = _parse_archive_mappings(
            _read_member_rows(archive, members, ARCHIVE_MAPPINGS)
        )
        parsed.evaluations = _parse_archive_evaluations(
            _read_member_rows(archive, members, ARCHIVE_EVALUATIONS)
        )
        parsed.comments = _parse_archive_comments(
            _read_member_rows(archive, members, ARCHIVE_COMMENTS)
        )

    logger.info(
        f"Archive parsed: {len(parsed.mappings)} mappings, "
        f"{len(parsed.evaluations)} evaluations, {len(parsed.comments)} comments"
    )
    return parsed


def _parse_archive_mappings(rows: list[dict[str, str]]) -> tuple[list[ImportedMapping], int]:
    if rows:
        _require_columns(list(rows[0].keys()), ["mapping_id"])

    mappings: list[ImportedMapping] = []
    ignored = 0
    for line, row in enumerate(rows, start=2):
        omop_id = parse_concept_id(row.get("target_omop_concept_id"), "target_omop_concept_id", line)
        general_id = parse_concept_id(
            row.get("target_general_concept_id"), "target_general_concept_id", line
        )
        custom_id = parse_concept_id(
            row.get("target_custom_concept_id"), "target_custom_concept_id", line
        )
        if omop_id is None and general_id is None and custom_id is None:
            ignored += 1
            continue

        mappings.append(
            ImportedMapping(
                line=line,
                concept_code=_clean(row.get("concept_code")),
                vocabulary_id=_clean(row.get("vocabulary_id")),
                target_omop_concept_id=omop_id,
                target_general_concept_id=general_id,
                target_custom_concept_id=custom_id,
                original_mapping_id=_clean(row.get("mapping_id")),
                original_row_id=parse_concept_id(row.get("row_id"), "row_id", line),
                author_first_name=_clean(row.get("user_first_name")),
                author_last_name=_clean(row.get("user_last_name")),
                mapped_at=_parse_timestamp(row.get("mapping_datetime")),
            )
        )
    return mappings, ignored


def _parse_archive_evaluations(rows: list[dict[str, str]]) -> list[ImportedEvaluation]:
    if rows:
        _require_columns(list(rows[0].keys()), ["mapping_id", "is_approved"])

    evaluations: list[ImportedEvaluation] = []
    for line, row in enumerate(rows, start=2):
        mapping_id = _clean(row.get("mapping_id"))
        value = parse_concept_id(row.get("is_approved"), "is_approved", line)
        if mapping_id is None or value is None:
            continue
        try:
            vote = Vote.from_legacy(value)
        except ValueError as e:
            raise ImportValidationError(str(e), line=line) from e

        evaluations.append(
            ImportedEvaluation(
                line=line,
                original_mapping_id=mapping_id,
                vote=vote,
                evaluator_first_name=_clean(row.get("user_first_name")),
                evaluator_last_name=_clean(row.get("user_last_name")),
                evaluated_at=_parse_timestamp(row.get("evaluated_at")),
            )
        )
    return evaluations


def _parse_archive_comments(rows: list[dict[str, str]]) -> list[ImportedComment]:
    if rows:
        _require_columns(list(rows[0].keys()), ["mapping_id", "comment"])

    comments: list[ImportedComment] = []
    for line, row in enumerate(rows, start=2):
        mapping_id = _clean(row.get("mapping_id"))
        text = (row.get("comment") or "").strip()
        if mapping_id is None or not text:
            continue
        comments.append(
            ImportedComment(
                line=line,
                original_mapping_id=mapping_id,
                comment=text,
                author_first_name=_clean(row.get("user_first_name")),
                author_last_name=_clean(row.get("user_last_name")),
                commented_at=_parse_timestamp(row.get("created_at")),
                evaluation_status=_clean(row.get("evaluation_status")),
            )
        )
    return comments


# ============================================================================
# Entry point
# ============================================================================


def parse_import(
    content: bytes,
    import_format: ImportFormat,
    column_mapping: ColumnMapping | None = None,
) -> ParsedImport:
    """Parse and validate an import file.

    Raises:
        ImportValidationError: malformed file, missing columns or non-numeric
            target ids.
    """
    if import_format == ImportFormat.CSV:
        if column_mapping is None:
            raise ImportValidationError("A column mapping is required for generic CSV imports")
        return parse_generic_csv(content, column_mapping)
    if import_format == ImportFormat.STCM:
        return parse_source_to_concept_map(content)
    if import_format == ImportFormat.USAGI:
        return parse_usagi(content)
    return parse_portable_archive(content)
