"""Alignment export in OMOP and OHDSI interchange formats.

- SOURCE_TO_CONCEPT_MAP (OMOP CDM) CSV
- Usagi CSV
- Portable archive (zip) that our importer reads back, with people identified
  by first and last name

Only mappings selected by the ExportFilter are written.

Reference: https://ohdsi.github.io/CommonDataModel/cdm54.html#SOURCE_TO_CONCEPT_MAP
"""

import csv
import io
import json
import logging
import re
import zipfile
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from concept_mapper.core.audit import log_export
from concept_mapper.core.config import settings
from concept_mapper.core.errors import NotFoundError
from concept_mapper.models import (
    Alignment,
    Concept,
    Mapping,
    MappingComment,
    MappingEvaluation,
    SourceConceptRow,
    User,
)
from concept_mapper.schemas.base import ConsensusStatus, ExportFormat
from concept_mapper.services.evaluation import EvaluationAggregator, ExportFilter, VoteCounts, classify

logger = logging.getLogger(__name__)

STCM_VALID_END_DATE = "2099-12-31"

USAGI_STATUS = {
    ConsensusStatus.APPROVED: "APPROVED",
    ConsensusStatus.REJECTED: "INVALID",
    ConsensusStatus.UNCERTAIN: "FLAGGED",
    ConsensusStatus.NOT_EVALUATED: "UNCHECKED",
}

ARCHIVE_MAPPING_COLUMNS = [
    "mapping_id",
    "row_id",
    "target_general_concept_id",
    "target_omop_concept_id",
    "target_custom_concept_id",
    "mapping_datetime",
    "vocabulary_id",
    "concept_code",
    "user_first_name",
    "user_last_name",
]
ARCHIVE_EVALUATION_COLUMNS = [
    "mapping_id",
    "is_approved",
    "evaluated_at",
    "user_first_name",
    "user_last_name",
]
ARCHIVE_COMMENT_COLUMNS = [
    "mapping_id",
    "comment",
    "evaluation_status",
    "created_at",
    "user_first_name",
    "user_last_name",
]


class SourceToConceptMapRow(BaseModel):
    """OMOP SOURCE_TO_CONCEPT_MAP table row."""

    source_code: str = Field("", description="Code in the source vocabulary")
    source_concept_id: int = Field(0, description="Always 0 for local source codes")
    source_vocabulary_id: str = Field("", description="Source vocabulary")
    source_code_description: str = Field("", description="Source concept name")
    target_concept_id: int = Field(0, description="Standard OMOP concept")
    target_vocabulary_id: str = Field("", description="Vocabulary of the target concept")
    valid_start_date: str = Field(..., description="Mapping date (YYYY-MM-DD)")
    valid_end_date: str = Field(STCM_VALID_END_DATE)
    invalid_reason: str = Field("")


class UsagiRow(BaseModel):
    """One row of a Usagi mapping export."""

    sourceCode: str = ""
    sourceName: str = ""
    sourceFrequency: int = 0
    sourceAutoAssignedConceptIds: str = ""
    matchScore: float = 0.0
    mappingStatus: str = "UNCHECKED"
    equivalence: str = "UNREVIEWED"
    statusSetBy: str = ""
    statusSetOn: int = 0
    conceptId: int = 0
    conceptName: str = ""
    domainId: str = ""
    mappingType: str = "MAPS_TO"
    comment: str = ""
    createdBy: str = ""
    createdOn: int = 0
    assignedReviewer: str = ""


@dataclass
class ExportFile:
    """A rendered export, ready to be streamed."""

    filename: str
    media_type: str
    content: bytes
    record_count: int


def _safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("_") or "alignment"


def _epoch_millis(value: datetime | None) -> int:
    if value is None:
        return 0
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else ""


def _write_csv(columns: list[str], rows: list[dict]) -> bytes:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def split_display_name(display_name: str | None) -> tuple[str, str]:
    """Split 'First Last' for archives; everything after the first space is the last name."""
    if not display_name:
        return "", ""
    first, _, last = display_name.strip().partition(" ")
    return first, last.strip()


def _person_names(user: User | None, imported_user_name: str | None) -> tuple[str, str]:
    if user is not None:
        return user.first_name or "", user.last_name or ""
    return split_display_name(imported_user_name)


class MappingExporter:
    """Render an alignment's mappings in an export format.

    Usage:
        exporter = MappingExporter(session)
        export = exporter.export(alignment.id, ExportFormat.STCM)
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._aggregator = EvaluationAggregator(session)

    def export(
        self,
        alignment_id: str,
        export_format: ExportFormat,
        export_filter: ExportFilter | None = None,
        user_id: str | None = None,
    ) -> ExportFile:
        alignment = self._get_alignment(alignment_id)
        export_filter = export_filter or ExportFilter()
        mappings = self._aggregator.filter_mappings(alignment_id, export_filter)
        exporter = self._session.get(User, user_id) if user_id else None
        stem = _safe_filename(alignment.name)

        if export_format == ExportFormat.STCM:
            rows = self.source_to_concept_map_rows(alignment_id, mappings)
            content = _write_csv(
                list(SourceToConceptMapRow.model_fields), [row.model_dump() for row in rows]
            )
            export = ExportFile(f"{stem}_source_to_concept_map.csv", "text/csv", content, len(rows))
        elif export_format == ExportFormat.USAGI:
            rows = self.usagi_rows(alignment_id, mappings, exporter)
            content = _write_csv(list(UsagiRow.model_fields), [row.model_dump() for row in rows])
            export = ExportFile(f"{stem}_usagi.csv", "text/csv", content, len(rows))
        else:
            content = self.archive(alignment, mappings, exporter)
            export = ExportFile(f"{stem}_export.zip", "application/zip", content, len(mappings))

        log_export(
            alignment_id=alignment_id,
            export_format=export_format.value,
            user_id=user_id,
            record_count=export.record_count,
        )
        logger.info(f"Exported {export.record_count} mappings of alignment {alignment_id} as {export_format.value}")
        return export

    # ------------------------------------------------------------------
    # Flat formats
    # ------------------------------------------------------------------

    def source_to_concept_map_rows(
        self, alignment_id: str, mappings: list[Mapping]
    ) -> list[SourceToConceptMapRow]:
        rows_by_id = self._source_rows(alignment_id)
        concepts = self._target_concepts(mappings)

        result = []
        for mapping in mappings:
            source = rows_by_id.get(mapping.row_id)
            concept = concepts.get(mapping.target_omop_concept_id)
            result.append(
                SourceToConceptMapRow(
                    source_code=(source.concept_code or "") if source else "",
                    source_vocabulary_id=(source.vocabulary_id or "") if source else "",
                    source_code_description=(source.concept_name or "") if source else "",
                    target_concept_id=mapping.target_omop_concept_id or 0,
                    target_vocabulary_id=concept.vocabulary_id if concept else "",
                    valid_start_date=(mapping.mapped_at or datetime(1970, 1, 1)).date().isoformat(),
                )
            )
        return result

    def usagi_rows(
        self, alignment_id: str, mappings: list[Mapping], exporter: User | None = None
    ) -> list[UsagiRow]:
        rows_by_id = self._source_rows(alignment_id)
        concepts = self._target_concepts(mappings)
        counts = self._aggregator.vote_counts([m.id for m in mappings])
        exported_by = exporter.login if exporter else ""
        now = _epoch_millis(datetime.now(UTC))

        result = []
        for mapping in mappings:
            source = rows_by_id.get(mapping.row_id)
            concept = concepts.get(mapping.target_omop_concept_id)
            votes = counts.get(mapping.id, VoteCounts())
            result.append(
                UsagiRow(
                    sourceCode=(source.concept_code or "") if source else "",
                    sourceName=(source.concept_name or "") if source else "",
                    sourceFrequency=(source.frequency or 0) if source else 0,
                    mappingStatus=USAGI_STATUS[classify(votes)],
                    equivalence="EQUIVALENT" if votes.total else "UNREVIEWED",
                    statusSetBy=exported_by,
                    statusSetOn=now,
                    conceptId=mapping.target_omop_concept_id or 0,
                    conceptName=concept.concept_name if concept else "",
                    domainId=concept.domain_id if concept else "",
                    createdBy=exported_by,
                    createdOn=_epoch_millis(mapping.mapped_at),
                )
            )
        return result

    # ------------------------------------------------------------------
    # Portable archive
    # ------------------------------------------------------------------

    def archive(self, alignment: Alignment, mappings: list[Mapping], exporter: User | None = None) -> bytes:
        """Build the zip archive for an alignment."""
        source_rows = list(self._source_rows(alignment.id).values())
        rows_by_id = {row.row_id: row for row in source_rows}
        mapping_ids = [m.id for m in mappings]
        users = self._users_for(mappings)

        mapping_records = []
        for mapping in mappings:
            source = rows_by_id.get(mapping.row_id)
            first, last = _person_names(users.get(mapping.mapped_by_user_id), mapping.imported_user_name)
            mapping_records.append(
                {
                    "mapping_id": mapping.id,
                    "row_id": mapping.row_id,
                    "target_general_concept_id": mapping.target_general_concept_id,
                    "target_omop_concept_id": mapping.target_omop_concept_id,
                    "target_custom_concept_id": mapping.target_custom_concept_id,
                    "mapping_datetime": _iso(mapping.mapped_at),
                    "vocabulary_id": source.vocabulary_id if source else None,
                    "concept_code": source.concept_code if source else None,
                    "user_first_name": first,
                    "user_last_name": last,
                }
            )

        evaluations = self._evaluations_for(mapping_ids)
        evaluation_records = []
        for evaluation in evaluations:
            first, last = _person_names(evaluation.evaluator, evaluation.imported_user_name)
            evaluation_records.append(
                {
                    "mapping_id": evaluation.mapping_id,
                    "is_approved": evaluation.vote.legacy_value,
                    "evaluated_at": _iso(evaluation.evaluated_at),
                    "user_first_name": first,
                    "user_last_name": last,
                }
            )

        comments = self._comments_for(mapping_ids)
        comment_records = []
        for comment in comments:
            first, last = _person_names(comment.author, comment.imported_user_name)
            comment_records.append(
                {
                    "mapping_id": comment.mapping_id,
                    "comment": comment.comment,
                    "evaluation_status": comment.evaluation_status or "",
                    "created_at": _iso(comment.commented_at),
                    "user_first_name": first,
                    "user_last_name": last,
                }
            )

        metadata = {
            "format_version": settings.export_format_version,
            "format_type": settings.export_format_type,
            "export_date": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "exported_by": exporter.display_name if exporter else "unknown",
            "alignment": {
                "name": alignment.name,
                "description": alignment.description,
                "created_date": _iso(alignment.created_at),
                "column_types": alignment.column_types or {},
            },
            "statistics": {
                "total_source_concepts": len(source_rows),
                "total_mappings": len(mapping_records),
                "total_evaluations": len(evaluation_records),
                "total_comments": len(comment_records),
                "approved_count": sum(1 for r in evaluation_records if r["is_approved"] == 1),
                "rejected_count": sum(1 for r in evaluation_records if r["is_approved"] == 0),
                "uncertain_count": sum(1 for r in evaluation_records if r["is_approved"] == -1),
            },
        }

        source_columns = self._source_columns(source_rows)
        source_records = [{**(row.data or {}), "row_id": row.row_id} for row in source_rows]

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr("metadata.json", json.dumps(metadata, indent=2, default=str))
            archive.writestr("source_concepts.csv", _write_csv(source_columns, source_records))
            archive.writestr("mappings.csv", _write_csv(ARCHIVE_MAPPING_COLUMNS, mapping_records))
            archive.writestr("evaluations.csv", _write_csv(ARCHIVE_EVALUATION_COLUMNS, evaluation_records))
            archive.writestr("comments.csv", _write_csv(ARCHIVE_COMMENT_COLUMNS, comment_records))
        return buffer.getvalue()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _get_alignment(self, alignment_id: str) -> Alignment:
        alignment = self._session.get(Alignment, alignment_id)
        if alignment is None:
            raise NotFoundError(f"Alignment {alignment_id} not found")
        return alignment

    def _source_rows(self, alignment_id: str) -> dict[int, SourceConceptRow]:
        rows = self._session.execute(
            select(SourceConceptRow)
            .where(SourceConceptRow.alignment_id == alignment_id)
            .order_by(SourceConceptRow.row_id)
        ).scalars()
        return {row.row_id: row for row in rows}

    @staticmethod
    def _source_columns(rows: list[SourceConceptRow]) -> list[str]:
        columns = ["row_id"]
        for row in rows:
            for key in (row.data or {}):
                if key not in columns:
                    columns.append(key)
        return columns

    def _target_concepts(self, mappings: list[Mapping]) -> dict[int, Concept]:
        concept_ids = {m.target_omop_concept_id for m in mappings if m.target_omop_concept_id}
        if not concept_ids:
            return {}
        concepts = self._session.execute(
            select(Concept).where(Concept.concept_id.in_(concept_ids))
        ).scalars()
        return {concept.concept_id: concept for concept in concepts}

    def _users_for(self, mappings: list[Mapping]) -> dict[str, User]:
        user_ids = {m.mapped_by_user_id for m in mappings if m.mapped_by_user_id}
        if not user_ids:
            return {}
        users = self._session.execute(select(User).where(User.id.in_(user_ids))).scalars()
        return {user.id: user for user in users}

    def _evaluations_for(self, mapping_ids: list[str]) -> list[MappingEvaluation]:
        if not mapping_ids:
            return []
        return list(
            self._session.execute(
                select(MappingEvaluation)
                .where(MappingEvaluation.mapping_id.in_(mapping_ids))
                .order_by(MappingEvaluation.evaluated_at)
            ).scalars()
        )

    def _comments_for(self, mapping_ids: list[str]) -> list[MappingComment]:
        if not mapping_ids:
            return []
        return list(
            self._session.execute(
                select(MappingComment)
                .where(MappingComment.mapping_id.in_(mapping_ids))
                .order_by(MappingComment.commented_at)
            ).scalars()
        )

