"""Import and export API endpoints.

- Upload mapping files (generic CSV, SOURCE_TO_CONCEPT_MAP, Usagi, archive)
- List and undo import batches
- Download filtered exports
"""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, File, Form, HTTPException, Query, Response, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field

from concept_mapper.api.deps import DbSession, OptionalUserId, RequiredUserId, to_http_exception
from concept_mapper.core.errors import MappingEngineError
from concept_mapper.schemas.base import ApprovedPolicy, ConsensusStatus, ExportFormat, ImportFormat
from concept_mapper.services.alignment_store import AlignmentStore
from concept_mapper.services.evaluation import ExportFilter
from concept_mapper.services.export import MappingExporter
from concept_mapper.services.import_formats import ColumnMapping
from concept_mapper.services.import_merge import ImportMergeEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Imports & Exports"])


# ============================================================================
# Response Models
# ============================================================================


class ImportSummaryResponse(BaseModel):
    """Outcome of an import batch."""

    import_id: str
    import_format: ImportFormat
    accepted: int
    skipped_duplicates: int
    skipped_no_match: int
    ignored_rows: int
    evaluations_imported: int
    comments_imported: int
    unresolved_identities: list[str] = Field(default_factory=list)


class ImportRecordResponse(BaseModel):
    """A recorded import batch."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    alignment_id: str
    original_filename: str
    import_format: ImportFormat
    concepts_count: int
    skipped_duplicates: int
    skipped_no_match: int
    unresolved_identities: list[str] = Field(default_factory=list)
    imported_by_user_id: str | None = None
    imported_at: datetime


class ImportDeletedResponse(BaseModel):
    import_id: str
    mappings_removed: int


# ============================================================================
# Imports
# ============================================================================


@router.post(
    "/alignments/{alignment_id}/imports",
    response_model=ImportSummaryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import mappings into an alignment",
    description=(
        "Upload a mapping file. Generic CSV imports need the source_code_column and "
        "target_concept_id_column form fields. The batch is all or nothing."
    ),
)
def import_mappings(
    alignment_id: str,
    db: DbSession,
    user_id: OptionalUserId,
    file: Annotated[UploadFile, File(description="Mapping file")],
    import_format: Annotated[ImportFormat, Form()],
    source_code_column: Annotated[str | None, Form()] = None,
    target_concept_id_column: Annotated[str | None, Form()] = None,
    source_vocabulary_id_column: Annotated[str | None, Form()] = None,
) -> ImportSummaryResponse:
    column_mapping = None
    if import_format == ImportFormat.CSV:
        if not source_code_column or not target_concept_id_column:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Generic CSV imports need source_code_column and target_concept_id_column",
            )
        column_mapping = ColumnMapping(
            source_code=source_code_column,
            target_concept_id=target_concept_id_column,
            source_vocabulary_id=source_vocabulary_id_column or None,
        )

    try:
        summary = ImportMergeEngine(db).merge(
            alignment_id,
            file.filename or "upload",
            file.file.read(),
            import_format,
            column_mapping=column_mapping,
            user_id=user_id,
        )
    except MappingEngineError as e:
        raise to_http_exception(e) from e

    return ImportSummaryResponse(
        import_id=summary.import_id,
        import_format=summary.import_format,
        accepted=summary.accepted,
        skipped_duplicates=summary.skipped_duplicates,
        skipped_no_match=summary.skipped_no_match,
        ignored_rows=summary.ignored_rows,
        evaluations_imported=summary.evaluations_imported,
        comments_imported=summary.comments_imported,
        unresolved_identities=summary.unresolved_identities,
    )


@router.get(
    "/alignments/{alignment_id}/imports",
    response_model=list[ImportRecordResponse],
    summary="List import batches of an alignment",
)
def list_imports(alignment_id: str, db: DbSession) -> list[ImportRecordResponse]:
    store = AlignmentStore(db)
    try:
        store.get_alignment(alignment_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    return [ImportRecordResponse.model_validate(batch) for batch in store.list_imports(alignment_id)]


@router.delete(
    "/imports/{import_id}",
    response_model=ImportDeletedResponse,
    summary="Undo an import batch",
    description="Deletes the batch and every mapping it created, with their evaluations and comments.",
)
def delete_import(import_id: str, db: DbSession, user_id: RequiredUserId) -> ImportDeletedResponse:
    try:
        removed = AlignmentStore(db).delete_import(import_id, user_id=user_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    return ImportDeletedResponse(import_id=import_id, mappings_removed=removed)


# ============================================================================
# Exports
# ============================================================================


@router.get(
    "/alignments/{alignment_id}/export",
    summary="Export the mappings of an alignment",
    description=(
        "Download mappings as SOURCE_TO_CONCEPT_MAP CSV, Usagi CSV or portable archive, "
        "filtered by consensus status."
    ),
    response_class=Response,
)
def export_alignment(
    alignment_id: str,
    db: DbSession,
    user_id: OptionalUserId,
    export_format: Annotated[ExportFormat, Query(alias="format")] = ExportFormat.STCM,
    consensus: Annotated[
        list[ConsensusStatus] | None,
        Query(description="Consensus categories to include (default: all)"),
    ] = None,
    approved_policy: Annotated[ApprovedPolicy, Query()] = ApprovedPolicy.ALL,
) -> Response:
    export_filter = ExportFilter(
        statuses=set(consensus) if consensus else set(ConsensusStatus),
        approved_policy=approved_policy,
    )
    try:
        export = MappingExporter(db).export(alignment_id, export_format, export_filter, user_id=user_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e

    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{export.filename}"',
            "X-Record-Count": str(export.record_count),
        },
    )
