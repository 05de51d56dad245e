"""Alignment API endpoints.

Provides endpoints for alignments and their mappings:
- Create alignments from a JSON row list or an uploaded source table
- List, rename and delete alignments
- Progress summary per consensus status
- Manual mapping creation and deletion
"""

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field

from concept_mapper.api.deps import DbSession, OptionalUserId, RequiredUserId, to_http_exception
from concept_mapper.core.errors import MappingEngineError
from concept_mapper.models import Alignment, Mapping
from concept_mapper.schemas.base import ConsensusStatus
from concept_mapper.services.alignment_store import AlignmentStore
from concept_mapper.services.evaluation import EvaluationAggregator, classify
from concept_mapper.services.import_formats import read_delimited

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Alignments"])


# ============================================================================
# Request/Response Models
# ============================================================================


class AlignmentCreate(BaseModel):
    """Request to create an alignment from source rows."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    original_filename: str = ""
    column_types: dict[str, str] = Field(default_factory=dict)
    rows: list[dict[str, Any]] = Field(default_factory=list, description="Source table rows")


class AlignmentUpdate(BaseModel):
    """Request to rename an alignment."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""


class AlignmentResponse(BaseModel):
    """Alignment metadata."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    original_filename: str
    column_types: dict[str, Any]
    created_at: datetime | None = None


class AlignmentSummaryResponse(BaseModel):
    """Progress of an alignment."""

    alignment_id: str
    source_rows: int
    mapped_rows: int
    mappings: int
    by_status: dict[ConsensusStatus, int]


class MappingCreate(BaseModel):
    """Request to map a source row to a target concept."""

    row_id: int
    target_general_concept_id: int | None = None
    target_omop_concept_id: int | None = None
    target_custom_concept_id: int | None = None


class MappingResponse(BaseModel):
    """A mapping and its current consensus."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    alignment_id: str
    row_id: int
    target_general_concept_id: int | None = None
    target_omop_concept_id: int | None = None
    target_custom_concept_id: int | None = None
    mapped_by_user_id: str | None = None
    imported_user_name: str | None = None
    import_id: str | None = None
    mapped_at: datetime
    consensus: ConsensusStatus = ConsensusStatus.NOT_EVALUATED


def _alignment_response(alignment: Alignment) -> AlignmentResponse:
    return AlignmentResponse.model_validate(alignment)


def _mapping_response(mapping: Mapping, consensus: ConsensusStatus) -> MappingResponse:
    response = MappingResponse.model_validate(mapping)
    response.consensus = consensus
    return response


# ============================================================================
# Alignments
# ============================================================================


@router.post(
    "/alignments",
    response_model=AlignmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an alignment",
)
def create_alignment(request: AlignmentCreate, db: DbSession, user_id: OptionalUserId) -> AlignmentResponse:
    try:
        alignment = AlignmentStore(db).create_alignment(
            name=request.name,
            rows=request.rows,
            description=request.description,
            original_filename=request.original_filename,
            column_types=request.column_types,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    logger.info(f"Alignment {alignment.id} created with {len(request.rows)} rows by {user_id}")
    return _alignment_response(alignment)


@router.post(
    "/alignments/upload",
    response_model=AlignmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an alignment from a source table file",
    description="Upload a delimited file (comma, semicolon, tab or pipe); each line becomes a source row.",
)
def upload_alignment(
    db: DbSession,
    file: Annotated[UploadFile, File(description="Source concepts table")],
    name: Annotated[str, Form(min_length=1, max_length=255)],
    description: Annotated[str, Form()] = "",
) -> AlignmentResponse:
    try:
        columns, rows = read_delimited(file.file.read())
        alignment = AlignmentStore(db).create_alignment(
            name=name,
            rows=rows,
            description=description,
            original_filename=file.filename or "",
            column_types={column: "text" for column in columns},
        )
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return _alignment_response(alignment)


@router.get("/alignments", response_model=list[AlignmentResponse], summary="List alignments")
def list_alignments(db: DbSession) -> list[AlignmentResponse]:
    return [_alignment_response(a) for a in AlignmentStore(db).list_alignments()]


@router.get("/alignments/{alignment_id}", response_model=AlignmentResponse, summary="Get an alignment")
def get_alignment(alignment_id: str, db: DbSession) -> AlignmentResponse:
    try:
        return _alignment_response(AlignmentStore(db).get_alignment(alignment_id))
    except MappingEngineError as e:
        raise to_http_exception(e) from e


@router.put("/alignments/{alignment_id}", response_model=AlignmentResponse, summary="Rename an alignment")
def update_alignment(alignment_id: str, request: AlignmentUpdate, db: DbSession) -> AlignmentResponse:
    try:
        alignment = AlignmentStore(db).update_alignment(alignment_id, request.name, request.description)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    return _alignment_response(alignment)


@router.delete(
    "/alignments/{alignment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an alignment with its rows, mappings and imports",
)
def delete_alignment(alignment_id: str, db: DbSession, user_id: RequiredUserId) -> None:
    try:
        AlignmentStore(db).delete_alignment(alignment_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    logger.info(f"Alignment {alignment_id} deleted by {user_id}")


@router.get(
    "/alignments/{alignment_id}/summary",
    response_model=AlignmentSummaryResponse,
    summary="Mapping progress of an alignment",
)
def get_alignment_summary(alignment_id: str, db: DbSession) -> AlignmentSummaryResponse:
    try:
        AlignmentStore(db).get_alignment(alignment_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e

    summary = EvaluationAggregator(db).summarize_alignment(alignment_id)
    return AlignmentSummaryResponse(
        alignment_id=summary.alignment_id,
        source_rows=summary.source_rows,
        mapped_rows=summary.mapped_rows,
        mappings=summary.mappings,
        by_status=summary.by_status,
    )


# ============================================================================
# Mappings
# ============================================================================


@router.get(
    "/alignments/{alignment_id}/mappings",
    response_model=list[MappingResponse],
    summary="List the mappings of an alignment",
)
def list_mappings(
    alignment_id: str,
    db: DbSession,
    row_id: Annotated[int | None, Query(description="Only mappings of this source row")] = None,
) -> list[MappingResponse]:
    store = AlignmentStore(db)
    try:
        store.get_alignment(alignment_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e

    mappings = store.list_mappings(alignment_id, row_id=row_id)
    counts = EvaluationAggregator(db).vote_counts([m.id for m in mappings])
    return [_mapping_response(m, classify(counts[m.id])) for m in mappings]


@router.post(
    "/alignments/{alignment_id}/mappings",
    response_model=MappingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Map a source row to a target concept",
)
def create_mapping(
    alignment_id: str,
    request: MappingCreate,
    db: DbSession,
    user_id: RequiredUserId,
) -> MappingResponse:
    try:
        mapping = AlignmentStore(db).add_mapping(
            alignment_id,
            request.row_id,
            general_concept_id=request.target_general_concept_id,
            omop_concept_id=request.target_omop_concept_id,
            custom_concept_id=request.target_custom_concept_id,
            user_id=user_id,
        )
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return _mapping_response(mapping, ConsensusStatus.NOT_EVALUATED)


@router.delete(
    "/mappings/{mapping_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a mapping with its evaluations and comments",
)
def delete_mapping(mapping_id: str, db: DbSession, user_id: RequiredUserId) -> None:
    try:
        AlignmentStore(db).delete_mapping(mapping_id, user_id=user_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
