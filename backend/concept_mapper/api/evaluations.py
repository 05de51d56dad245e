"""Review API endpoints: votes and comments on mappings."""

import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from concept_mapper.api.deps import DbSession, RequiredUserId, to_http_exception
from concept_mapper.core.errors import MappingEngineError
from concept_mapper.schemas.base import ConsensusStatus, Vote
from concept_mapper.services.alignment_store import AlignmentStore
from concept_mapper.services.evaluation import EvaluationAggregator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Evaluations"])


# ============================================================================
# Request/Response Models
# ============================================================================


class VoteRequest(BaseModel):
    vote: Vote


class EvaluationResponse(BaseModel):
    """One evaluator's vote."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    mapping_id: str
    evaluator_user_id: str | None = None
    imported_user_name: str | None = None
    vote: Vote
    evaluated_at: datetime


class EvaluationListResponse(BaseModel):
    """Votes on a mapping with the derived consensus."""

    mapping_id: str
    consensus: ConsensusStatus
    evaluations: list[EvaluationResponse] = Field(default_factory=list)


class CommentCreate(BaseModel):
    comment: str = Field(..., min_length=1, max_length=10000)


class CommentResponse(BaseModel):
    """A comment on a mapping."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    mapping_id: str
    user_id: str | None = None
    imported_user_name: str | None = None
    comment: str
    evaluation_status: str | None = None
    commented_at: datetime


# ============================================================================
# Votes
# ============================================================================


@router.put(
    "/mappings/{mapping_id}/evaluation",
    response_model=EvaluationResponse,
    summary="Vote on a mapping",
    description="Create or replace the caller's vote. Authors cannot review their own mappings.",
)
def put_evaluation(
    mapping_id: str,
    request: VoteRequest,
    db: DbSession,
    user_id: RequiredUserId,
) -> EvaluationResponse:
    try:
        mapping = AlignmentStore(db).get_mapping(mapping_id)
        if mapping.mapped_by_user_id == user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Authors cannot evaluate their own mappings",
            )
        evaluation = EvaluationAggregator(db).record_vote(mapping_id, request.vote, user_id=user_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    return EvaluationResponse.model_validate(evaluation)


@router.delete(
    "/mappings/{mapping_id}/evaluation",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Withdraw the caller's vote",
)
def delete_evaluation(mapping_id: str, db: DbSession, user_id: RequiredUserId) -> None:
    if not EvaluationAggregator(db).clear_vote(mapping_id, user_id=user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No vote by {user_id} on mapping {mapping_id}",
        )


@router.get(
    "/mappings/{mapping_id}/evaluations",
    response_model=EvaluationListResponse,
    summary="List votes on a mapping",
)
def list_evaluations(mapping_id: str, db: DbSession) -> EvaluationListResponse:
    aggregator = EvaluationAggregator(db)
    try:
        AlignmentStore(db).get_mapping(mapping_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e

    return EvaluationListResponse(
        mapping_id=mapping_id,
        consensus=aggregator.consensus(mapping_id),
        evaluations=[EvaluationResponse.model_validate(e) for e in aggregator.list_evaluations(mapping_id)],
    )


# ============================================================================
# Comments
# ============================================================================


@router.post(
    "/mappings/{mapping_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a mapping",
)
def create_comment(
    mapping_id: str,
    request: CommentCreate,
    db: DbSession,
    user_id: RequiredUserId,
) -> CommentResponse:
    try:
        comment = AlignmentStore(db).add_comment(mapping_id, request.comment, user_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return CommentResponse.model_validate(comment)


@router.get(
    "/mappings/{mapping_id}/comments",
    response_model=list[CommentResponse],
    summary="List comments on a mapping",
)
def list_comments(mapping_id: str, db: DbSession) -> list[CommentResponse]:
    store = AlignmentStore(db)
    try:
        store.get_mapping(mapping_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
    return [CommentResponse.model_validate(c) for c in store.list_comments(mapping_id)]


@router.delete(
    "/comments/{comment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete one of your comments",
)
def delete_comment(comment_id: str, db: DbSession, user_id: RequiredUserId) -> None:
    try:
        AlignmentStore(db).delete_comment(comment_id, user_id)
    except MappingEngineError as e:
        raise to_http_exception(e) from e
