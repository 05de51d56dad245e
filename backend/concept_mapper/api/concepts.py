"""Vocabulary API endpoints.

- Resolve a dictionary (general) concept into its concept set
- Fuzzy search over the OMOP vocabulary
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select

from concept_mapper.api.deps import DbSession
from concept_mapper.models import GeneralConcept
from concept_mapper.schemas.base import StandardConcept, Validity
from concept_mapper.services.concept_set import ConceptSetResolver
from concept_mapper.services.fuzzy_search import ConceptFilters, FuzzyMatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/concepts", tags=["Concepts"])


# ============================================================================
# Response Models
# ============================================================================


class ResolvedConceptResponse(BaseModel):
    """One member of a resolved concept set."""

    concept_id: int
    concept_name: str
    vocabulary_id: str
    concept_code: str
    domain_id: str | None = None
    concept_class_id: str | None = None
    standard_concept: StandardConcept
    is_custom: bool = False


class ConceptSetResponse(BaseModel):
    """Resolved concept set of a general concept."""

    general_concept_id: int
    name: str
    concepts: list[ResolvedConceptResponse] = Field(default_factory=list)
    total: int = 0


class ConceptMatchResponse(BaseModel):
    """A vocabulary concept matching a search."""

    concept_id: int
    concept_name: str
    vocabulary_id: str
    concept_code: str
    domain_id: str
    concept_class_id: str
    standard_concept: StandardConcept
    validity: Validity
    similarity: float | None = Field(None, description="Jaro-Winkler score, null without a query")


class ConceptSearchResponse(BaseModel):
    """Search results."""

    query: str | None
    results: list[ConceptMatchResponse] = Field(default_factory=list)
    total: int = 0
    limited: bool = True


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/general/{general_concept_id}/resolved",
    response_model=ConceptSetResponse,
    summary="Resolve a general concept",
    description="Expand a dictionary concept into its vocabulary and custom concepts.",
)
def resolve_general_concept(general_concept_id: int, db: DbSession) -> ConceptSetResponse:
    general_concept = db.execute(
        select(GeneralConcept).where(GeneralConcept.general_concept_id == general_concept_id)
    ).scalar_one_or_none()
    if general_concept is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"General concept {general_concept_id} not found",
        )

    concepts = ConceptSetResolver(db).resolve(general_concept_id)
    return ConceptSetResponse(
        general_concept_id=general_concept_id,
        name=general_concept.name,
        concepts=[
            ResolvedConceptResponse(
                concept_id=c.concept_id,
                concept_name=c.concept_name,
                vocabulary_id=c.vocabulary_id,
                concept_code=c.concept_code,
                domain_id=c.domain_id,
                concept_class_id=c.concept_class_id,
                standard_concept=c.standard_category,
                is_custom=c.is_custom,
            )
            for c in concepts
        ],
        total=len(concepts),
    )


@router.get(
    "/search",
    response_model=ConceptSearchResponse,
    summary="Search the vocabulary",
    description=(
        "Fuzzy search over concept names with optional categorical filters. "
        "Results are capped unless limit=false and confirm_unlimited=true."
    ),
)
def search_concepts(
    db: DbSession,
    q: Annotated[str | None, Query(description="Free-text query")] = None,
    vocabulary_id: Annotated[list[str] | None, Query()] = None,
    domain_id: Annotated[list[str] | None, Query()] = None,
    concept_class_id: Annotated[list[str] | None, Query()] = None,
    standard_concept: Annotated[list[StandardConcept] | None, Query()] = None,
    validity: Annotated[list[Validity] | None, Query()] = None,
    limit: Annotated[bool, Query(description="Apply the result cap")] = True,
    confirm_unlimited: Annotated[
        bool, Query(description="Confirm an uncapped search")
    ] = False,
) -> ConceptSearchResponse:
    if not limit and not confirm_unlimited:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uncapped searches must be confirmed with confirm_unlimited=true",
        )

    filters = ConceptFilters(
        vocabulary_ids=vocabulary_id or [],
        domain_ids=domain_id or [],
        concept_class_ids=concept_class_id or [],
        standard_concepts=standard_concept or [],
        validity=validity or [],
    )
    matches = FuzzyMatcher(db).search(q, filters, limit=limit)

    return ConceptSearchResponse(
        query=q,
        results=[
            ConceptMatchResponse(
                concept_id=m.concept_id,
                concept_name=m.concept_name,
                vocabulary_id=m.vocabulary_id,
                concept_code=m.concept_code,
                domain_id=m.domain_id,
                concept_class_id=m.concept_class_id,
                standard_concept=StandardConcept.from_flag(m.standard_concept),
                validity=m.validity,
                similarity=m.similarity,
            )
            for m in matches
        ],
        total=len(matches),
        limited=limit,
    )
