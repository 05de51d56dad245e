"""API routers for Concept Mapper."""

from concept_mapper.api.alignments import router as alignments_router
from concept_mapper.api.concepts import router as concepts_router
from concept_mapper.api.evaluations import router as evaluations_router
from concept_mapper.api.transfers import router as transfers_router
from concept_mapper.api.users import router as users_router

__all__ = [
    "alignments_router",
    "concepts_router",
    "evaluations_router",
    "transfers_router",
    "users_router",
]
