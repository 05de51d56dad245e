"""SQLAlchemy ORM models for the concept mapping engine.

All models inherit from Base which provides:
- id: UUID primary key
- created_at: Timestamp

Models:
- Concept, ConceptSynonym, ConceptAncestor (read-only vocabulary)
- GeneralConcept, DictionaryMappingEntry, CustomConcept (read-only dictionary)
- Alignment, SourceConceptRow
- User
- Mapping, MappingImport, MappingEvaluation, MappingComment
"""

from concept_mapper.core.database import Base
from concept_mapper.models.alignment import Alignment, SourceConceptRow
from concept_mapper.models.dictionary import CustomConcept, DictionaryMappingEntry, GeneralConcept
from concept_mapper.models.mapping import (
    Mapping,
    MappingComment,
    MappingEvaluation,
    MappingImport,
    build_evaluator_key,
    build_target_key,
)
from concept_mapper.models.user import User
from concept_mapper.models.vocabulary import Concept, ConceptAncestor, ConceptSynonym

__all__ = [
    "Base",
    "Concept",
    "ConceptSynonym",
    "ConceptAncestor",
    "GeneralConcept",
    "DictionaryMappingEntry",
    "CustomConcept",
    "Alignment",
    "SourceConceptRow",
    "User",
    "Mapping",
    "MappingImport",
    "MappingEvaluation",
    "MappingComment",
    "build_target_key",
    "build_evaluator_key",
]
