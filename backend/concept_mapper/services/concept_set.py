"""Concept set resolution for dictionary (general) concepts.

Expands a general concept's seed vocabulary concepts through the ancestor
closure and overlays the custom concepts attached to it. Resolved sets are
curated and small, so nothing here is capped.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from concept_mapper.models import Concept, ConceptAncestor, CustomConcept, DictionaryMappingEntry
from concept_mapper.schemas.base import StandardConcept

logger = logging.getLogger(__name__)


@dataclass
class ResolvedConcept:
    """A vocabulary or custom concept belonging to a resolved concept set."""

    concept_id: int
    concept_name: str
    vocabulary_id: str
    concept_code: str
    domain_id: str | None
    concept_class_id: str | None
    standard_concept: str | None
    is_custom: bool = False

    @property
    def standard_category(self) -> StandardConcept:
        return StandardConcept.from_flag(self.standard_concept)


def _sort_key(concept: ResolvedConcept) -> tuple[int, str]:
    return (concept.standard_category.rank, concept.concept_name.lower())


class ConceptSetResolver:
    """Resolve general concepts into their full candidate concept sets.

    Usage:
        resolver = ConceptSetResolver(session)
        concepts = resolver.resolve(1042)
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def resolve(self, general_concept_id: int) -> list[ResolvedConcept]:
        """Resolve one general concept.

        Vocabulary concepts come first (Standard, Classification, then
        Non-standard, each alphabetical), followed by the custom concepts.
        A general concept with no entries and no custom concepts resolves to
        an empty list.
        """
        entries = self._session.execute(
            select(DictionaryMappingEntry).where(
                DictionaryMappingEntry.general_concept_id == general_concept_id
            )
        ).scalars().all()

        concept_ids = self._expand_entries(entries)
        vocabulary_concepts = self._load_concepts(concept_ids)
        vocabulary_concepts.sort(key=_sort_key)

        custom_concepts = self._load_custom_concepts(general_concept_id)

        logger.debug(
            f"Resolved general concept {general_concept_id}: "
            f"{len(entries)} seeds -> {len(vocabulary_concepts)} vocabulary concepts, "
            f"{len(custom_concepts)} custom concepts"
        )
        return vocabulary_concepts + custom_concepts

    def resolve_many(self, general_concept_ids: list[int]) -> dict[int, list[ResolvedConcept]]:
        """Resolve several general concepts, keyed by general concept id."""
        return {gc_id: self.resolve(gc_id) for gc_id in general_concept_ids}

    def _expand_entries(self, entries: list[DictionaryMappingEntry]) -> set[int]:
        """Union seeds with their descendants/ancestors where requested."""
        concept_ids: set[int] = {entry.omop_concept_id for entry in entries}

        descendant_seeds = [e.omop_concept_id for e in entries if e.include_descendants]
        if descendant_seeds:
            descendants = self._session.execute(
                select(ConceptAncestor.descendant_concept_id).where(
                    ConceptAncestor.ancestor_concept_id.in_(descendant_seeds)
                )
            ).scalars()
            concept_ids.update(descendants)

        ancestor_seeds = [e.omop_concept_id for e in entries if e.include_ancestors]
        if ancestor_seeds:
            ancestors = self._session.execute(
                select(ConceptAncestor.ancestor_concept_id).where(
                    ConceptAncestor.descendant_concept_id.in_(ancestor_seeds)
                )
            ).scalars()
            concept_ids.update(ancestors)

        return concept_ids

    def _load_concepts(self, concept_ids: set[int]) -> list[ResolvedConcept]:
        if not concept_ids:
            return []

        rows = self._session.execute(
            select(Concept).where(Concept.concept_id.in_(concept_ids))
        ).scalars().all()

        missing = concept_ids - {row.concept_id for row in rows}
        if missing:
            logger.debug(f"Concept ids absent from vocabulary: {sorted(missing)}")

        return [
            ResolvedConcept(
                concept_id=row.concept_id,
                concept_name=row.concept_name,
                vocabulary_id=row.vocabulary_id,
                concept_code=row.concept_code,
                domain_id=row.domain_id,
                concept_class_id=row.concept_class_id,
                standard_concept=row.standard_concept,
            )
            for row in rows
        ]

    def _load_custom_concepts(self, general_concept_id: int) -> list[ResolvedConcept]:
        rows = self._session.execute(
            select(CustomConcept)
            .where(CustomConcept.general_concept_id == general_concept_id)
            .order_by(CustomConcept.concept_name)
        ).scalars().all()

        return [
            ResolvedConcept(
                concept_id=row.custom_concept_id,
                concept_name=row.concept_name,
                vocabulary_id=row.vocabulary_id,
                concept_code=row.concept_code,
                domain_id=row.domain_id,
                concept_class_id=row.concept_class_id,
                standard_concept=None,
                is_custom=True,
            )
            for row in rows
        ]
