"""Fuzzy concept search over the full OMOP vocabulary.

Similarity is computed inside the database so that searches stay tractable
against the multi-million row concept table:

1. Categorical filters (vocabulary, domain, class, standard, validity)
2. Jaro-Winkler similarity between the lower-cased query and concept names
3. Threshold, ranking and result cap, all in SQL

The Jaro-Winkler function is compiled per dialect: ``jarowinkler()`` from the
pg_similarity extension on PostgreSQL, ``jaro_winkler_similarity()`` on
DuckDB and on SQLite (registered on connect, see core.database).
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import Float, and_, case, func, literal, or_, select
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session
from sqlalchemy.sql.functions import GenericFunction

from concept_mapper.core.config import settings
from concept_mapper.models.vocabulary import Concept
from concept_mapper.schemas.base import StandardConcept, Validity

logger = logging.getLogger(__name__)


class JaroWinklerSimilarity(GenericFunction):
    """SQL Jaro-Winkler similarity in [0, 1]."""

    type = Float()
    name = "jaro_winkler_similarity"
    identifier = "jaro_winkler_similarity"
    inherit_cache = True


@compiles(JaroWinklerSimilarity, "postgresql")
def _compile_jaro_winkler_postgresql(element, compiler, **kw) -> str:
    return f"jarowinkler({compiler.process(element.clauses, **kw)})"


@dataclass
class ConceptFilters:
    """Optional categorical filters. Empty lists mean "no filter"."""

    vocabulary_ids: list[str] = field(default_factory=list)
    domain_ids: list[str] = field(default_factory=list)
    concept_class_ids: list[str] = field(default_factory=list)
    standard_concepts: list[StandardConcept] = field(default_factory=list)
    validity: list[Validity] = field(default_factory=list)


@dataclass
class ConceptMatch:
    """A vocabulary concept returned by a search."""

    concept_id: int
    concept_name: str
    vocabulary_id: str
    concept_code: str
    domain_id: str
    concept_class_id: str
    standard_concept: str | None
    validity: Validity
    similarity: float | None = None


def normalize_query(query: str | None) -> str:
    """Lower-case and trim a search query, the form compared to lower-cased names."""
    if not query:
        return ""
    return query.lower().strip()


def standard_rank_expression():
    """SQL expression ranking Standard < Classification < Non-standard."""
    return case(
        (Concept.standard_concept == "S", 0),
        (Concept.standard_concept == "C", 1),
        else_=2,
    )


def _standard_condition(category: StandardConcept):
    if category == StandardConcept.STANDARD:
        return Concept.standard_concept == "S"
    if category == StandardConcept.CLASSIFICATION:
        return Concept.standard_concept == "C"
    return or_(
        Concept.standard_concept.is_(None),
        Concept.standard_concept.not_in(["S", "C"]),
    )


def _validity_condition(validity: Validity):
    if validity == Validity.VALID:
        return or_(Concept.invalid_reason.is_(None), Concept.invalid_reason == "")
    return and_(Concept.invalid_reason.is_not(None), Concept.invalid_reason != "")


class FuzzyMatcher:
    """SQL-side fuzzy search over the concept table.

    Usage:
        matcher = FuzzyMatcher(session)
        matches = matcher.search("diabtes mellitus", ConceptFilters(domain_ids=["Condition"]))
    """

    def __init__(
        self,
        session: Session,
        threshold: float | None = None,
        result_cap: int | None = None,
    ) -> None:
        self._session = session
        self.threshold = settings.fuzzy_similarity_threshold if threshold is None else threshold
        self.result_cap = settings.search_result_cap if result_cap is None else result_cap

    def search(
        self,
        query: str | None = None,
        filters: ConceptFilters | None = None,
        limit: bool = True,
    ) -> list[ConceptMatch]:
        """Search the vocabulary.

        Args:
            query: Free text. Without it, the filtered vocabulary is browsed.
            filters: Categorical filters, applied before the cap.
            limit: Apply the result cap. Turning it off returns every
                matching row and must be confirmed by the caller.

        Returns:
            Matches ordered by similarity (when querying), standard rank,
            then name.
        """
        filters = filters or ConceptFilters()
        normalized = normalize_query(query)
        standard_rank = standard_rank_expression()

        if normalized:
            score = JaroWinklerSimilarity(func.lower(Concept.concept_name), literal(normalized))
            stmt = (
                select(Concept, score.label("similarity"))
                .where(score > self.threshold)
                .order_by(score.desc(), standard_rank, Concept.concept_name)
            )
        else:
            stmt = select(Concept, literal(None, type_=Float).label("similarity")).order_by(
                standard_rank, Concept.concept_name
            )

        for condition in self._filter_conditions(filters):
            stmt = stmt.where(condition)

        if limit:
            stmt = stmt.limit(self.result_cap)

        rows = self._session.execute(stmt).all()
        logger.debug(
            f"Fuzzy search query={normalized!r} limit={limit} returned {len(rows)} concepts"
        )
        return [self._to_match(concept, similarity) for concept, similarity in rows]

    def _filter_conditions(self, filters: ConceptFilters) -> list:
        conditions = []
        if filters.vocabulary_ids:
            conditions.append(Concept.vocabulary_id.in_(filters.vocabulary_ids))
        if filters.domain_ids:
            conditions.append(Concept.domain_id.in_(filters.domain_ids))
        if filters.concept_class_ids:
            conditions.append(Concept.concept_class_id.in_(filters.concept_class_ids))
        if filters.standard_concepts:
            conditions.append(or_(*(_standard_condition(s) for s in filters.standard_concepts)))
        if filters.validity:
            conditions.append(or_(*(_validity_condition(v) for v in filters.validity)))
        return conditions

    @staticmethod
    def _to_match(concept: Concept, similarity: float | None) -> ConceptMatch:
        return ConceptMatch(
            concept_id=concept.concept_id,
            concept_name=concept.concept_name,
            vocabulary_id=concept.vocabulary_id,
            concept_code=concept.concept_code,
            domain_id=concept.domain_id,
            concept_class_id=concept.concept_class_id,
            standard_concept=concept.standard_concept,
            validity=Validity.VALID if concept.is_valid else Validity.INVALID,
            similarity=None if similarity is None else float(similarity),
        )
