"""Tests for concept set resolution of dictionary concepts."""

from sqlalchemy.orm import Session

from concept_mapper.models import DictionaryMappingEntry, GeneralConcept
from concept_mapper.schemas.base import StandardConcept
from concept_mapper.services.concept_set import ConceptSetResolver


class TestConceptSetResolver:
    """Tests for ConceptSetResolver.resolve."""

    def test_expands_descendants_of_flagged_seed(self, db_session: Session, dictionary: GeneralConcept) -> None:
        concepts = ConceptSetResolver(db_session).resolve(1001)
        ids = {c.concept_id for c in concepts if not c.is_custom}

        assert ids == {201820, 201826, 443238, 45552385}

    def test_no_duplicates_when_seed_is_also_descendant(
        self, db_session: Session, dictionary: GeneralConcept
    ) -> None:
        db_session.add(DictionaryMappingEntry(general_concept_id=1001, omop_concept_id=201826))
        db_session.commit()

        concepts = ConceptSetResolver(db_session).resolve(1001)
        ids = [c.concept_id for c in concepts]

        assert len(ids) == len(set(ids))

    def test_standard_concepts_sorted_before_non_standard(
        self, db_session: Session, dictionary: GeneralConcept
    ) -> None:
        concepts = [c for c in ConceptSetResolver(db_session).resolve(1001) if not c.is_custom]

        categories = [c.standard_category for c in concepts]
        assert categories == sorted(categories, key=lambda s: s.rank)
        assert categories[-1] == StandardConcept.NON_STANDARD
        standard_names = [c.concept_name for c in concepts if c.standard_category == StandardConcept.STANDARD]
        assert standard_names == ["Diabetes mellitus", "Diabetic renal disease", "Type 2 diabetes mellitus"]

    def test_custom_concepts_appended_last(self, db_session: Session, dictionary: GeneralConcept) -> None:
        concepts = ConceptSetResolver(db_session).resolve(1001)

        assert concepts[-1].is_custom
        assert concepts[-1].concept_id == 2000000001
        assert concepts[-1].vocabulary_id == "INDICATE"
        assert not any(c.is_custom for c in concepts[:-1])

    def test_without_descendant_flag_only_seed_is_returned(
        self, db_session: Session, vocabulary: list
    ) -> None:
        db_session.add(GeneralConcept(general_concept_id=1002, name="Diabetes (exact)"))
        db_session.flush()
        db_session.add(DictionaryMappingEntry(general_concept_id=1002, omop_concept_id=201820))
        db_session.commit()

        concepts = ConceptSetResolver(db_session).resolve(1002)

        assert [c.concept_id for c in concepts] == [201820]

    def test_include_ancestors(self, db_session: Session, vocabulary: list) -> None:
        db_session.add(GeneralConcept(general_concept_id=1003, name="Diabetic nephropathy"))
        db_session.flush()
        db_session.add(
            DictionaryMappingEntry(general_concept_id=1003, omop_concept_id=443238, include_ancestors=True)
        )
        db_session.commit()

        ids = {c.concept_id for c in ConceptSetResolver(db_session).resolve(1003)}

        assert ids == {443238, 201826, 201820}

    def test_empty_general_concept_resolves_to_empty_list(self, db_session: Session, vocabulary: list) -> None:
        db_session.add(GeneralConcept(general_concept_id=1004, name="Nothing yet"))
        db_session.commit()

        assert ConceptSetResolver(db_session).resolve(1004) == []

    def test_unknown_general_concept_resolves_to_empty_list(self, db_session: Session, vocabulary: list) -> None:
        assert ConceptSetResolver(db_session).resolve(999999) == []

    def test_resolve_many(self, db_session: Session, dictionary: GeneralConcept) -> None:
        resolved = ConceptSetResolver(db_session).resolve_many([1001, 999999])

        assert set(resolved) == {1001, 999999}
        assert resolved[999999] == []
        assert len(resolved[1001]) == 5
