"""Pytest configuration and fixtures for backend tests."""

from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import concept_mapper.models  # noqa: F401  (registers all tables)
from concept_mapper.core.database import Base, get_db, register_sqlite_functions
from concept_mapper.main import app
from concept_mapper.models import (
    Concept,
    ConceptAncestor,
    CustomConcept,
    DictionaryMappingEntry,
    GeneralConcept,
    User,
)
from concept_mapper.services.alignment_store import AlignmentStore

# Small vocabulary used across tests:
#   201826 Type 2 diabetes mellitus (S) > 443238 Diabetic renal disease (S)
#   201820 Diabetes mellitus (S) > 201826
#   44054006 Diabetes mellitus type 2 (SNOMED source, non-standard)
VOCABULARY = [
    {"concept_id": 201820, "concept_name": "Diabetes mellitus", "domain_id": "Condition",
     "vocabulary_id": "SNOMED", "concept_class_id": "Clinical Finding", "standard_concept": "S",
     "concept_code": "73211009"},
    {"concept_id": 201826, "concept_name": "Type 2 diabetes mellitus", "domain_id": "Condition",
     "vocabulary_id": "SNOMED", "concept_class_id": "Clinical Finding", "standard_concept": "S",
     "concept_code": "44054006"},
    {"concept_id": 443238, "concept_name": "Diabetic renal disease", "domain_id": "Condition",
     "vocabulary_id": "SNOMED", "concept_class_id": "Clinical Finding", "standard_concept": "S",
     "concept_code": "127013003"},
    {"concept_id": 45552385, "concept_name": "Diabetes mellitus type 2", "domain_id": "Condition",
     "vocabulary_id": "ICD10CM", "concept_class_id": "3-char nonbill code", "standard_concept": None,
     "concept_code": "E11"},
    {"concept_id": 1567956, "concept_name": "Diabetes mellitus", "domain_id": "Condition",
     "vocabulary_id": "ICD10CM", "concept_class_id": "3-char billing code", "standard_concept": "C",
     "concept_code": "E08-E13"},
    {"concept_id": 3004249, "concept_name": "Systolic blood pressure", "domain_id": "Measurement",
     "vocabulary_id": "LOINC", "concept_class_id": "Clinical Observation", "standard_concept": "S",
     "concept_code": "8480-6"},
    {"concept_id": 3012888, "concept_name": "Diastolic blood pressure", "domain_id": "Measurement",
     "vocabulary_id": "LOINC", "concept_class_id": "Clinical Observation", "standard_concept": "S",
     "concept_code": "8462-4"},
    {"concept_id": 3027018, "concept_name": "Heart rate", "domain_id": "Measurement",
     "vocabulary_id": "LOINC", "concept_class_id": "Clinical Observation", "standard_concept": "S",
     "concept_code": "8867-4"},
    {"concept_id": 3000963, "concept_name": "Hemoglobin", "domain_id": "Measurement",
     "vocabulary_id": "LOINC", "concept_class_id": "Lab Test", "standard_concept": "S",
     "concept_code": "718-7", "invalid_reason": "D"},
]

ANCESTORS = [
    (201820, 201826, 1),
    (201820, 443238, 2),
    (201826, 443238, 1),
]

# Source table of an ICU alignment
SOURCE_ROWS = [
    {"row_id": 1, "vocabulary_id": "LOCAL", "concept_code": "SBP", "concept_name": "Systolic BP", "frequency": 120},
    {"row_id": 2, "vocabulary_id": "LOCAL", "concept_code": "DBP", "concept_name": "Diastolic BP", "frequency": 118},
    {"row_id": 3, "vocabulary_id": "LOCAL", "concept_code": "HR", "concept_name": "Heart rate", "frequency": 300},
    {"row_id": 4, "vocabulary_id": "ICD10", "concept_code": "E11", "concept_name": "T2DM", "frequency": 12},
]


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine shared by every session of a test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    register_sqlite_functions(test_engine)
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Database session for service tests."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def vocabulary(db_session: Session) -> list[Concept]:
    """Load the test vocabulary and its hierarchy."""
    concepts = [Concept(**{"invalid_reason": None, **row}) for row in VOCABULARY]
    db_session.add_all(concepts)
    db_session.add_all(
        ConceptAncestor(
            ancestor_concept_id=ancestor,
            descendant_concept_id=descendant,
            min_levels_of_separation=levels,
            max_levels_of_separation=levels,
        )
        for ancestor, descendant, levels in ANCESTORS
    )
    db_session.commit()
    return concepts


@pytest.fixture
def dictionary(db_session: Session, vocabulary: list[Concept]) -> GeneralConcept:
    """General concept 'Diabetes' seeded with 201820 (+ descendants) and E11."""
    general = GeneralConcept(general_concept_id=1001, name="Diabetes", category="Conditions")
    db_session.add(general)
    db_session.flush()
    db_session.add_all([
        DictionaryMappingEntry(general_concept_id=1001, omop_concept_id=201820, include_descendants=True),
        DictionaryMappingEntry(general_concept_id=1001, omop_concept_id=45552385),
        CustomConcept(
            custom_concept_id=2000000001,
            general_concept_id=1001,
            vocabulary_id="INDICATE",
            concept_code="DM-UNSPEC",
            concept_name="Diabetes, unspecified type",
        ),
    ])
    db_session.commit()
    return general


def make_user(session: Session, login: str, first_name: str, last_name: str,
              created_at: datetime | None = None) -> User:
    user = User(login=login, first_name=first_name, last_name=last_name)
    if created_at is not None:
        user.created_at = created_at
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def alice(db_session: Session) -> User:
    return make_user(db_session, "alice", "Alice", "Martin", datetime(2024, 1, 1, tzinfo=UTC))


@pytest.fixture
def bob(db_session: Session) -> User:
    return make_user(db_session, "bob", "Bob", "Durand", datetime(2024, 1, 2, tzinfo=UTC))


@pytest.fixture
def carol(db_session: Session) -> User:
    return make_user(db_session, "carol", "Carol", "Nguyen", datetime(2024, 1, 3, tzinfo=UTC))


@pytest.fixture
def alignment_id(db_session: Session) -> str:
    """An alignment over SOURCE_ROWS."""
    alignment = AlignmentStore(db_session).create_alignment(
        "ICU vitals",
        rows=SOURCE_ROWS,
        description="Vital signs and diagnoses",
        original_filename="icu.csv",
    )
    db_session.commit()
    return alignment.id


@pytest.fixture
async def client(session_factory: sessionmaker[Session]) -> AsyncGenerator[AsyncClient, None]:
    """Async test client whose requests use the test database."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()
