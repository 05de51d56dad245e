"""SQLAlchemy models for the OMOP reference vocabulary.

These tables are read-only for the mapping engine. They are filled by
``concept_mapper.scripts.load_vocabulary`` from Athena exports.
"""

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from concept_mapper.core.database import Base


class Concept(Base):
    """OMOP Concept table.

    Note: Uses UUID id from Base for internal tracking, but concept_id
    is the OMOP-standard identifier used for lookups and mapping.
    """

    __tablename__ = "concepts"

    concept_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        unique=True,
        index=True,
    )
    concept_name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        index=True,
    )
    domain_id: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )
    vocabulary_id: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )
    concept_class_id: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    standard_concept: Mapped[str | None] = mapped_column(
        String(1),
        nullable=True,
    )
    concept_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="",
    )
    invalid_reason: Mapped[str | None] = mapped_column(
        String(1),
        nullable=True,
    )

    synonyms = relationship(
        "ConceptSynonym",
        back_populates="concept",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Concept(concept_id={self.concept_id}, name='{self.concept_name}', domain='{self.domain_id}')>"

    @property
    def is_standard(self) -> bool:
        """Check if this is a standard concept."""
        return bool(self.standard_concept == "S")

    @property
    def is_valid(self) -> bool:
        """Check if this concept has not been invalidated."""
        return not self.invalid_reason


class ConceptSynonym(Base):
    """OMOP Concept Synonym table."""

    __tablename__ = "concept_synonyms"

    concept_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("concepts.concept_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    concept_synonym_name: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
        index=True,
    )
    language_concept_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=4180186,  # English
    )

    concept = relationship("Concept", back_populates="synonyms")

    def __repr__(self) -> str:
        return f"<ConceptSynonym(concept_id={self.concept_id}, name='{self.concept_synonym_name}')>"


class ConceptAncestor(Base):
    """OMOP Concept Ancestor table (transitive hierarchy closure).

    Each row states that descendant_concept_id sits below ancestor_concept_id,
    at any depth. Athena ships the self rows (levels = 0) as well.
    """

    __tablename__ = "concept_ancestors"
    __table_args__ = (
        Index("ix_concept_ancestors_pair", "ancestor_concept_id", "descendant_concept_id"),
    )

    ancestor_concept_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    descendant_concept_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    min_levels_of_separation: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_levels_of_separation: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<ConceptAncestor({self.ancestor_concept_id} > {self.descendant_concept_id})>"
