"""SQLAlchemy models for the curated concept dictionary.

General concepts are the entries source rows get mapped to. Each one points
at seed vocabulary concepts (optionally expanded through the hierarchy) and
at custom concepts that do not exist in the vocabulary.
"""

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.types import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from concept_mapper.core.database import Base


class GeneralConcept(Base):
    """Dictionary entry. Read-only for the mapping engine."""

    __tablename__ = "general_concepts"

    general_concept_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        unique=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    category: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )
    subcategory: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )
    comments: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    statistical_summary: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    mapping_entries = relationship(
        "DictionaryMappingEntry",
        back_populates="general_concept",
        cascade="all, delete-orphan",
    )
    custom_concepts = relationship(
        "CustomConcept",
        back_populates="general_concept",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<GeneralConcept(general_concept_id={self.general_concept_id}, name='{self.name}')>"


class DictionaryMappingEntry(Base):
    """Seed link from a general concept to one vocabulary concept."""

    __tablename__ = "general_concept_mappings"
    __table_args__ = (
        UniqueConstraint("general_concept_id", "omop_concept_id", name="uq_general_concept_mapping"),
    )

    general_concept_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("general_concepts.general_concept_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    omop_concept_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    include_descendants: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    include_ancestors: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    general_concept = relationship("GeneralConcept", back_populates="mapping_entries")

    def __repr__(self) -> str:
        return (
            f"<DictionaryMappingEntry({self.general_concept_id} -> {self.omop_concept_id}, "
            f"descendants={self.include_descendants}, ancestors={self.include_ancestors})>"
        )


class CustomConcept(Base):
    """Concept that is not part of the reference vocabulary."""

    __tablename__ = "custom_concepts"

    custom_concept_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        unique=True,
        index=True,
    )
    general_concept_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("general_concepts.general_concept_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vocabulary_id: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    concept_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    concept_name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    domain_id: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    concept_class_id: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    general_concept = relationship("GeneralConcept", back_populates="custom_concepts")

    def __repr__(self) -> str:
        return f"<CustomConcept(custom_concept_id={self.custom_concept_id}, name='{self.concept_name}')>"
