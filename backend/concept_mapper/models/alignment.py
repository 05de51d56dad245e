"""SQLAlchemy models for Alignment and SourceConceptRow."""

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from concept_mapper.core.database import Base


class Alignment(Base):
    """A mapping project built on one uploaded source table.

    The set of source rows is fixed when the alignment is created; only the
    mappings that reference those rows change afterwards.
    """

    __tablename__ = "alignments"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )
    original_filename: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        default="",
    )
    column_types: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    rows = relationship(
        "SourceConceptRow",
        back_populates="alignment",
        cascade="all, delete-orphan",
        order_by="SourceConceptRow.row_id",
    )
    mappings = relationship(
        "Mapping",
        back_populates="alignment",
        cascade="all, delete-orphan",
    )
    imports = relationship(
        "MappingImport",
        back_populates="alignment",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Alignment(id={self.id}, name='{self.name}')>"


class SourceConceptRow(Base):
    """One row of an alignment's uploaded table, addressed by row_id."""

    __tablename__ = "source_concept_rows"
    __table_args__ = (
        UniqueConstraint("alignment_id", "row_id", name="uq_source_row_position"),
    )

    alignment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("alignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    vocabulary_id: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    concept_code: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    concept_name: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )
    frequency: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    data: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    alignment = relationship("Alignment", back_populates="rows")

    def __repr__(self) -> str:
        return f"<SourceConceptRow(row_id={self.row_id}, code='{self.concept_code}', vocabulary='{self.vocabulary_id}')>"
