"""SQLAlchemy models for the alignment mapping store.

Mapping, MappingImport, MappingEvaluation and MappingComment. Uniqueness of a
mapping target and of an evaluator's vote is enforced by the database through
derived key columns, so concurrent writers cannot both insert the same pair.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from concept_mapper.core.database import Base
from concept_mapper.schemas.base import ImportFormat, Vote


def _utcnow() -> datetime:
    return datetime.now(UTC)


def build_target_key(
    general_concept_id: int | None,
    omop_concept_id: int | None,
    custom_concept_id: int | None,
) -> str:
    """Encode the full target triple of a mapping as one comparable string."""
    parts = (general_concept_id, omop_concept_id, custom_concept_id)
    return "|".join("" if part is None else str(part) for part in parts)


def build_evaluator_key(user_id: str | None, imported_user_name: str | None) -> str:
    """Identify an evaluator by user id, or by display name when unresolved."""
    if user_id:
        return f"user:{user_id}"
    if imported_user_name:
        return f"name:{imported_user_name.strip().lower()}"
    raise ValueError("An evaluation needs a user id or an imported user name")


def _target_key_default(context) -> str:
    params = context.get_current_parameters()
    return build_target_key(
        params.get("target_general_concept_id"),
        params.get("target_omop_concept_id"),
        params.get("target_custom_concept_id"),
    )


def _evaluator_key_default(context) -> str:
    params = context.get_current_parameters()
    return build_evaluator_key(params.get("evaluator_user_id"), params.get("imported_user_name"))


class MappingImport(Base):
    """One import batch. Owns the mappings it created."""

    __tablename__ = "mapping_imports"

    alignment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("alignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    original_filename: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    import_format: Mapped[ImportFormat] = mapped_column(
        Enum(ImportFormat, name="import_format", create_constraint=True),
        nullable=False,
    )
    concepts_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    skipped_duplicates: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    skipped_no_match: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    unresolved_identities: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    imported_by_user_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    alignment = relationship("Alignment", back_populates="imports")
    mappings = relationship(
        "Mapping",
        back_populates="import_batch",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<MappingImport(id={self.id}, format={self.import_format}, accepted={self.concepts_count})>"


class Mapping(Base):
    """Association between one source row and one target concept."""

    __tablename__ = "concept_mappings"
    __table_args__ = (
        UniqueConstraint("alignment_id", "row_id", "target_key", name="uq_mapping_target"),
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
    target_general_concept_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    target_omop_concept_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        index=True,
    )
    target_custom_concept_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    target_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=_target_key_default,
    )
    mapped_by_user_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    imported_user_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    import_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("mapping_imports.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    mapped_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    alignment = relationship("Alignment", back_populates="mappings")
    import_batch = relationship("MappingImport", back_populates="mappings")
    mapped_by = relationship("User", foreign_keys=[mapped_by_user_id])
    evaluations = relationship(
        "MappingEvaluation",
        back_populates="mapping",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    comments = relationship(
        "MappingComment",
        back_populates="mapping",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_imported(self) -> bool:
        return self.import_id is not None

    def __repr__(self) -> str:
        return f"<Mapping(id={self.id}, row_id={self.row_id}, target={self.target_key})>"


class MappingEvaluation(Base):
    """One evaluator's vote on one mapping."""

    __tablename__ = "mapping_evaluations"
    __table_args__ = (
        UniqueConstraint("mapping_id", "evaluator_key", name="uq_one_vote_per_evaluator"),
    )

    mapping_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("concept_mappings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    evaluator_user_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    imported_user_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    evaluator_key: Mapped[str] = mapped_column(
        String(300),
        nullable=False,
        default=_evaluator_key_default,
    )
    vote: Mapped[Vote] = mapped_column(
        Enum(Vote, name="evaluation_vote", create_constraint=True),
        nullable=False,
    )
    evaluated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    mapping = relationship("Mapping", back_populates="evaluations")
    evaluator = relationship("User", foreign_keys=[evaluator_user_id])

    def __repr__(self) -> str:
        return f"<MappingEvaluation(mapping_id={self.mapping_id}, evaluator={self.evaluator_key}, vote={self.vote})>"


class MappingComment(Base):
    """Free-text note on a mapping."""

    __tablename__ = "mapping_comments"

    mapping_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("concept_mappings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    imported_user_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    comment: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    # Consensus at authoring time, kept for display only
    evaluation_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    commented_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    mapping = relationship("Mapping", back_populates="comments")
    author = relationship("User", foreign_keys=[user_id])

    def __repr__(self) -> str:
        return f"<MappingComment(mapping_id={self.mapping_id}, author={self.user_id or self.imported_user_name})>"
