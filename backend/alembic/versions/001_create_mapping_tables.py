"""Create vocabulary, dictionary, alignment and mapping tables.

Revision ID: 001
Revises:
Create Date: 2026-10-16

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Reference vocabulary (read-only for the engine)
    op.create_table(
        "concepts",
        *_base_columns(),
        sa.Column("concept_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("concept_name", sa.String(500), nullable=False),
        sa.Column("domain_id", sa.String(50), nullable=False),
        sa.Column("vocabulary_id", sa.String(50), nullable=False),
        sa.Column("concept_class_id", sa.String(50), nullable=False),
        sa.Column("standard_concept", sa.String(1), nullable=True),
        sa.Column("concept_code", sa.String(50), nullable=False, server_default=""),
        sa.Column("invalid_reason", sa.String(1), nullable=True),
    )
    op.create_index("ix_concepts_concept_id", "concepts", ["concept_id"])
    op.create_index("ix_concepts_concept_name", "concepts", ["concept_name"])
    op.create_index("ix_concepts_domain_id", "concepts", ["domain_id"])
    op.create_index("ix_concepts_vocabulary_id", "concepts", ["vocabulary_id"])

    op.create_table(
        "concept_synonyms",
        *_base_columns(),
        sa.Column(
            "concept_id",
            sa.Integer(),
            sa.ForeignKey("concepts.concept_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("concept_synonym_name", sa.String(1000), nullable=False),
        sa.Column("language_concept_id", sa.Integer(), nullable=False, server_default="4180186"),
    )
    op.create_index("ix_concept_synonyms_concept_id", "concept_synonyms", ["concept_id"])
    op.create_index("ix_concept_synonyms_concept_synonym_name", "concept_synonyms", ["concept_synonym_name"])

    op.create_table(
        "concept_ancestors",
        *_base_columns(),
        sa.Column("ancestor_concept_id", sa.Integer(), nullable=False),
        sa.Column("descendant_concept_id", sa.Integer(), nullable=False),
        sa.Column("min_levels_of_separation", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_levels_of_separation", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_concept_ancestors_ancestor_concept_id", "concept_ancestors", ["ancestor_concept_id"])
    op.create_index("ix_concept_ancestors_descendant_concept_id", "concept_ancestors", ["descendant_concept_id"])
    op.create_index(
        "ix_concept_ancestors_pair", "concept_ancestors", ["ancestor_concept_id", "descendant_concept_id"]
    )

    # Concept dictionary
    op.create_table(
        "general_concepts",
        *_base_columns(),
        sa.Column("general_concept_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("category", sa.String(200), nullable=True),
        sa.Column("subcategory", sa.String(200), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("statistical_summary", sa.JSON(), nullable=True),
    )
    op.create_index("ix_general_concepts_general_concept_id", "general_concepts", ["general_concept_id"])

    op.create_table(
        "general_concept_mappings",
        *_base_columns(),
        sa.Column(
            "general_concept_id",
            sa.Integer(),
            sa.ForeignKey("general_concepts.general_concept_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("omop_concept_id", sa.Integer(), nullable=False),
        sa.Column("include_descendants", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("include_ancestors", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("general_concept_id", "omop_concept_id", name="uq_general_concept_mapping"),
    )
    op.create_index(
        "ix_general_concept_mappings_general_concept_id", "general_concept_mappings", ["general_concept_id"]
    )
    op.create_index(
        "ix_general_concept_mappings_omop_concept_id", "general_concept_mappings", ["omop_concept_id"]
    )

    op.create_table(
        "custom_concepts",
        *_base_columns(),
        sa.Column("custom_concept_id", sa.Integer(), nullable=False, unique=True),
        sa.Column(
            "general_concept_id",
            sa.Integer(),
            sa.ForeignKey("general_concepts.general_concept_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("vocabulary_id", sa.String(50), nullable=False),
        sa.Column("concept_code", sa.String(50), nullable=False),
        sa.Column("concept_name", sa.String(500), nullable=False),
        sa.Column("domain_id", sa.String(50), nullable=True),
        sa.Column("concept_class_id", sa.String(50), nullable=True),
    )
    op.create_index("ix_custom_concepts_custom_concept_id", "custom_concepts", ["custom_concept_id"])
    op.create_index("ix_custom_concepts_general_concept_id", "custom_concepts", ["general_concept_id"])

    # Users
    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("login", sa.String(100), nullable=False, unique=True),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
    )
    op.create_index("ix_users_first_name", "users", ["first_name"])
    op.create_index("ix_users_last_name", "users", ["last_name"])

    # Alignments and their source rows
    op.create_table(
        "alignments",
        *_base_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("original_filename", sa.String(500), nullable=False, server_default=""),
        sa.Column("column_types", sa.JSON(), nullable=False),
    )

    op.create_table(
        "source_concept_rows",
        *_base_columns(),
        sa.Column(
            "alignment_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("alignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("row_id", sa.Integer(), nullable=False),
        sa.Column("vocabulary_id", sa.String(50), nullable=True),
        sa.Column("concept_code", sa.String(255), nullable=True),
        sa.Column("concept_name", sa.String(1000), nullable=True),
        sa.Column("frequency", sa.Integer(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.UniqueConstraint("alignment_id", "row_id", name="uq_source_row_position"),
    )
    op.create_index("ix_source_concept_rows_alignment_id", "source_concept_rows", ["alignment_id"])
    op.create_index("ix_source_concept_rows_concept_code", "source_concept_rows", ["concept_code"])

    # Import batches
    op.create_table(
        "mapping_imports",
        *_base_columns(),
        sa.Column(
            "alignment_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("alignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("original_filename", sa.String(500), nullable=False),
        sa.Column(
            "import_format",
            sa.Enum("CSV", "STCM", "USAGI", "ARCHIVE", name="import_format"),
            nullable=False,
        ),
        sa.Column("concepts_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_duplicates", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_no_match", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unresolved_identities", sa.JSON(), nullable=False),
        sa.Column(
            "imported_by_user_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("imported_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_mapping_imports_alignment_id", "mapping_imports", ["alignment_id"])

    # Mappings
    op.create_table(
        "concept_mappings",
        *_base_columns(),
        sa.Column(
            "alignment_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("alignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("row_id", sa.Integer(), nullable=False),
        sa.Column("target_general_concept_id", sa.Integer(), nullable=True),
        sa.Column("target_omop_concept_id", sa.Integer(), nullable=True),
        sa.Column("target_custom_concept_id", sa.Integer(), nullable=True),
        sa.Column("target_key", sa.String(100), nullable=False),
        sa.Column(
            "mapped_by_user_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("imported_user_name", sa.String(255), nullable=True),
        sa.Column(
            "import_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("mapping_imports.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("mapped_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("alignment_id", "row_id", "target_key", name="uq_mapping_target"),
    )
    op.create_index("ix_concept_mappings_alignment_id", "concept_mappings", ["alignment_id"])
    op.create_index("ix_concept_mappings_target_omop_concept_id", "concept_mappings", ["target_omop_concept_id"])
    op.create_index("ix_concept_mappings_import_id", "concept_mappings", ["import_id"])

    op.create_table(
        "mapping_evaluations",
        *_base_columns(),
        sa.Column(
            "mapping_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("concept_mappings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "evaluator_user_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("imported_user_name", sa.String(255), nullable=True),
        sa.Column("evaluator_key", sa.String(300), nullable=False),
        sa.Column(
            "vote",
            sa.Enum("APPROVE", "REJECT", "UNCERTAIN", name="evaluation_vote"),
            nullable=False,
        ),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("mapping_id", "evaluator_key", name="uq_one_vote_per_evaluator"),
    )
    op.create_index("ix_mapping_evaluations_mapping_id", "mapping_evaluations", ["mapping_id"])

    op.create_table(
        "mapping_comments",
        *_base_columns(),
        sa.Column(
            "mapping_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("concept_mappings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("imported_user_name", sa.String(255), nullable=True),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("evaluation_status", sa.String(20), nullable=True),
        sa.Column("commented_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_mapping_comments_mapping_id", "mapping_comments", ["mapping_id"])


def downgrade() -> None:
    op.drop_table("mapping_comments")
    op.drop_table("mapping_evaluations")
    op.drop_table("concept_mappings")
    op.drop_table("mapping_imports")
    op.drop_table("source_concept_rows")
    op.drop_table("alignments")
    op.drop_table("users")
    op.drop_table("custom_concepts")
    op.drop_table("general_concept_mappings")
    op.drop_table("general_concepts")
    op.drop_table("concept_ancestors")
    op.drop_table("concept_synonyms")
    op.drop_table("concepts")
    sa.Enum(name="evaluation_vote").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="import_format").drop(op.get_bind(), checkfirst=True)
