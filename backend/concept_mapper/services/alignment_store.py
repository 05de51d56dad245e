"""Alignment mapping store: alignments, source rows, mappings, imports, comments.

CRUD on the authoritative mapping tables. Callers own the transaction; the
store only flushes so that constraint violations surface where they happen.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from concept_mapper.core.audit import AuditAction, log_audit
from concept_mapper.core.errors import DuplicateMappingError, NotFoundError, OwnershipError
from concept_mapper.models import (
    Alignment,
    Mapping,
    MappingComment,
    MappingImport,
    SourceConceptRow,
    build_target_key,
)
from concept_mapper.services.evaluation import EvaluationAggregator

logger = logging.getLogger(__name__)

# Column names recognised in uploaded source tables
SOURCE_COLUMN_ALIASES = {
    "vocabulary_id": ("vocabulary_id", "source_vocabulary_id", "vocabulary"),
    "concept_code": ("concept_code", "source_code", "code"),
    "concept_name": ("concept_name", "source_name", "name", "description"),
    "frequency": ("frequency", "count", "n"),
}

DedupKey = tuple[int, str, int | None]


def dedup_key(
    row_id: int,
    general_concept_id: int | None = None,
    omop_concept_id: int | None = None,
    custom_concept_id: int | None = None,
) -> DedupKey:
    """Key used to detect duplicate mappings during imports.

    Every import format resolves rows to a destination row_id first, so the
    key is always (row_id, target kind, target id) with the most specific
    target: OMOP concept, then custom concept, then general concept.
    """
    if omop_concept_id is not None:
        return (row_id, "omop", omop_concept_id)
    if custom_concept_id is not None:
        return (row_id, "custom", custom_concept_id)
    return (row_id, "general", general_concept_id)


def _pick(row: dict[str, Any], field_name: str) -> Any:
    lowered = {str(key).lower(): value for key, value in row.items()}
    for alias in SOURCE_COLUMN_ALIASES[field_name]:
        value = lowered.get(alias)
        if value not in (None, ""):
            return value
    return None


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class RowIndex:
    """Lookup tables over an alignment's source rows."""

    by_vocabulary_and_code: dict[tuple[str, str], int]
    by_code: dict[str, int]
    row_ids: set[int]

    def match(
        self,
        vocabulary_id: str | None,
        concept_code: str | None,
        original_row_id: int | None = None,
    ) -> int | None:
        """Resolve a destination row_id.

        Tries (vocabulary_id, concept_code), then concept_code alone, then the
        original row position when one is given and still exists.
        """
        code = (concept_code or "").strip()
        vocabulary = (vocabulary_id or "").strip()
        if code:
            if vocabulary:
                row_id = self.by_vocabulary_and_code.get((vocabulary, code))
                if row_id is not None:
                    return row_id
            row_id = self.by_code.get(code)
            if row_id is not None:
                return row_id
        if original_row_id is not None and original_row_id in self.row_ids:
            return original_row_id
        return None


class AlignmentStore:
    """Repository for alignments and their mappings.

    Usage:
        store = AlignmentStore(session)
        alignment = store.create_alignment("ICU labs", rows=[...])
        store.add_mapping(alignment.id, row_id=1, omop_concept_id=3004249, user_id=user.id)
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Alignments
    # ------------------------------------------------------------------

    def create_alignment(
        self,
        name: str,
        rows: Iterable[dict[str, Any]],
        description: str = "",
        original_filename: str = "",
        column_types: dict[str, str] | None = None,
    ) -> Alignment:
        """Create an alignment together with its source rows.

        Rows keep their "row_id" value when present, otherwise they are
        numbered by position starting at 1.
        """
        alignment = Alignment(
            name=name,
            description=description,
            original_filename=original_filename,
            column_types=column_types or {},
        )
        self._session.add(alignment)
        self._session.flush()

        seen: set[int] = set()
        for position, row in enumerate(rows, start=1):
            row_id = _to_int(row.get("row_id")) or position
            if row_id in seen:
                raise ValueError(f"Duplicate row_id {row_id} in source table")
            seen.add(row_id)
            self._session.add(
                SourceConceptRow(
                    alignment_id=alignment.id,
                    row_id=row_id,
                    vocabulary_id=_str_or_none(_pick(row, "vocabulary_id")),
                    concept_code=_str_or_none(_pick(row, "concept_code")),
                    concept_name=_str_or_none(_pick(row, "concept_name")),
                    frequency=_to_int(_pick(row, "frequency")),
                    data={str(k): v for k, v in row.items()},
                )
            )
        self._session.flush()

        log_audit(
            AuditAction.CREATE,
            resource_type="alignment",
            resource_id=alignment.id,
            details={"rows": len(seen)},
        )
        return alignment

    def get_alignment(self, alignment_id: str) -> Alignment:
        alignment = self._session.get(Alignment, alignment_id)
        if alignment is None:
            raise NotFoundError(f"Alignment {alignment_id} not found")
        return alignment

    def list_alignments(self) -> list[Alignment]:
        return list(
            self._session.execute(select(Alignment).order_by(Alignment.created_at.desc())).scalars()
        )

    def update_alignment(self, alignment_id: str, name: str, description: str = "") -> Alignment:
        alignment = self.get_alignment(alignment_id)
        alignment.name = name
        alignment.description = description
        self._session.flush()
        return alignment

    def delete_alignment(self, alignment_id: str) -> None:
        alignment = self.get_alignment(alignment_id)
        self._session.delete(alignment)
        self._session.flush()
        log_audit(AuditAction.DELETE, resource_type="alignment", resource_id=alignment_id)

    def lock_alignment(self, alignment_id: str) -> Alignment:
        """Lock the alignment row for the rest of the transaction.

        Writers into the same alignment serialize on this lock (FOR UPDATE
        is a no-op on SQLite, which serializes writers anyway).
        """
        alignment = self._session.execute(
            select(Alignment).where(Alignment.id == alignment_id).with_for_update()
        ).scalar_one_or_none()
        if alignment is None:
            raise NotFoundError(f"Alignment {alignment_id} not found")
        return alignment

    # ------------------------------------------------------------------
    # Source rows
    # ------------------------------------------------------------------

    def list_rows(self, alignment_id: str) -> list[SourceConceptRow]:
        return list(
            self._session.execute(
                select(SourceConceptRow)
                .where(SourceConceptRow.alignment_id == alignment_id)
                .order_by(SourceConceptRow.row_id)
            ).scalars()
        )

    def build_row_index(self, alignment_id: str) -> RowIndex:
        """Index source rows by (vocabulary_id, concept_code) and by code.

        The first row wins when several rows share a key.
        """
        by_pair: dict[tuple[str, str], int] = {}
        by_code: dict[str, int] = {}
        row_ids: set[int] = set()
        for row in self.list_rows(alignment_id):
            row_ids.add(row.row_id)
            code = (row.concept_code or "").strip()
            if not code:
                continue
            vocabulary = (row.vocabulary_id or "").strip()
            if vocabulary:
                by_pair.setdefault((vocabulary, code), row.row_id)
            by_code.setdefault(code, row.row_id)
        return RowIndex(by_vocabulary_and_code=by_pair, by_code=by_code, row_ids=row_ids)

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def add_mapping(
        self,
        alignment_id: str,
        row_id: int,
        general_concept_id: int | None = None,
        omop_concept_id: int | None = None,
        custom_concept_id: int | None = None,
        user_id: str | None = None,
    ) -> Mapping:
        """Create a manual mapping.

        Raises:
            NotFoundError: the alignment or the row does not exist.
            DuplicateMappingError: the same (row, target) is already mapped.
            ValueError: no target given.
        """
        if general_concept_id is None and omop_concept_id is None and custom_concept_id is None:
            raise ValueError("A mapping needs at least one target concept")

        self.get_alignment(alignment_id)
        row_exists = self._session.execute(
            select(SourceConceptRow.id).where(
                SourceConceptRow.alignment_id == alignment_id,
                SourceConceptRow.row_id == row_id,
            )
        ).first()
        if row_exists is None:
            raise NotFoundError(f"Row {row_id} not found in alignment {alignment_id}")

        target_key = build_target_key(general_concept_id, omop_concept_id, custom_concept_id)
        duplicate = self._session.execute(
            select(Mapping.id).where(
                Mapping.alignment_id == alignment_id,
                Mapping.row_id == row_id,
                Mapping.target_key == target_key,
            )
        ).first()
        if duplicate is not None:
            raise DuplicateMappingError(f"Row {row_id} is already mapped to {target_key}")

        mapping = Mapping(
            alignment_id=alignment_id,
            row_id=row_id,
            target_general_concept_id=general_concept_id,
            target_omop_concept_id=omop_concept_id,
            target_custom_concept_id=custom_concept_id,
            target_key=target_key,
            mapped_by_user_id=user_id,
        )
        self._session.add(mapping)
        try:
            self._session.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent writer; the caller rolls back
            raise DuplicateMappingError(f"Row {row_id} is already mapped to {target_key}") from e

        log_audit(
            AuditAction.CREATE,
            resource_type="mapping",
            resource_id=mapping.id,
            alignment_id=alignment_id,
            user_id=user_id,
        )
        return mapping

    def get_mapping(self, mapping_id: str) -> Mapping:
        mapping = self._session.get(Mapping, mapping_id)
        if mapping is None:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        return mapping

    def list_mappings(self, alignment_id: str, row_id: int | None = None) -> list[Mapping]:
        stmt = select(Mapping).where(Mapping.alignment_id == alignment_id)
        if row_id is not None:
            stmt = stmt.where(Mapping.row_id == row_id)
        return list(self._session.execute(stmt.order_by(Mapping.row_id, Mapping.mapped_at)).scalars())

    def count_mappings(self, alignment_id: str) -> int:
        return self._session.execute(
            select(func.count()).select_from(Mapping).where(Mapping.alignment_id == alignment_id)
        ).scalar_one()

    def delete_mapping(self, mapping_id: str, user_id: str | None = None) -> None:
        mapping = self.get_mapping(mapping_id)
        alignment_id = mapping.alignment_id
        self._session.delete(mapping)
        self._session.flush()
        log_audit(
            AuditAction.DELETE,
            resource_type="mapping",
            resource_id=mapping_id,
            alignment_id=alignment_id,
            user_id=user_id,
        )

    def existing_dedup_keys(self, alignment_id: str) -> set[DedupKey]:
        rows = self._session.execute(
            select(
                Mapping.row_id,
                Mapping.target_general_concept_id,
                Mapping.target_omop_concept_id,
                Mapping.target_custom_concept_id,
            ).where(Mapping.alignment_id == alignment_id)
        ).all()
        return {dedup_key(*row) for row in rows}

    # ------------------------------------------------------------------
    # Import batches
    # ------------------------------------------------------------------

    def list_imports(self, alignment_id: str) -> list[MappingImport]:
        return list(
            self._session.execute(
                select(MappingImport)
                .where(MappingImport.alignment_id == alignment_id)
                .order_by(MappingImport.imported_at.desc())
            ).scalars()
        )

    def delete_import(self, import_id: str, user_id: str | None = None) -> int:
        """Delete an import batch and every mapping it created.

        Returns:
            Number of mappings removed.
        """
        batch = self._session.get(MappingImport, import_id)
        if batch is None:
            raise NotFoundError(f"Import {import_id} not found")

        removed = len(batch.mappings)
        alignment_id = batch.alignment_id
        self._session.delete(batch)
        self._session.flush()

        log_audit(
            AuditAction.DELETE,
            resource_type="import",
            resource_id=import_id,
            alignment_id=alignment_id,
            user_id=user_id,
            details={"mappings_removed": removed},
        )
        return removed

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(self, mapping_id: str, text: str, user_id: str) -> MappingComment:
        """Append a comment, stamped with the mapping's current consensus."""
        if not text or not text.strip():
            raise ValueError("Comment text is empty")
        self.get_mapping(mapping_id)

        status = EvaluationAggregator(self._session).consensus(mapping_id)
        comment = MappingComment(
            mapping_id=mapping_id,
            user_id=user_id,
            comment=text.strip(),
            evaluation_status=status.value,
        )
        self._session.add(comment)
        self._session.flush()
        return comment

    def list_comments(self, mapping_id: str) -> list[MappingComment]:
        return list(
            self._session.execute(
                select(MappingComment)
                .where(MappingComment.mapping_id == mapping_id)
                .order_by(MappingComment.commented_at)
            ).scalars()
        )

    def delete_comment(self, comment_id: str, user_id: str) -> None:
        """Delete a comment. Only its author may do so."""
        comment = self._session.get(MappingComment, comment_id)
        if comment is None:
            raise NotFoundError(f"Comment {comment_id} not found")
        if comment.user_id != user_id:
            raise OwnershipError("Only the author can delete a comment")
        self._session.delete(comment)
        self._session.flush()


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
