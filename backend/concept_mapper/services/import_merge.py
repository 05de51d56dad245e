"""Import merge engine.

Merges a parsed import file into an existing alignment:

1. Parse and validate the file (nothing is written on failure)
2. Resolve each imported row to a destination row of the alignment
3. Skip rows whose (row, target) is already mapped or was already accepted
   earlier in the same batch
4. Resolve author and evaluator names against the user registry
5. Insert mappings, then archive evaluations and comments
6. Record the batch as a MappingImport

The batch is all or nothing: it runs in a savepoint, and a storage error rolls
back only that savepoint and surfaces as TransactionFailure.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from concept_mapper.core.audit import log_import
from concept_mapper.core.errors import TransactionFailure
from concept_mapper.models import (
    Mapping,
    MappingComment,
    MappingEvaluation,
    MappingImport,
    build_evaluator_key,
    build_target_key,
)
from concept_mapper.schemas.base import ImportFormat
from concept_mapper.services.alignment_store import AlignmentStore, RowIndex, dedup_key
from concept_mapper.services.identity import IdentityRegistry
from concept_mapper.services.import_formats import ColumnMapping, ParsedImport, parse_import

logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    """Outcome of one import batch."""

    import_id: str
    import_format: ImportFormat
    accepted: int = 0
    skipped_duplicates: int = 0
    skipped_no_match: int = 0
    ignored_rows: int = 0
    evaluations_imported: int = 0
    comments_imported: int = 0
    unresolved_identities: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.skipped_duplicates + self.skipped_no_match + self.ignored_rows


class ImportMergeEngine:
    """Merge mapping files into an alignment.

    Usage:
        engine = ImportMergeEngine(session)
        summary = engine.merge(alignment.id, "labs.csv", content, ImportFormat.STCM)
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._store = AlignmentStore(session)

    def merge(
        self,
        alignment_id: str,
        filename: str,
        content: bytes,
        import_format: ImportFormat,
        column_mapping: ColumnMapping | None = None,
        user_id: str | None = None,
    ) -> ImportSummary:
        """Import a file into an alignment.

        Raises:
            ImportValidationError: the file is malformed (nothing written).
            NotFoundError: the alignment does not exist.
            TransactionFailure: the database rejected the batch (rolled back).
        """
        parsed = parse_import(content, import_format, column_mapping)

        try:
            # Savepoint: a failed batch leaves the caller's transaction intact
            with self._session.begin_nested():
                summary = self._apply(alignment_id, filename, parsed, user_id)
        except SQLAlchemyError as e:
            logger.error(f"Import into alignment {alignment_id} failed: {e}")
            log_import(
                alignment_id=alignment_id,
                import_id=None,
                import_format=import_format.value,
                user_id=user_id,
                success=False,
            )
            raise TransactionFailure(f"Import of '{filename}' failed; no changes were made") from e

        log_import(
            alignment_id=alignment_id,
            import_id=summary.import_id,
            import_format=import_format.value,
            user_id=user_id,
            accepted=summary.accepted,
            skipped=summary.skipped,
        )
        logger.info(
            f"Imported {summary.accepted} mappings into alignment {alignment_id} "
            f"({summary.skipped_duplicates} duplicates, {summary.skipped_no_match} unmatched, "
            f"{summary.ignored_rows} ignored)"
        )
        if summary.unresolved_identities:
            logger.warning(
                f"Unresolved identities kept as names: {', '.join(summary.unresolved_identities)}"
            )
        return summary

    def _apply(
        self,
        alignment_id: str,
        filename: str,
        parsed: ParsedImport,
        user_id: str | None,
    ) -> ImportSummary:
        self._store.lock_alignment(alignment_id)
        row_index = self._store.build_row_index(alignment_id)
        seen_keys = self._store.existing_dedup_keys(alignment_id)
        identities = IdentityRegistry(self._session)
        unresolved: set[str] = set()

        batch = MappingImport(
            alignment_id=alignment_id,
            original_filename=filename,
            import_format=parsed.import_format,
            imported_by_user_id=user_id,
            unresolved_identities=[],
        )
        self._session.add(batch)
        self._session.flush()

        summary = ImportSummary(
            import_id=batch.id,
            import_format=parsed.import_format,
            ignored_rows=parsed.ignored_rows,
        )

        # Archive mapping id -> new mapping id, for evaluations and comments
        accepted_ids: dict[str, str] = {}

        for item in parsed.mappings:
            row_id = self._resolve_row(row_index, parsed.import_format, item.vocabulary_id,
                                       item.concept_code, item.original_row_id)
            if row_id is None:
                summary.skipped_no_match += 1
                continue

            key = dedup_key(
                row_id,
                item.target_general_concept_id,
                item.target_omop_concept_id,
                item.target_custom_concept_id,
            )
            if key in seen_keys:
                summary.skipped_duplicates += 1
                continue
            seen_keys.add(key)

            author_id, author_name = None, None
            identity = identities.lookup(item.author_first_name, item.author_last_name)
            if identity is not None:
                author_id, author_name = identity.user_id, identity.display_name
                if not identity.is_resolved:
                    unresolved.add(identity.display_name)

            mapping = Mapping(
                alignment_id=alignment_id,
                row_id=row_id,
                target_general_concept_id=item.target_general_concept_id,
                target_omop_concept_id=item.target_omop_concept_id,
                target_custom_concept_id=item.target_custom_concept_id,
                target_key=build_target_key(
                    item.target_general_concept_id,
                    item.target_omop_concept_id,
                    item.target_custom_concept_id,
                ),
                mapped_by_user_id=author_id,
                imported_user_name=author_name,
                import_id=batch.id,
                mapped_at=item.mapped_at or datetime.now(UTC),
            )
            self._session.add(mapping)
            self._session.flush()
            summary.accepted += 1
            if item.original_mapping_id:
                accepted_ids[item.original_mapping_id] = mapping.id

        summary.evaluations_imported = self._insert_evaluations(parsed, accepted_ids, identities, unresolved)
        summary.comments_imported = self._insert_comments(parsed, accepted_ids, identities, unresolved)

        summary.unresolved_identities = sorted(unresolved)
        batch.concepts_count = summary.accepted
        batch.skipped_duplicates = summary.skipped_duplicates
        batch.skipped_no_match = summary.skipped_no_match
        batch.unresolved_identities = summary.unresolved_identities
        self._session.flush()
        return summary

    @staticmethod
    def _resolve_row(
        row_index: RowIndex,
        import_format: ImportFormat,
        vocabulary_id: str | None,
        concept_code: str | None,
        original_row_id: int | None,
    ) -> int | None:
        # Row positions only carry meaning inside our own archives
        if import_format != ImportFormat.ARCHIVE:
            original_row_id = None
        return row_index.match(vocabulary_id, concept_code, original_row_id)

    def _insert_evaluations(
        self,
        parsed: ParsedImport,
        accepted_ids: dict[str, str],
        identities: IdentityRegistry,
        unresolved: set[str],
    ) -> int:
        # Later rows for the same evaluator replace earlier ones
        votes: dict[tuple[str, str], MappingEvaluation] = {}
        for item in parsed.evaluations:
            mapping_id = accepted_ids.get(item.original_mapping_id)
            if mapping_id is None:
                continue
            identity = identities.lookup(item.evaluator_first_name, item.evaluator_last_name)
            if identity is None:
                logger.debug(f"Evaluation on line {item.line} has no evaluator name, skipped")
                continue
            if not identity.is_resolved:
                unresolved.add(identity.display_name)

            evaluator_key = build_evaluator_key(identity.user_id, identity.display_name)
            votes[(mapping_id, evaluator_key)] = MappingEvaluation(
                mapping_id=mapping_id,
                evaluator_user_id=identity.user_id,
                imported_user_name=identity.display_name,
                evaluator_key=evaluator_key,
                vote=item.vote,
                evaluated_at=item.evaluated_at or datetime.now(UTC),
            )

        self._session.add_all(votes.values())
        self._session.flush()
        return len(votes)

    def _insert_comments(
        self,
        parsed: ParsedImport,
        accepted_ids: dict[str, str],
        identities: IdentityRegistry,
        unresolved: set[str],
    ) -> int:
        count = 0
        for item in parsed.comments:
            mapping_id = accepted_ids.get(item.original_mapping_id)
            if mapping_id is None:
                continue
            identity = identities.lookup(item.author_first_name, item.author_last_name)
            if identity is not None and not identity.is_resolved:
                unresolved.add(identity.display_name)

            self._session.add(
                MappingComment(
                    mapping_id=mapping_id,
                    user_id=identity.user_id if identity else None,
                    imported_user_name=identity.display_name if identity else None,
                    comment=item.comment,
                    evaluation_status=item.evaluation_status,
                    commented_at=item.commented_at or datetime.now(UTC),
                )
            )
            count += 1

        self._session.flush()
        return count
