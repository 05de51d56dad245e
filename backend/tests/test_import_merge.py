"""Tests for merging import files into an alignment."""

import io
import json
import zipfile

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from concept_mapper.core.errors import ImportValidationError, NotFoundError, TransactionFailure
from concept_mapper.models import Mapping, MappingComment, MappingEvaluation, MappingImport, User
from concept_mapper.schemas.base import ConsensusStatus, ExportFormat, ImportFormat, Vote
from concept_mapper.services.alignment_store import AlignmentStore
from concept_mapper.services.evaluation import EvaluationAggregator
from concept_mapper.services.export import MappingExporter
from concept_mapper.services.import_formats import ColumnMapping
from concept_mapper.services.import_merge import ImportMergeEngine

MAPPING_HEADER = (
    "mapping_id,row_id,target_general_concept_id,target_omop_concept_id,target_custom_concept_id,"
    "mapping_datetime,vocabulary_id,concept_code,user_first_name,user_last_name\n"
)


def build_archive(mappings: str, evaluations: str = "", comments: str = "") -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(
            "metadata.json",
            json.dumps({"format_version": "1.0", "format_type": "INDICATE_DATA_DICTIONARY"}),
        )
        archive.writestr("mappings.csv", MAPPING_HEADER + mappings)
        if evaluations:
            archive.writestr(
                "evaluations.csv",
                "mapping_id,is_approved,evaluated_at,user_first_name,user_last_name\n" + evaluations,
            )
        if comments:
            archive.writestr(
                "comments.csv",
                "mapping_id,comment,evaluation_status,created_at,user_first_name,user_last_name\n" + comments,
            )
    return buffer.getvalue()


# Alice maps two rows, Zoe (not registered here) maps one, one row has no match
REVIEW_ARCHIVE = build_archive(
    mappings=(
        "m1,3,NA,3027018,NA,2024-03-01T10:00:00,LOCAL,HR,Alice,Martin\n"
        "m2,4,1001,NA,NA,2024-03-01T10:05:00,ICD10,E11,Zoe,Unknown\n"
        "m3,99,NA,3004249,NA,2024-03-01T10:10:00,LOCAL,XYZ,Alice,Martin\n"
    ),
    evaluations=(
        "m1,0,2024-03-02T09:00:00,Bob,Durand\n"
        "m1,1,2024-03-02T10:00:00,Bob,Durand\n"
        "m2,-1,2024-03-02T10:00:00,Zoe,Unknown\n"
        "m3,1,2024-03-02T10:00:00,Bob,Durand\n"
    ),
    comments="m1,Checked against the monitor export,Approved,2024-03-02T10:01:00,Bob,Durand\n",
)


def mappings_of(session: Session, alignment_id: str) -> list[Mapping]:
    return list(
        session.execute(
            select(Mapping).where(Mapping.alignment_id == alignment_id).order_by(Mapping.row_id)
        ).scalars()
    )


class TestArchiveImport:
    def test_archive_with_reviews(
        self, db_session: Session, alignment_id: str, alice: User, bob: User
    ) -> None:
        summary = ImportMergeEngine(db_session).merge(
            alignment_id, "review.zip", REVIEW_ARCHIVE, ImportFormat.ARCHIVE, user_id=bob.id
        )
        db_session.commit()

        assert summary.accepted == 2
        assert summary.skipped_no_match == 1
        assert summary.skipped_duplicates == 0
        assert summary.evaluations_imported == 2
        assert summary.comments_imported == 1
        assert summary.unresolved_identities == ["Zoe Unknown"]

        heart_rate, diabetes = mappings_of(db_session, alignment_id)
        assert heart_rate.row_id == 3
        assert heart_rate.mapped_by_user_id == alice.id
        assert heart_rate.import_id == summary.import_id
        assert diabetes.target_general_concept_id == 1001
        assert diabetes.mapped_by_user_id is None
        assert diabetes.imported_user_name == "Zoe Unknown"

    def test_last_vote_of_an_evaluator_wins(self, db_session: Session, alignment_id: str, bob: User) -> None:
        ImportMergeEngine(db_session).merge(alignment_id, "review.zip", REVIEW_ARCHIVE, ImportFormat.ARCHIVE)

        heart_rate = mappings_of(db_session, alignment_id)[0]
        evaluations = EvaluationAggregator(db_session).list_evaluations(heart_rate.id)

        assert [(e.evaluator_user_id, e.vote) for e in evaluations] == [(bob.id, Vote.APPROVE)]

    def test_unresolved_evaluator_kept_by_name(self, db_session: Session, alignment_id: str) -> None:
        ImportMergeEngine(db_session).merge(alignment_id, "review.zip", REVIEW_ARCHIVE, ImportFormat.ARCHIVE)

        diabetes = mappings_of(db_session, alignment_id)[1]
        evaluation = EvaluationAggregator(db_session).list_evaluations(diabetes.id)[0]

        assert evaluation.evaluator_user_id is None
        assert evaluation.imported_user_name == "Zoe Unknown"
        assert EvaluationAggregator(db_session).consensus(diabetes.id) == ConsensusStatus.UNCERTAIN

    def test_comment_attached_to_new_mapping(self, db_session: Session, alignment_id: str, bob: User) -> None:
        ImportMergeEngine(db_session).merge(alignment_id, "review.zip", REVIEW_ARCHIVE, ImportFormat.ARCHIVE)

        comment = db_session.execute(select(MappingComment)).scalar_one()

        assert comment.mapping_id == mappings_of(db_session, alignment_id)[0].id
        assert comment.user_id == bob.id
        assert comment.evaluation_status == "Approved"

    def test_reimport_accepts_nothing(self, db_session: Session, alignment_id: str) -> None:
        engine = ImportMergeEngine(db_session)
        engine.merge(alignment_id, "review.zip", REVIEW_ARCHIVE, ImportFormat.ARCHIVE)
        db_session.commit()

        summary = engine.merge(alignment_id, "review.zip", REVIEW_ARCHIVE, ImportFormat.ARCHIVE)

        assert summary.accepted == 0
        assert summary.skipped_duplicates == 2
        assert summary.skipped_no_match == 1
        assert summary.evaluations_imported == 0
        assert len(mappings_of(db_session, alignment_id)) == 2

    def test_row_position_fallback(self, db_session: Session, alignment_id: str) -> None:
        content = build_archive("m1,2,NA,3012888,NA,,LOCAL,RENAMED,,\n")

        summary = ImportMergeEngine(db_session).merge(alignment_id, "a.zip", content, ImportFormat.ARCHIVE)

        assert summary.accepted == 1
        assert mappings_of(db_session, alignment_id)[0].row_id == 2

    def test_exported_archive_reimports_as_duplicates(
        self, db_session: Session, alignment_id: str, alice: User, bob: User
    ) -> None:
        store = AlignmentStore(db_session)
        mapping = store.add_mapping(alignment_id, 1, omop_concept_id=3004249, user_id=alice.id)
        store.add_mapping(alignment_id, 4, general_concept_id=1001, user_id=alice.id)
        EvaluationAggregator(db_session).record_vote(mapping.id, Vote.APPROVE, user_id=bob.id)
        db_session.commit()

        export = MappingExporter(db_session).export(alignment_id, ExportFormat.ARCHIVE)
        summary = ImportMergeEngine(db_session).merge(
            alignment_id, export.filename, export.content, ImportFormat.ARCHIVE
        )

        assert summary.accepted == 0
        assert summary.skipped_duplicates == 2

    def test_exported_archive_into_new_alignment(
        self, db_session: Session, alignment_id: str, alice: User, bob: User
    ) -> None:
        store = AlignmentStore(db_session)
        mapping = store.add_mapping(alignment_id, 3, omop_concept_id=3027018, user_id=alice.id)
        EvaluationAggregator(db_session).record_vote(mapping.id, Vote.REJECT, user_id=bob.id)
        db_session.commit()
        export = MappingExporter(db_session).export(alignment_id, ExportFormat.ARCHIVE)

        target = store.create_alignment(
            "ICU vitals copy", rows=[{"vocabulary_id": "LOCAL", "concept_code": "HR", "concept_name": "Pulse"}]
        )
        summary = ImportMergeEngine(db_session).merge(target.id, export.filename, export.content, ImportFormat.ARCHIVE)

        copied = mappings_of(db_session, target.id)
        assert summary.accepted == 1
        assert summary.unresolved_identities == []
        assert copied[0].row_id == 1
        assert copied[0].mapped_by_user_id == alice.id
        assert EvaluationAggregator(db_session).consensus(copied[0].id) == ConsensusStatus.REJECTED

    def test_registered_and_unknown_authors(self, db_session: Session) -> None:
        store = AlignmentStore(db_session)
        alignment = store.create_alignment(
            "Labs",
            rows=[
                {"row_id": 1, "vocabulary_id": "LOCAL", "concept_code": "GLU", "concept_name": "Glucose"},
                {"row_id": 2, "vocabulary_id": "LOCAL", "concept_code": "HB", "concept_name": "Hemoglobin"},
                {"row_id": 3, "vocabulary_id": "LOCAL", "concept_code": "SOD", "concept_name": "Sodium"},
            ],
        )
        smith = User(login="asmith", first_name="Alice", last_name="Smith")
        db_session.add(smith)
        db_session.commit()
        content = build_archive(
            "a1,1,NA,3004501,NA,2024-05-01T08:00:00,LOCAL,GLU,Alice,Smith\n"
            "a2,2,NA,3000963,NA,2024-05-01T08:05:00,LOCAL,HB,Bob,Unknown\n"
        )

        summary = ImportMergeEngine(db_session).merge(alignment.id, "labs.zip", content, ImportFormat.ARCHIVE)

        mappings = mappings_of(db_session, alignment.id)
        assert (summary.accepted, summary.skipped) == (2, 0)
        assert summary.unresolved_identities == ["Bob Unknown"]
        assert [m.row_id for m in mappings] == [1, 2]
        assert mappings[0].mapped_by_user_id == smith.id
        assert mappings[1].mapped_by_user_id is None
        assert mappings[1].imported_user_name == "Bob Unknown"
        assert store.list_mappings(alignment.id, row_id=3) == []


class TestFlatImports:
    def test_stcm_import(self, db_session: Session, alignment_id: str, bob: User) -> None:
        content = b"source_code,source_vocabulary_id,target_concept_id\nSBP,LOCAL,3004249\nE11,ICD10,201826\n"

        summary = ImportMergeEngine(db_session).merge(
            alignment_id, "stcm.csv", content, ImportFormat.STCM, user_id=bob.id
        )

        mappings = mappings_of(db_session, alignment_id)
        assert summary.accepted == 2
        assert [(m.row_id, m.target_omop_concept_id) for m in mappings] == [(1, 3004249), (4, 201826)]
        assert all(m.mapped_by_user_id is None for m in mappings)
        batch = db_session.get(MappingImport, summary.import_id)
        assert batch.imported_by_user_id == bob.id
        assert batch.concepts_count == 2

    def test_code_only_match_when_vocabulary_differs(self, db_session: Session, alignment_id: str) -> None:
        content = b"source_code,source_vocabulary_id,target_concept_id\nHR,MONITOR,3027018\n"

        summary = ImportMergeEngine(db_session).merge(alignment_id, "stcm.csv", content, ImportFormat.STCM)

        assert summary.accepted == 1
        assert mappings_of(db_session, alignment_id)[0].row_id == 3

    def test_unmatched_and_ignored_rows_counted(self, db_session: Session, alignment_id: str) -> None:
        content = b"sourceCode,mappingStatus,conceptId\nHR,APPROVED,3027018\nGLU,APPROVED,3004501\nDBP,IGNORED,3012888\n"

        summary = ImportMergeEngine(db_session).merge(alignment_id, "usagi.csv", content, ImportFormat.USAGI)

        assert summary.accepted == 1
        assert summary.skipped_no_match == 1
        assert summary.ignored_rows == 1
        assert summary.skipped == 2

    def test_duplicates_within_one_file(self, db_session: Session, alignment_id: str) -> None:
        content = b"code;target\nHR;3027018\nHR;3027018\nHR;3004249\n"

        summary = ImportMergeEngine(db_session).merge(
            alignment_id,
            "labs.csv",
            content,
            ImportFormat.CSV,
            ColumnMapping(source_code="code", target_concept_id="target"),
        )

        assert summary.accepted == 2
        assert summary.skipped_duplicates == 1

    def test_same_duplicate_detection_for_every_format(self, db_session: Session, alignment_id: str) -> None:
        engine = ImportMergeEngine(db_session)
        first = engine.merge(
            alignment_id,
            "stcm.csv",
            b"source_code,source_vocabulary_id,target_concept_id\nHR,LOCAL,3027018\n",
            ImportFormat.STCM,
        )
        assert first.accepted == 1

        others = [
            engine.merge(alignment_id, "usagi.csv", b"sourceCode,conceptId\nHR,3027018\n", ImportFormat.USAGI),
            engine.merge(
                alignment_id,
                "generic.csv",
                b"code,vocab,omop\nHR,LOCAL,3027018\n",
                ImportFormat.CSV,
                ColumnMapping(source_code="code", target_concept_id="omop", source_vocabulary_id="vocab"),
            ),
            engine.merge(
                alignment_id,
                "archive.zip",
                build_archive("x1,3,NA,3027018,NA,,LOCAL,HR,,\n"),
                ImportFormat.ARCHIVE,
            ),
        ]

        assert [(s.accepted, s.skipped_duplicates) for s in others] == [(0, 1)] * 3
        assert len(mappings_of(db_session, alignment_id)) == 1

    def test_manual_mapping_blocks_import_duplicate(self, db_session: Session, alignment_id: str, alice: User) -> None:
        AlignmentStore(db_session).add_mapping(alignment_id, 3, omop_concept_id=3027018, user_id=alice.id)

        summary = ImportMergeEngine(db_session).merge(
            alignment_id, "usagi.csv", b"sourceCode,conceptId\nHR,3027018\n", ImportFormat.USAGI
        )

        assert summary.accepted == 0
        assert summary.skipped_duplicates == 1


class TestAtomicity:
    def test_validation_error_writes_nothing(self, db_session: Session, alignment_id: str) -> None:
        with pytest.raises(ImportValidationError):
            ImportMergeEngine(db_session).merge(
                alignment_id, "bad.csv", b"sourceCode,conceptId\nHR,3027018\nSBP,abc\n", ImportFormat.USAGI
            )

        assert db_session.execute(select(MappingImport)).scalars().all() == []
        assert mappings_of(db_session, alignment_id) == []

    def test_storage_error_rolls_back(
        self, db_session: Session, alignment_id: str, alice: User, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        store = AlignmentStore(db_session)
        store.add_mapping(alignment_id, 2, omop_concept_id=3012888, user_id=alice.id)
        db_session.commit()
        # Pending work of the caller, flushed but not committed
        store.add_mapping(alignment_id, 1, omop_concept_id=3004249, user_id=alice.id)

        def fail(*args, **kwargs):
            raise OperationalError("INSERT INTO mapping_comments", {}, Exception("disk I/O error"))

        monkeypatch.setattr(ImportMergeEngine, "_insert_comments", fail)

        with pytest.raises(TransactionFailure):
            ImportMergeEngine(db_session).merge(alignment_id, "review.zip", REVIEW_ARCHIVE, ImportFormat.ARCHIVE)

        assert db_session.execute(select(MappingImport)).scalars().all() == []
        assert db_session.execute(select(MappingEvaluation)).scalars().all() == []
        assert [m.row_id for m in mappings_of(db_session, alignment_id)] == [1, 2]

        db_session.commit()
        assert store.count_mappings(alignment_id) == 2

    def test_unknown_alignment(self, db_session: Session) -> None:
        with pytest.raises(NotFoundError):
            ImportMergeEngine(db_session).merge(
                "00000000-0000-0000-0000-000000000000",
                "usagi.csv",
                b"sourceCode,conceptId\nHR,3027018\n",
                ImportFormat.USAGI,
            )


class TestDeleteImport:
    def test_delete_import_removes_its_mappings(
        self, db_session: Session, alignment_id: str, alice: User
    ) -> None:
        store = AlignmentStore(db_session)
        manual = store.add_mapping(alignment_id, 1, omop_concept_id=3004249, user_id=alice.id)
        summary = ImportMergeEngine(db_session).merge(
            alignment_id, "review.zip", REVIEW_ARCHIVE, ImportFormat.ARCHIVE
        )
        db_session.commit()

        removed = store.delete_import(summary.import_id)
        db_session.commit()

        assert removed == 2
        assert [m.id for m in mappings_of(db_session, alignment_id)] == [manual.id]
        assert db_session.execute(select(MappingEvaluation)).scalars().all() == []
        assert db_session.execute(select(MappingComment)).scalars().all() == []
        assert store.list_imports(alignment_id) == []

    def test_delete_missing_import(self, db_session: Session) -> None:
        with pytest.raises(NotFoundError):
            AlignmentStore(db_session).delete_import("00000000-0000-0000-0000-000000000000")
