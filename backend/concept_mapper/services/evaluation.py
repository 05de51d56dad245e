"""Multi-reviewer evaluation of mappings.

Each evaluator holds at most one vote per mapping. Votes are aggregated into a
consensus status:

- Approved: at least one approve vote
- Rejected: no approve, at least one reject
- Uncertain: no approve or reject, at least one uncertain
- NotEvaluated: no votes

The export filter selects mappings by consensus status, with an optional
narrowing of the Approved category. It never changes stored data.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from concept_mapper.core.audit import AuditAction, log_audit
from concept_mapper.core.errors import NotFoundError
from concept_mapper.models import Mapping, MappingEvaluation, SourceConceptRow, build_evaluator_key
from concept_mapper.schemas.base import ApprovedPolicy, ConsensusStatus, Vote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoteCounts:
    """Vote tallies for one mapping."""

    approve: int = 0
    reject: int = 0
    uncertain: int = 0

    @property
    def total(self) -> int:
        return self.approve + self.reject + self.uncertain


def classify(counts: VoteCounts) -> ConsensusStatus:
    """Derive the consensus status from vote tallies."""
    if counts.approve > 0:
        return ConsensusStatus.APPROVED
    if counts.reject > 0:
        return ConsensusStatus.REJECTED
    if counts.uncertain > 0:
        return ConsensusStatus.UNCERTAIN
    return ConsensusStatus.NOT_EVALUATED


@dataclass
class ExportFilter:
    """Which consensus categories to export.

    approved_policy only narrows the Approved category:
    - all: every Approved mapping
    - majority: approve_count > reject_count
    - no_rejection: reject_count == 0
    """

    statuses: set[ConsensusStatus] = field(default_factory=lambda: set(ConsensusStatus))
    approved_policy: ApprovedPolicy = ApprovedPolicy.ALL

    def includes(self, counts: VoteCounts) -> bool:
        status = classify(counts)
        if status not in self.statuses:
            return False
        if status != ConsensusStatus.APPROVED:
            return True
        if self.approved_policy == ApprovedPolicy.MAJORITY:
            return counts.approve > counts.reject
        if self.approved_policy == ApprovedPolicy.NO_REJECTION:
            return counts.reject == 0
        return True


@dataclass
class AlignmentSummary:
    """Progress figures for an alignment."""

    alignment_id: str
    source_rows: int
    mapped_rows: int
    mappings: int
    by_status: dict[ConsensusStatus, int]


class EvaluationAggregator:
    """Record reviewer votes and derive consensus.

    The aggregator stores votes for any evaluator; rules such as "authors do
    not review their own mappings" belong to the caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def record_vote(
        self,
        mapping_id: str,
        vote: Vote,
        user_id: str | None = None,
        imported_user_name: str | None = None,
    ) -> MappingEvaluation:
        """Create or replace an evaluator's vote on a mapping."""
        self._get_mapping(mapping_id)
        evaluator_key = build_evaluator_key(user_id, imported_user_name)

        evaluation = self._find_evaluation(mapping_id, evaluator_key)
        if evaluation is None:
            evaluation = MappingEvaluation(
                mapping_id=mapping_id,
                evaluator_user_id=user_id,
                imported_user_name=imported_user_name,
                evaluator_key=evaluator_key,
                vote=vote,
            )
            self._session.add(evaluation)
        else:
            evaluation.vote = vote
            evaluation.evaluated_at = datetime.now(UTC)
        self._session.flush()

        log_audit(
            AuditAction.VOTE,
            resource_type="mapping",
            resource_id=mapping_id,
            user_id=user_id,
            details={"vote": vote.value},
        )
        return evaluation

    def clear_vote(
        self,
        mapping_id: str,
        user_id: str | None = None,
        imported_user_name: str | None = None,
    ) -> bool:
        """Delete an evaluator's vote. Returns False if there was none."""
        evaluator_key = build_evaluator_key(user_id, imported_user_name)
        evaluation = self._find_evaluation(mapping_id, evaluator_key)
        if evaluation is None:
            return False
        self._session.delete(evaluation)
        self._session.flush()
        return True

    def list_evaluations(self, mapping_id: str) -> list[MappingEvaluation]:
        return list(
            self._session.execute(
                select(MappingEvaluation)
                .where(MappingEvaluation.mapping_id == mapping_id)
                .order_by(MappingEvaluation.evaluated_at)
            ).scalars()
        )

    def vote_counts(self, mapping_ids: list[str]) -> dict[str, VoteCounts]:
        """Tally votes per mapping. Mappings without votes get zero counts."""
        if not mapping_ids:
            return {}
        tallies: dict[str, dict[Vote, int]] = {mapping_id: {} for mapping_id in mapping_ids}

        rows = self._session.execute(
            select(MappingEvaluation.mapping_id, MappingEvaluation.vote, func.count())
            .where(MappingEvaluation.mapping_id.in_(mapping_ids))
            .group_by(MappingEvaluation.mapping_id, MappingEvaluation.vote)
        ).all()
        for mapping_id, vote, count in rows:
            tallies[mapping_id][vote] = count

        return {
            mapping_id: VoteCounts(
                approve=votes.get(Vote.APPROVE, 0),
                reject=votes.get(Vote.REJECT, 0),
                uncertain=votes.get(Vote.UNCERTAIN, 0),
            )
            for mapping_id, votes in tallies.items()
        }

    def consensus(self, mapping_id: str) -> ConsensusStatus:
        return classify(self.vote_counts([mapping_id])[mapping_id])

    def filter_mappings(self, alignment_id: str, export_filter: ExportFilter) -> list[Mapping]:
        """Mappings of an alignment selected by the export filter."""
        mappings = self._alignment_mappings(alignment_id)
        counts = self.vote_counts([m.id for m in mappings])

        selected: dict[str, Mapping] = {}
        for mapping in mappings:
            if export_filter.includes(counts[mapping.id]):
                selected.setdefault(mapping.id, mapping)

        logger.info(
            f"Export filter kept {len(selected)}/{len(mappings)} mappings "
            f"for alignment {alignment_id}"
        )
        return list(selected.values())

    def summarize_alignment(self, alignment_id: str) -> AlignmentSummary:
        mappings = self._alignment_mappings(alignment_id)
        counts = self.vote_counts([m.id for m in mappings])

        by_status = {status: 0 for status in ConsensusStatus}
        for mapping in mappings:
            by_status[classify(counts[mapping.id])] += 1

        source_rows = self._session.execute(
            select(func.count()).select_from(SourceConceptRow).where(
                SourceConceptRow.alignment_id == alignment_id
            )
        ).scalar_one()

        return AlignmentSummary(
            alignment_id=alignment_id,
            source_rows=source_rows,
            mapped_rows=len({m.row_id for m in mappings}),
            mappings=len(mappings),
            by_status=by_status,
        )

    def _alignment_mappings(self, alignment_id: str) -> list[Mapping]:
        return list(
            self._session.execute(
                select(Mapping)
                .where(Mapping.alignment_id == alignment_id)
                .order_by(Mapping.row_id, Mapping.mapped_at)
            ).scalars()
        )

    def _get_mapping(self, mapping_id: str) -> Mapping:
        mapping = self._session.get(Mapping, mapping_id)
        if mapping is None:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        return mapping

    def _find_evaluation(self, mapping_id: str, evaluator_key: str) -> MappingEvaluation | None:
        return self._session.execute(
            select(MappingEvaluation).where(
                MappingEvaluation.mapping_id == mapping_id,
                MappingEvaluation.evaluator_key == evaluator_key,
            )
        ).scalar_one_or_none()
