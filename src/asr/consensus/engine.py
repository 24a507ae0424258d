"""
Consensus Engine

Resolves a three-reviewer panel into a verdict.

Rule, evaluated in order:
1. any vote unsure      -> escalate
2. include count >= 2   -> include
3. exclude count >= 2   -> exclude
4. otherwise            -> escalate

Escalated panels are decided by the adjudication oracle, whose decision
is written into the verdict verbatim.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence

from asr.core.enums import (
    ConsensusStatus,
    FinalDecision,
    ResolutionPath,
    VoteDecision,
)
from asr.core.exceptions import (
    AdjudicationContractError,
    ConsensusError,
    PanelMismatchError,
    VoteCountError,
)
from asr.core.schemas import AdjudicationResult, ConsensusOutcome, Verdict, Vote, utcnow

logger = logging.getLogger(__name__)

PANEL_SIZE = 3


def _check_panel(votes: Sequence[Vote], record_id: str | None = None) -> None:
    if len(votes) != PANEL_SIZE:
        seen = {v.record_id for v in votes}
        raise VoteCountError(len(votes), record_id or (seen.pop() if len(seen) == 1 else None))

    record_ids = sorted({v.record_id for v in votes})
    stages = sorted({v.stage.value for v in votes})
    if len(record_ids) != 1 or len(stages) != 1:
        raise PanelMismatchError("Votes in a panel must share record and stage", record_ids, stages)
    if record_id is not None and record_ids[0] != record_id:
        raise PanelMismatchError(f"Votes are not about record {record_id}", record_ids, stages)
    if len({v.reviewer_id for v in votes}) != PANEL_SIZE:
        raise PanelMismatchError(
            "Votes in a panel must come from distinct reviewers", record_ids, stages
        )


def resolve(votes: Sequence[Vote], record_id: str | None = None) -> ConsensusOutcome:
    """
    Apply the majority rule to a panel.

    Args:
        votes: Exactly three votes for the same record and stage.
        record_id: Record the panel is expected to be about.

    Returns:
        ConsensusOutcome, decided with a decision or escalate.

    Raises:
        VoteCountError: Panel size is not three.
        PanelMismatchError: Votes are for different records/stages, not for
            ``record_id``, or repeat a reviewer.
    """
    _check_panel(votes, record_id)

    tally = Counter(v.decision for v in votes)
    summary = ", ".join(f"{d.value}={tally.get(d, 0)}" for d in VoteDecision)

    if tally[VoteDecision.UNSURE] > 0:
        return ConsensusOutcome(
            status=ConsensusStatus.ESCALATE,
            reason=f"At least one reviewer unsure ({summary})",
        )
    if tally[VoteDecision.INCLUDE] >= 2:
        return ConsensusOutcome(
            status=ConsensusStatus.DECIDED,
            decision=FinalDecision.INCLUDE,
            reason=f"Majority include ({summary})",
        )
    if tally[VoteDecision.EXCLUDE] >= 2:
        return ConsensusOutcome(
            status=ConsensusStatus.DECIDED,
            decision=FinalDecision.EXCLUDE,
            reason=f"Majority exclude ({summary})",
        )
    return ConsensusOutcome(
        status=ConsensusStatus.ESCALATE,
        reason=f"No majority ({summary})",
    )


def _check_adjudication(
    record_id: str, adjudication: AdjudicationResult | None
) -> tuple[FinalDecision, str]:
    if adjudication is None:
        raise AdjudicationContractError("Escalated panel has no adjudication", record_id)
    if adjudication.decision is None or adjudication.decision == VoteDecision.UNSURE:
        raise AdjudicationContractError(
            "Adjudicator must return include or exclude", record_id
        )
    rationale = (adjudication.rationale or "").strip()
    if not rationale:
        raise AdjudicationContractError("Adjudicator returned no rationale", record_id)
    return FinalDecision(adjudication.decision.value), rationale


def build_verdict(
    votes: Sequence[Vote],
    outcome: ConsensusOutcome,
    adjudication: AdjudicationResult | None = None,
) -> Verdict:
    """
    Turn a consensus outcome into an immutable verdict.

    Args:
        votes: The panel that produced ``outcome``.
        outcome: Result of ``resolve(votes)``.
        adjudication: Adjudicator response, required when ``outcome`` escalated.

    Raises:
        AdjudicationContractError: Escalated without a binary decision and rationale.
        ConsensusError: Decided outcome without a decision.
    """
    _check_panel(votes)
    record_id = votes[0].record_id
    stage = votes[0].stage

    if outcome.status == ConsensusStatus.DECIDED:
        if outcome.decision is None:
            raise ConsensusError("Decided outcome carries no decision", {"record_id": record_id})
        return Verdict(
            record_id=record_id,
            stage=stage,
            votes=tuple(votes),
            path=ResolutionPath.AUTO_MAJORITY,
            decision=outcome.decision,
            rationale=None,
            resolved_at=utcnow(),
        )

    decision, rationale = _check_adjudication(record_id, adjudication)
    logger.info(
        "Adjudicated %s at %s stage: %s", record_id, stage.value, decision.value
    )
    return Verdict(
        record_id=record_id,
        stage=stage,
        votes=tuple(votes),
        path=ResolutionPath.ADJUDICATED,
        decision=decision,
        rationale=rationale,
        resolved_at=utcnow(),
    )
