"""
ASR Core Schemas

This module defines all Pydantic models (schemas) used throughout the ASR system.
These schemas represent the domain model and enforce invariants via validators.

Key Design Principles:
1. Records, votes and verdicts are immutable (frozen=True)
2. A record identifier is derived from its content, never supplied
3. Every vote carries reasons and evidence
4. A verdict is written once per (record, stage) and never revised
5. Funnel counters only ever move forward
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError as PydanticValidationError,
    computed_field,
    field_validator,
    model_validator,
)

from asr.core.enums import (
    ConsensusStatus,
    DecisionEventType,
    DedupStrategy,
    FinalDecision,
    ResolutionPath,
    RunStatus,
    ScreeningStage,
    Stage,
    VoteDecision,
)
from asr.core.exceptions import (
    CriteriaValidationError,
    FunnelInvariantError,
    StateInvariantError,
)
from asr.core.text import normalize_author, normalize_title


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def _strip_nonblank(values: tuple[str, ...], field_name: str) -> tuple[str, ...]:
    cleaned = tuple(v.strip() for v in values)
    if any(not v for v in cleaned):
        raise ValueError(f"{field_name} must not contain blank entries")
    return cleaned


# =============================================================================
# CRITERIA
# =============================================================================


class PCC(BaseModel):
    """
    Population / Concept / Context scoping statement.

    Invariants:
    - all three parts are non-blank
    """

    model_config = ConfigDict(frozen=True)

    population: str = Field(..., min_length=1)
    concept: str = Field(..., min_length=1)
    context: str = Field(..., min_length=1)

    @field_validator("population", "concept", "context")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("PCC fields must not be blank")
        return v


class Criteria(BaseModel):
    """
    Eligibility criteria for a review. Immutable for the lifetime of a run.

    Invariants:
    - at least one inclusion statement
    - no blank inclusion or exclusion statements
    - statement order is preserved (prompts number them)
    """

    model_config = ConfigDict(frozen=True)

    pcc: PCC
    inclusion: tuple[str, ...] = Field(..., min_length=1)
    exclusion: tuple[str, ...] = Field(default_factory=tuple)

    @field_validator("inclusion")
    @classmethod
    def validate_inclusion(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return _strip_nonblank(v, "inclusion")

    @field_validator("exclusion")
    @classmethod
    def validate_exclusion(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return _strip_nonblank(v, "exclusion")


def load_criteria(data: Criteria | dict[str, Any]) -> Criteria:
    """
    Validate a criteria document.

    Raises:
        CriteriaValidationError: If the document is malformed.
    """
    if isinstance(data, Criteria):
        return data
    try:
        return Criteria.model_validate(data)
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise CriteriaValidationError("Invalid review criteria", errors) from e


# =============================================================================
# RECORDS
# =============================================================================


class Record(BaseModel):
    """
    Candidate bibliographic entry moving through the pipeline.

    Invariants:
    - record_id is derived from normalized title, authors and year
    - record_id supplied in serialized input must equal the derived value
    - immutable once created
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1)
    authors: tuple[str, ...] = Field(default_factory=tuple)
    year: int | None = Field(default=None, ge=1000, le=2100)
    venue: str = ""

    external_id: str | None = Field(default=None, description="DOI or other external identifier")
    abstract: str | None = None
    keywords: tuple[str, ...] | None = None
    url: str | None = None

    source_file: str = Field(default="", description="Provenance: file the record came from")

    @model_validator(mode="wrap")
    @classmethod
    def derive_identifier(cls, data: Any, handler: Any) -> Record:
        supplied = None
        if isinstance(data, dict) and "record_id" in data:
            supplied = data["record_id"]
            data = {k: v for k, v in data.items() if k != "record_id"}
        record = handler(data)
        if supplied is not None and supplied != record.record_id:
            raise ValueError(
                f"record_id {supplied!r} does not match derived identifier {record.record_id!r}"
            )
        return record

    @computed_field  # type: ignore[prop-decorator]
    @property
    def record_id(self) -> str:
        """Deterministic identifier derived from normalized content."""
        return self.compute_id(self.title, self.authors, self.year)

    @staticmethod
    def compute_id(title: str, authors: tuple[str, ...] | list[str], year: int | None) -> str:
        """Compute the stable record identifier."""
        key = "|".join(
            [
                normalize_title(title),
                ";".join(normalize_author(a) for a in authors),
                "" if year is None else str(year),
            ]
        )
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


class DuplicateMatch(BaseModel):
    """One record collapsed into a canonical survivor."""

    model_config = ConfigDict(frozen=True)

    duplicate_id: str
    strategy: DedupStrategy
    score: float | None = Field(default=None, ge=0.0, le=1.0)
    source_file: str = ""


class DuplicateGroup(BaseModel):
    """Canonical record plus every later record that matched it."""

    canonical_id: str
    matches: list[DuplicateMatch] = Field(default_factory=list)


class DedupeResult(BaseModel):
    """Output of deduplication."""

    unique: list[Record] = Field(default_factory=list)
    groups: list[DuplicateGroup] = Field(default_factory=list)

    @property
    def duplicates_removed(self) -> int:
        return sum(len(g.matches) for g in self.groups)


# =============================================================================
# VOTES & VERDICTS
# =============================================================================


class EvidenceQuote(BaseModel):
    """Verbatim quote supporting a vote."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1)
    location: str | None = Field(default=None, description="e.g. 'abstract', 'p. 4'")


class Vote(BaseModel):
    """
    One reviewer's decision on one record at one screening stage.

    Invariants:
    - at least two non-blank reasons
    - at least one evidence quote
    """

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(..., min_length=1)
    stage: ScreeningStage
    reviewer_id: str = Field(..., min_length=1)
    decision: VoteDecision
    reasons: tuple[str, ...] = Field(..., min_length=2)
    evidence: tuple[EvidenceQuote, ...] = Field(..., min_length=1)

    # Reproducibility metadata
    model: str | None = None
    prompt_hash: str | None = None
    seed: int | None = None

    cast_at: datetime = Field(default_factory=utcnow)

    @field_validator("reasons")
    @classmethod
    def validate_reasons(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return _strip_nonblank(v, "reasons")

    @property
    def key(self) -> tuple[str, ScreeningStage, str]:
        return (self.record_id, self.stage, self.reviewer_id)


class ConsensusOutcome(BaseModel):
    """Result of applying the majority rule to a three-vote panel."""

    model_config = ConfigDict(frozen=True)

    status: ConsensusStatus
    decision: FinalDecision | None = None
    reason: str

    @model_validator(mode="after")
    def decision_matches_status(self) -> ConsensusOutcome:
        if self.status == ConsensusStatus.DECIDED and self.decision is None:
            raise ValueError("decided outcome requires a decision")
        if self.status == ConsensusStatus.ESCALATE and self.decision is not None:
            raise ValueError("escalated outcome must not carry a decision")
        return self


class AdjudicationResult(BaseModel):
    """
    Adjudicator response as returned by the oracle.

    Deliberately permissive: the consensus engine enforces the contract
    (binary decision, non-blank rationale) so violations surface as
    AdjudicationContractError rather than a schema error.
    """

    model_config = ConfigDict(frozen=True)

    decision: VoteDecision | None = None
    rationale: str | None = None
    model: str | None = None
    prompt_hash: str | None = None


class Verdict(BaseModel):
    """
    Resolved outcome for one (record, stage). Written once, never revised.

    Invariants:
    - exactly three votes, all for this record and stage, distinct reviewers
    - adjudicated verdicts carry a non-blank rationale
    """

    model_config = ConfigDict(frozen=True)

    record_id: str
    stage: ScreeningStage
    votes: tuple[Vote, Vote, Vote]
    path: ResolutionPath
    decision: FinalDecision
    rationale: str | None = None
    resolved_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_panel(self) -> Verdict:
        for vote in self.votes:
            if vote.record_id != self.record_id or vote.stage != self.stage:
                raise ValueError("all votes must belong to the verdict's record and stage")
        if len({v.reviewer_id for v in self.votes}) != 3:
            raise ValueError("votes must come from three distinct reviewers")
        if self.path == ResolutionPath.ADJUDICATED and not (self.rationale or "").strip():
            raise ValueError("adjudicated verdict requires a rationale")
        return self

    @property
    def key(self) -> tuple[str, ScreeningStage]:
        return (self.record_id, self.stage)


# =============================================================================
# FUNNEL
# =============================================================================


class FunnelCounters(BaseModel):
    """PRISMA-ScR funnel totals.

    identified >= deduplicated >= screened >= retrieved >= included, and
    each exclusion count is bounded by the stage it belongs to.
    """

    model_config = ConfigDict(frozen=True)

    identified: int = Field(default=0, ge=0)
    deduplicated: int = Field(default=0, ge=0)
    screened: int = Field(default=0, ge=0)
    excluded_at_screen: int = Field(default=0, ge=0)
    retrieved: int = Field(default=0, ge=0)
    excluded_at_fulltext: int = Field(default=0, ge=0)
    included: int = Field(default=0, ge=0)

    def check(self) -> None:
        """Raise FunnelInvariantError if the funnel ordering is violated."""
        chain = [
            ("identified", self.identified),
            ("deduplicated", self.deduplicated),
            ("screened", self.screened),
            ("retrieved", self.retrieved),
            ("included", self.included),
        ]
        for (upper_name, upper), (lower_name, lower) in zip(chain, chain[1:]):
            if upper < lower:
                raise FunnelInvariantError(
                    f"Funnel violated: {upper_name} ({upper}) < {lower_name} ({lower})",
                    self.model_dump(),
                )
        if self.excluded_at_screen > self.screened:
            raise FunnelInvariantError(
                "Funnel violated: excluded_at_screen exceeds screened", self.model_dump()
            )
        if self.excluded_at_fulltext > self.retrieved:
            raise FunnelInvariantError(
                "Funnel violated: excluded_at_fulltext exceeds retrieved", self.model_dump()
            )

    def check_progression(self, previous: FunnelCounters) -> None:
        """Raise FunnelInvariantError if any counter went backwards."""
        now = self.model_dump()
        for name, before in previous.model_dump().items():
            if now[name] < before:
                raise FunnelInvariantError(
                    f"Funnel counter '{name}' decreased from {before} to {now[name]}", now
                )


# =============================================================================
# AUDIT & SYNTHESIS
# =============================================================================


class DecisionEvent(BaseModel):
    """Append-only audit entry, one per vote and per verdict."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    event_type: DecisionEventType
    event_key: str | None = Field(
        default=None, description="Uniqueness key; vote and verdict events are written once"
    )
    record_id: str | None = None
    stage: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_vote(cls, run_id: str, vote: Vote) -> DecisionEvent:
        return cls(
            run_id=run_id,
            event_type=DecisionEventType.VOTE_CAST,
            event_key=f"vote:{vote.record_id}:{vote.stage.value}:{vote.reviewer_id}",
            record_id=vote.record_id,
            stage=vote.stage.value,
            payload=vote.model_dump(mode="json"),
            created_at=vote.cast_at,
        )

    @classmethod
    def for_verdict(cls, run_id: str, verdict: Verdict) -> DecisionEvent:
        return cls(
            run_id=run_id,
            event_type=DecisionEventType.VERDICT_RESOLVED,
            event_key=f"verdict:{verdict.record_id}:{verdict.stage.value}",
            record_id=verdict.record_id,
            stage=verdict.stage.value,
            payload={
                "path": verdict.path.value,
                "decision": verdict.decision.value,
                "rationale": verdict.rationale,
                "reviewers": [v.reviewer_id for v in verdict.votes],
            },
            created_at=verdict.resolved_at,
        )

    @classmethod
    def for_stage(cls, run_id: str, stage: Stage, counters: FunnelCounters) -> DecisionEvent:
        return cls(
            run_id=run_id,
            event_type=DecisionEventType.STAGE_COMPLETED,
            event_key=f"stage:{stage.value}",
            stage=stage.value,
            payload={"counters": counters.model_dump()},
        )

    @classmethod
    def for_failure(cls, run_id: str, stage: Stage, error: BaseException) -> DecisionEvent:
        return cls(
            run_id=run_id,
            event_type=DecisionEventType.RUN_FAILED,
            stage=stage.value,
            payload={"error_type": type(error).__name__, "message": str(error)},
        )


class FulltextExclusion(BaseModel):
    """Reason a record was excluded at full-text screening."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    reason: str


class SynthesisSummary(BaseModel):
    """Data summary of a finished screening funnel."""

    model_config = ConfigDict(frozen=True)

    counters: FunnelCounters
    included_record_ids: list[str] = Field(default_factory=list)
    fulltext_exclusions: list[FulltextExclusion] = Field(default_factory=list)
    missing_fulltext: list[str] = Field(default_factory=list)
    adjudicated_by_stage: dict[str, int] = Field(default_factory=dict)
    year_distribution: dict[str, int] = Field(default_factory=dict)
    extracted_count: int = 0


# =============================================================================
# RUN STATE
# =============================================================================


class RunState(BaseModel):
    """
    Aggregate root for one review run.

    Mutated only by the pipeline driver. Votes are keyed by
    (record_id, stage, reviewer_id) and verdicts by (record_id, stage);
    both collections are append-only.
    """

    run_id: str
    stage: Stage = Stage.INIT
    status: RunStatus = RunStatus.PENDING
    criteria: Criteria
    source_files: list[str] = Field(default_factory=list)

    identified: int = Field(default=0, ge=0)
    records: list[Record] = Field(default_factory=list)
    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)

    votes: list[Vote] = Field(default_factory=list)
    verdicts: list[Verdict] = Field(default_factory=list)

    fulltext_paths: dict[str, str] = Field(default_factory=dict)
    missing_fulltext: list[str] = Field(default_factory=list)
    extractions: dict[str, dict[str, Any]] = Field(default_factory=dict)
    synthesis: SynthesisSummary | None = None

    counters: FunnelCounters = Field(default_factory=FunnelCounters)
    error_message: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    _vote_index: dict[tuple[str, ScreeningStage, str], Vote] = PrivateAttr(default_factory=dict)
    _verdict_index: dict[tuple[str, ScreeningStage], Verdict] = PrivateAttr(default_factory=dict)
    _record_index: dict[str, Record] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self.reindex()

    def reindex(self) -> None:
        """Rebuild lookup indexes from the persisted lists."""
        self._record_index = {r.record_id: r for r in self.records}
        self._vote_index = {}
        for vote in self.votes:
            if vote.key in self._vote_index:
                raise StateInvariantError("Duplicate vote in run state", {"key": list(vote.key)})
            self._vote_index[vote.key] = vote
        self._verdict_index = {}
        for verdict in self.verdicts:
            if verdict.key in self._verdict_index:
                raise StateInvariantError(
                    "Duplicate verdict in run state", {"key": list(verdict.key)}
                )
            self._verdict_index[verdict.key] = verdict

    # ==================== Read views ====================

    def get_record(self, record_id: str) -> Record | None:
        return self._record_index.get(record_id)

    def votes_for(self, record_id: str, stage: ScreeningStage) -> list[Vote]:
        return [
            v for key, v in self._vote_index.items() if key[0] == record_id and key[1] == stage
        ]

    def has_vote(self, record_id: str, stage: ScreeningStage, reviewer_id: str) -> bool:
        return (record_id, stage, reviewer_id) in self._vote_index

    def verdict_for(self, record_id: str, stage: ScreeningStage) -> Verdict | None:
        return self._verdict_index.get((record_id, stage))

    def verdicts_for_stage(self, stage: ScreeningStage) -> list[Verdict]:
        return [v for v in self.verdicts if v.stage == stage]

    def included_ids(self, stage: ScreeningStage) -> list[str]:
        """Record ids with an include verdict at ``stage``, in record order."""
        return [
            r.record_id
            for r in self.records
            if (verdict := self.verdict_for(r.record_id, stage)) is not None
            and verdict.decision == FinalDecision.INCLUDE
        ]

    def pending_records(self, stage: ScreeningStage, candidates: list[Record]) -> list[Record]:
        """Candidates that do not yet have a verdict for ``stage``."""
        return [r for r in candidates if (r.record_id, stage) not in self._verdict_index]

    # ==================== Mutations (driver only) ====================

    def set_records(self, records: list[Record], groups: list[DuplicateGroup]) -> None:
        self.records = list(records)
        self.duplicate_groups = list(groups)
        self._record_index = {r.record_id: r for r in self.records}

    def add_vote(self, vote: Vote) -> None:
        if vote.key in self._vote_index:
            raise StateInvariantError("Vote already recorded", {"key": list(vote.key)})
        if vote.record_id not in self._record_index:
            raise StateInvariantError("Vote for unknown record", {"record_id": vote.record_id})
        self.votes.append(vote)
        self._vote_index[vote.key] = vote

    def add_verdict(self, verdict: Verdict) -> None:
        if verdict.key in self._verdict_index:
            raise StateInvariantError("Verdict already recorded", {"key": list(verdict.key)})
        for vote in verdict.votes:
            if not self.has_vote(*vote.key):
                self.add_vote(vote)
        self.verdicts.append(verdict)
        self._verdict_index[verdict.key] = verdict

    def rollback(self, vote_count: int, verdict_count: int, counters: FunnelCounters) -> None:
        """Drop votes and verdicts appended past the given lengths and restore counters."""
        del self.votes[vote_count:]
        del self.verdicts[verdict_count:]
        self.counters = counters
        self.reindex()

    def compute_counters(self) -> FunnelCounters:
        """Derive funnel counters from records and verdicts."""
        abstract = self.verdicts_for_stage(ScreeningStage.ABSTRACT)
        fulltext = self.verdicts_for_stage(ScreeningStage.FULLTEXT)
        return FunnelCounters(
            identified=self.identified,
            deduplicated=len(self.records),
            screened=len(abstract),
            excluded_at_screen=sum(1 for v in abstract if v.decision == FinalDecision.EXCLUDE),
            retrieved=len(self.fulltext_paths),
            excluded_at_fulltext=sum(1 for v in fulltext if v.decision == FinalDecision.EXCLUDE),
            included=sum(1 for v in fulltext if v.decision == FinalDecision.INCLUDE),
        )

    def refresh_counters(self) -> FunnelCounters:
        """Recompute counters, enforce the funnel invariant and store them."""
        counters = self.compute_counters()
        counters.check()
        counters.check_progression(self.counters)
        self.counters = counters
        self.touch()
        return counters

    def touch(self) -> None:
        self.updated_at = utcnow()
