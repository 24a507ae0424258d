"""
ASR Core Enumerations

This module defines all enumerations used throughout the ASR system.
These are critical for maintaining type safety and consistent vocabulary.
"""

from enum import Enum


class Stage(str, Enum):
    """Pipeline stages in execution order.

    The persisted stage marker names the last stage that completed.
    """

    INIT = "init"
    INGESTED = "ingested"
    ABSTRACT_SCREENING = "abstract_screening"
    FULLTEXT_GATE = "fulltext_gate"
    FULLTEXT_SCREENING = "fulltext_screening"
    EXTRACTION = "extraction"
    SYNTHESIS = "synthesis"
    COMPLETE = "complete"


class ScreeningStage(str, Enum):
    """Screening rounds that collect reviewer votes."""

    ABSTRACT = "abstract"
    FULLTEXT = "fulltext"


class VoteDecision(str, Enum):
    """A single reviewer's decision."""

    INCLUDE = "include"
    EXCLUDE = "exclude"
    UNSURE = "unsure"


class FinalDecision(str, Enum):
    """Binary outcome of a resolved verdict. No unsure terminal state."""

    INCLUDE = "include"
    EXCLUDE = "exclude"


class ResolutionPath(str, Enum):
    """How a verdict was reached."""

    AUTO_MAJORITY = "auto_majority"
    ADJUDICATED = "adjudicated"


class ConsensusStatus(str, Enum):
    """Outcome of the consensus rule before adjudication."""

    DECIDED = "decided"
    ESCALATE = "escalate"


class DedupStrategy(str, Enum):
    """Matching strategy that flagged a duplicate (audit reason)."""

    EXACT_IDENTIFIER = "exact_identifier"
    TITLE_SIMILARITY = "title_similarity"
    AUTHOR_YEAR_TITLE = "author_year_title"


class RunStatus(str, Enum):
    """Status of an ASR run.

    - PENDING: created, no stage executed yet
    - RUNNING: stage walk in progress
    - WAITING_FULLTEXT: halted at the full-text gate until PDFs are supplied
    - COMPLETED: every stage finished
    - FAILED: a stage raised; the last good checkpoint is persisted
    """

    PENDING = "pending"
    RUNNING = "running"
    WAITING_FULLTEXT = "waiting_fulltext"
    COMPLETED = "completed"
    FAILED = "failed"


class DecisionEventType(str, Enum):
    """Audit log entry types."""

    VOTE_CAST = "vote_cast"
    VERDICT_RESOLVED = "verdict_resolved"
    STAGE_COMPLETED = "stage_completed"
    RUN_FAILED = "run_failed"
