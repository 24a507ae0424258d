"""
Decision Oracle Interfaces

Typed capability contracts the pipeline consumes. Implementations may be
LLM-backed (see ``asr.screening.screener``), human-in-the-loop, or stubs in
tests; the pipeline only depends on these protocols.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from asr.core.enums import ScreeningStage
from asr.core.schemas import AdjudicationResult, Criteria, Record, Vote


class ScreeningRequest(BaseModel):
    """Input to one reviewer for one record at one stage."""

    model_config = ConfigDict(frozen=True)

    record: Record
    criteria: Criteria
    stage: ScreeningStage
    full_text: str | None = Field(default=None, description="Only at the full-text stage")


class AdjudicationRequest(BaseModel):
    """Input to the adjudicator for an escalated panel."""

    model_config = ConfigDict(frozen=True)

    record: Record
    criteria: Criteria
    stage: ScreeningStage
    votes: tuple[Vote, Vote, Vote]
    full_text: str | None = None


class ExtractionRequest(BaseModel):
    """Input to the data extractor for one included record."""

    model_config = ConfigDict(frozen=True)

    record: Record
    criteria: Criteria
    full_text: str


@runtime_checkable
class ScreeningOracle(Protocol):
    """One independently configured reviewer."""

    @property
    def reviewer_id(self) -> str:
        """Stable reviewer identity; part of the vote key."""
        ...

    async def screen(self, request: ScreeningRequest) -> Vote:
        """Return this reviewer's vote for ``request.record``."""
        ...


@runtime_checkable
class AdjudicationOracle(Protocol):
    """Tie-breaker invoked when the consensus engine escalates."""

    async def adjudicate(self, request: AdjudicationRequest) -> AdjudicationResult:
        """Return a binary decision and rationale."""
        ...


@runtime_checkable
class FullTextExtractor(Protocol):
    """Turns a full-text file into plain text."""

    def extract_text(self, path: Path) -> str:
        ...


@runtime_checkable
class DataExtractor(Protocol):
    """Charts study data from an included record's full text."""

    async def extract(self, request: ExtractionRequest) -> dict[str, Any]:
        ...


@runtime_checkable
class RecordParser(Protocol):
    """Reads one bibliographic source file into records."""

    def parse(self, path: Path) -> list[Record]:
        ...
