"""
ASR Test Configuration

Shared fixtures, scripted oracles and test utilities.
"""

import os
import tempfile
from pathlib import Path
from typing import Generator

import pytest

# Set test environment before any imports
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("ASR_BATCH_DELAY_SECONDS", "0")

# Use temp directories for storage during tests
_test_temp_dir = Path(tempfile.gettempdir()) / "asr_test"
_test_temp_dir.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("ASR_ARTIFACT_PATH", str(_test_temp_dir / "artifacts"))
os.environ.setdefault("ASR_DB_PATH", str(_test_temp_dir / "asr_test.db"))

from asr.core.enums import ScreeningStage, VoteDecision  # noqa: E402
from asr.core.schemas import AdjudicationResult, EvidenceQuote, Record, Vote  # noqa: E402
from asr.screening.oracles import AdjudicationRequest, ScreeningRequest  # noqa: E402


@pytest.fixture(autouse=True)
def reset_settings() -> Generator[None, None, None]:
    """Reset settings, tracers and metrics before each test."""
    from asr.config import reset_settings
    from asr.observability import reset_metrics, reset_tracers

    reset_settings()
    reset_tracers()
    reset_metrics()
    yield
    reset_settings()
    reset_tracers()
    reset_metrics()


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point storage and the PDF directory at a per-test directory."""
    monkeypatch.setenv("ASR_DB_PATH", str(tmp_path / "asr.db"))
    monkeypatch.setenv("ASR_ARTIFACT_PATH", str(tmp_path / "artifacts"))
    monkeypatch.setenv("ASR_PDFS_DIR", str(tmp_path / "pdfs"))
    monkeypatch.setenv("ASR_BATCH_DELAY_SECONDS", "0")
    (tmp_path / "pdfs").mkdir()
    return tmp_path


@pytest.fixture
def sample_criteria() -> dict:
    """Sample review criteria."""
    return {
        "pcc": {
            "population": "Adults living with type 2 diabetes",
            "concept": "Digital self-management interventions",
            "context": "Primary care, any country",
        },
        "inclusion": [
            "Evaluates a smartphone or web-based self-management tool",
            "Reports at least one patient-level outcome",
        ],
        "exclusion": ["Conference abstracts without full data"],
    }


@pytest.fixture
def sample_record() -> Record:
    """Sample bibliographic record."""
    return Record(
        title="Smartphone coaching for glycaemic control in type 2 diabetes",
        authors=("Smith J", "Doe A"),
        year=2021,
        venue="Diabetes Care",
        external_id="10.2337/dc21-0001",
        abstract="A randomized trial of an app-based coaching programme in primary care.",
        source_file="pubmed.json",
    )


def make_vote(
    record_id: str,
    reviewer_id: str,
    decision: VoteDecision | str,
    stage: ScreeningStage = ScreeningStage.ABSTRACT,
) -> Vote:
    """Valid vote with placeholder reasons and evidence."""
    return Vote(
        record_id=record_id,
        stage=stage,
        reviewer_id=reviewer_id,
        decision=VoteDecision(decision),
        reasons=("Population matches criteria", "Concept is in scope"),
        evidence=(EvidenceQuote(text="adults with type 2 diabetes", location="abstract"),),
    )


def make_panel_votes(
    record_id: str,
    decisions: list[str],
    stage: ScreeningStage = ScreeningStage.ABSTRACT,
) -> list[Vote]:
    return [
        make_vote(record_id, f"reviewer-{n}", decision, stage)
        for n, decision in enumerate(decisions, start=1)
    ]


class ScriptedReviewer:
    """ScreeningOracle answering from a per-title script.

    ``script`` maps a title substring to a decision; unmatched records get
    ``default``. ``fulltext_script`` replaces ``script`` at the full-text
    stage. Titles listed in ``fail_on`` raise once per listed entry.
    """

    def __init__(
        self,
        reviewer_id: str,
        script: dict[str, str] | None = None,
        default: str = "include",
        fail_on: list[str] | None = None,
        fulltext_script: dict[str, str] | None = None,
    ) -> None:
        self._reviewer_id = reviewer_id
        self.script = script or {}
        self.fulltext_script = fulltext_script
        self.default = default
        self.fail_on = list(fail_on or [])
        self.calls: list[tuple[str, ScreeningStage]] = []

    @property
    def reviewer_id(self) -> str:
        return self._reviewer_id

    def _decide(self, request: ScreeningRequest) -> str:
        script = self.script
        if request.stage == ScreeningStage.FULLTEXT and self.fulltext_script is not None:
            script = self.fulltext_script
        for needle, decision in script.items():
            if needle in request.record.title:
                return decision
        return self.default

    async def screen(self, request: ScreeningRequest) -> Vote:
        self.calls.append((request.record.record_id, request.stage))
        for needle in self.fail_on:
            if needle in request.record.title:
                self.fail_on.remove(needle)
                raise RuntimeError(f"reviewer {self._reviewer_id} unavailable")
        return make_vote(
            request.record.record_id, self._reviewer_id, self._decide(request), request.stage
        )


class ScriptedAdjudicator:
    """AdjudicationOracle returning a fixed decision."""

    def __init__(self, decision: str | None = "exclude", rationale: str | None = None) -> None:
        self.decision = decision
        self.rationale = rationale if rationale is not None else "Criteria not clearly met"
        self.requests: list[AdjudicationRequest] = []

    async def adjudicate(self, request: AdjudicationRequest) -> AdjudicationResult:
        self.requests.append(request)
        return AdjudicationResult(
            decision=VoteDecision(self.decision) if self.decision else None,
            rationale=self.rationale,
            model="scripted",
        )


class StaticTextExtractor:
    """FullTextExtractor returning canned text."""

    def __init__(self, text: str = "PAGE 1:\nMethods: adults with type 2 diabetes.") -> None:
        self.text = text
        self.paths: list[Path] = []

    def extract_text(self, path: Path) -> str:
        self.paths.append(path)
        return self.text
