"""
Tests for the Pipeline Driver

End-to-end stage walks with scripted oracles: funnel counts, adjudication,
resume after failure, the full-text gate and oracle output validation.
"""

import asyncio
import json
from pathlib import Path

import pytest

from asr.config import reset_settings
from asr.core.enums import (
    DecisionEventType,
    FinalDecision,
    ResolutionPath,
    RunStatus,
    ScreeningStage,
    Stage,
)
from asr.core.exceptions import (
    AdjudicationContractError,
    ConfigurationError,
    CriteriaValidationError,
    OracleCallError,
    OracleResponseError,
    PersistenceError,
    RecordParsingError,
)
from asr.core.schemas import Record, Vote
from asr.orchestration import PipelineDriver
from asr.screening.oracles import ExtractionRequest, ScreeningRequest
from asr.storage import RunStore

from conftest import ScriptedAdjudicator, ScriptedReviewer, StaticTextExtractor, make_vote

SOURCE_RECORDS = [
    {
        "title": "Alpha: app-based coaching for type 2 diabetes",
        "authors": ["Smith J", "Doe A"],
        "year": 2021,
        "journal": "Diabetes Care",
        "doi": "10.1000/alpha",
        "abstract": "Adults with type 2 diabetes used a coaching app in primary care.",
    },
    {
        "title": "Beta: school meal programmes and childhood obesity",
        "authors": ["Lee K"],
        "year": 2019,
        "doi": "10.1000/beta",
        "abstract": "Children in 40 schools.",
    },
    {
        "title": "Gamma: web portal self-management in primary care",
        "authors": ["Garcia M", "Chen L"],
        "year": 2020,
        "abstract": "Mixed population including type 1 and type 2 diabetes.",
    },
    {
        "title": "Delta: text message reminders for insulin adherence",
        "authors": ["Okafor N"],
        "year": 2022,
        "abstract": "Adults with diabetes received SMS reminders.",
    },
    {
        "title": "ALPHA - App based coaching for type-2 diabetes",
        "authors": ["Smith J"],
        "year": 2021,
        "doi": "https://doi.org/10.1000/ALPHA",
    },
]


def _record_id(entry: dict) -> str:
    return Record.compute_id(entry["title"], entry["authors"], entry["year"])


ALPHA, BETA, GAMMA, DELTA = (_record_id(e) for e in SOURCE_RECORDS[:4])


class ScriptedDataExtractor:
    def __init__(self) -> None:
        self.requests: list[ExtractionRequest] = []

    async def extract(self, request: ExtractionRequest) -> dict:
        self.requests.append(request)
        return {"design": "Randomized controlled trial", "country": "Ghana"}


class WrongReviewer:
    """Returns a vote signed by a different reviewer."""

    reviewer_id = "reviewer-3"

    async def screen(self, request: ScreeningRequest) -> Vote:
        return make_vote(request.record.record_id, "impostor", "include", request.stage)


class FlakyRunStore(RunStore):
    """Fails once, on the checkpoint that carries the Nth verdict."""

    def __init__(self, fail_on_verdict: int) -> None:
        super().__init__()
        self.fail_on_verdict = fail_on_verdict
        self.verdict_checkpoints = 0

    def save_checkpoint(self, state, events=()) -> None:
        events = list(events)
        if any(e.event_type == DecisionEventType.VERDICT_RESOLVED for e in events):
            self.verdict_checkpoints += 1
            if self.verdict_checkpoints == self.fail_on_verdict:
                raise PersistenceError("database is locked", state.run_id)
        super().save_checkpoint(state, events)


def make_panel(fail_on: dict[str, list[str]] | None = None) -> list[ScriptedReviewer]:
    """Alpha and Delta pass abstracts, Beta is excluded, Gamma escalates.

    At full text, Delta is excluded by everyone.
    """
    fail_on = fail_on or {}
    scripts = {
        "reviewer-1": {"Beta": "exclude", "Gamma": "include"},
        "reviewer-2": {"Beta": "exclude", "Gamma": "exclude"},
        "reviewer-3": {"Beta": "exclude", "Gamma": "unsure"},
    }
    return [
        ScriptedReviewer(
            reviewer_id,
            script,
            fail_on=fail_on.get(reviewer_id),
            fulltext_script={"Delta": "exclude"},
        )
        for reviewer_id, script in scripts.items()
    ]


@pytest.fixture
def source_file(workspace: Path) -> Path:
    path = workspace / "search.json"
    path.write_text(json.dumps({"records": SOURCE_RECORDS}), encoding="utf-8")
    return path


@pytest.fixture
def supply_pdfs(workspace: Path):
    def supply(*record_ids: str) -> None:
        for record_id in record_ids:
            (workspace / "pdfs" / f"{record_id}.pdf").write_bytes(b"%PDF-1.4 placeholder")

    return supply


@pytest.fixture
def store(workspace: Path) -> RunStore:
    return RunStore()


def build_driver(store: RunStore, panel=None, adjudicator=None, **kwargs) -> PipelineDriver:
    kwargs.setdefault("full_text_extractor", StaticTextExtractor())
    return PipelineDriver(
        store=store,
        abstract_panel=panel if panel is not None else make_panel(),
        adjudicator=adjudicator or ScriptedAdjudicator("exclude", "Mixed population"),
        **kwargs,
    )


class TestFullRun:
    """A clean run from ingestion to completion."""

    @pytest.fixture
    def completed(self, store, source_file, sample_criteria, supply_pdfs, workspace):
        supply_pdfs(ALPHA, DELTA)
        panel = make_panel()
        adjudicator = ScriptedAdjudicator("exclude", "Mixed population, not clearly in scope")
        extractor = ScriptedDataExtractor()
        driver = build_driver(store, panel, adjudicator, data_extractor=extractor)
        state = asyncio.run(driver.run(sample_criteria, [source_file], run_id="run-e2e"))
        return driver, state, panel, adjudicator, extractor

    def test_run_completes(self, completed):
        _, state, _, _, _ = completed
        assert state.status == RunStatus.COMPLETED
        assert state.stage == Stage.COMPLETE
        assert state.error_message is None

    def test_funnel_counters(self, completed):
        _, state, _, _, _ = completed
        counters = state.counters
        assert counters.identified == 5
        assert counters.deduplicated == 4
        assert counters.screened == 4
        assert counters.excluded_at_screen == 2
        assert counters.retrieved == 2
        assert counters.excluded_at_fulltext == 1
        assert counters.included == 1
        counters.check()

    def test_duplicate_collapsed_by_identifier(self, completed):
        _, state, _, _, _ = completed
        assert [g.canonical_id for g in state.duplicate_groups] == [ALPHA]
        assert state.duplicate_groups[0].matches[0].strategy.value == "exact_identifier"

    def test_escalated_record_stored_as_adjudicated_exclude(self, completed):
        _, state, _, adjudicator, _ = completed
        verdict = state.verdict_for(GAMMA, ScreeningStage.ABSTRACT)
        assert verdict.path == ResolutionPath.ADJUDICATED
        assert verdict.decision == FinalDecision.EXCLUDE
        assert verdict.rationale == "Mixed population, not clearly in scope"
        assert len(adjudicator.requests) == 1
        assert adjudicator.requests[0].record.record_id == GAMMA

    def test_one_verdict_and_three_votes_per_record_and_stage(self, completed):
        _, state, _, _, _ = completed
        assert len(state.verdicts_for_stage(ScreeningStage.ABSTRACT)) == 4
        assert len(state.verdicts_for_stage(ScreeningStage.FULLTEXT)) == 2
        assert len(state.votes) == 18
        for verdict in state.verdicts:
            assert len(state.votes_for(verdict.record_id, verdict.stage)) == 3

    def test_fulltext_screening_receives_text(self, completed):
        driver, state, panel, _, _ = completed
        assert {Path(p).name for p in state.fulltext_paths.values()} == {
            f"{ALPHA}.pdf",
            f"{DELTA}.pdf",
        }
        assert len(driver.full_text_extractor.paths) >= 2
        fulltext_calls = [c for c in panel[0].calls if c[1] == ScreeningStage.FULLTEXT]
        assert sorted(rid for rid, _ in fulltext_calls) == sorted([ALPHA, DELTA])

    def test_extraction_for_included_only(self, completed):
        _, state, _, _, extractor = completed
        assert list(state.extractions) == [ALPHA]
        assert state.extractions[ALPHA]["design"] == "Randomized controlled trial"
        assert [r.record.record_id for r in extractor.requests] == [ALPHA]

    def test_synthesis_summary(self, completed):
        _, state, _, _, _ = completed
        summary = state.synthesis
        assert summary.included_record_ids == [ALPHA]
        assert [e.record_id for e in summary.fulltext_exclusions] == [DELTA]
        assert summary.fulltext_exclusions[0].reason
        assert summary.adjudicated_by_stage == {"abstract": 1, "fulltext": 0}
        assert summary.year_distribution == {"2021": 1}
        assert summary.extracted_count == 1
        assert summary.counters == state.counters

    def test_audit_log(self, completed, store):
        _, state, _, _, _ = completed
        events = store.get_events(state.run_id)
        by_type = {}
        for event in events:
            by_type.setdefault(event.event_type, []).append(event)

        assert len(by_type[DecisionEventType.VOTE_CAST]) == 18
        assert len(by_type[DecisionEventType.VERDICT_RESOLVED]) == 6
        assert [e.stage for e in by_type[DecisionEventType.STAGE_COMPLETED]] == [
            s.value for s in Stage if s != Stage.INIT
        ]
        assert DecisionEventType.RUN_FAILED not in by_type

    def test_artifacts_exported(self, completed, workspace, store):
        _, state, _, _, _ = completed
        run_dir = workspace / "artifacts" / state.run_id
        exported = json.loads((run_dir / "state.json").read_text())
        assert exported["status"] == "completed"
        assert exported["stage"] == "complete"

        log_lines = (run_dir / "decision_log.jsonl").read_text().splitlines()
        assert len(log_lines) == store.count_events(state.run_id)

    def test_persisted_state_matches(self, completed, store):
        _, state, _, _, _ = completed
        loaded = store.load_state(state.run_id)
        assert loaded.status == RunStatus.COMPLETED
        assert loaded.counters == state.counters
        assert len(loaded.votes) == len(state.votes)

    def test_advancing_again_appends_nothing(self, completed, store):
        driver, state, panel, adjudicator, _ = completed
        events_before = store.count_events(state.run_id)
        calls_before = [len(r.calls) for r in panel]

        resumed = asyncio.run(driver.resume(state.run_id))
        assert resumed.status == RunStatus.COMPLETED

        # Re-screening a finished stage skips every decided record
        asyncio.run(driver.screen_records(resumed, ScreeningStage.ABSTRACT, resumed.records))

        assert store.count_events(state.run_id) == events_before
        assert [len(r.calls) for r in panel] == calls_before
        assert len(adjudicator.requests) == 1
        assert len(resumed.votes) == 18


class TestResume:
    """Failures flush progress; resume finishes without duplicating work."""

    def test_oracle_failure_flushes_and_resumes(
        self, store, source_file, sample_criteria, supply_pdfs
    ):
        supply_pdfs(ALPHA, DELTA)
        panel = make_panel(fail_on={"reviewer-2": ["Beta"]})
        driver = build_driver(store, panel)
        state = driver.create_run(sample_criteria, [source_file])

        with pytest.raises(OracleCallError):
            asyncio.run(driver.advance(state))

        failed = store.load_state(state.run_id)
        assert failed.status == RunStatus.FAILED
        assert "OracleCallError" in failed.error_message
        assert failed.stage == Stage.INGESTED
        # Records that finished in the same batch were kept
        assert {v.record_id for v in failed.verdicts} == {ALPHA, GAMMA, DELTA}
        # Partial panel for the failed record is kept too
        assert {v.reviewer_id for v in failed.votes_for(BETA, ScreeningStage.ABSTRACT)} == {
            "reviewer-1",
            "reviewer-3",
        }
        failure_events = [
            e for e in store.get_events(state.run_id)
            if e.event_type == DecisionEventType.RUN_FAILED
        ]
        assert len(failure_events) == 1
        assert failure_events[0].stage == Stage.ABSTRACT_SCREENING.value

        resumed = asyncio.run(driver.resume(state.run_id))
        assert resumed.status == RunStatus.COMPLETED
        assert resumed.verdict_for(BETA, ScreeningStage.ABSTRACT).decision == FinalDecision.EXCLUDE

        beta_calls = {
            reviewer.reviewer_id: [c for c in reviewer.calls if c == (BETA, ScreeningStage.ABSTRACT)]
            for reviewer in panel
        }
        assert len(beta_calls["reviewer-1"]) == 1
        assert len(beta_calls["reviewer-2"]) == 2
        assert len(beta_calls["reviewer-3"]) == 1
        assert len(resumed.votes) == 18

    def test_failed_checkpoint_leaves_state_and_log_in_step(
        self, workspace, source_file, sample_criteria, supply_pdfs
    ):
        supply_pdfs(ALPHA, DELTA)
        flaky = FlakyRunStore(fail_on_verdict=2)
        panel = make_panel()
        driver = build_driver(flaky, panel)
        state = driver.create_run(sample_criteria, [source_file])

        with pytest.raises(PersistenceError):
            asyncio.run(driver.advance(state))

        failed = flaky.load_state(state.run_id)
        events = flaky.get_events(state.run_id)
        verdict_events = [e for e in events if e.event_type == DecisionEventType.VERDICT_RESOLVED]
        vote_events = [e for e in events if e.event_type == DecisionEventType.VOTE_CAST]
        assert failed.status == RunStatus.FAILED
        # The rest of the batch still finished after the failed write
        assert len(failed.verdicts) == len(verdict_events) == 3
        assert len(failed.votes) == len(vote_events) == 9
        assert {(v.record_id, v.stage.value) for v in failed.verdicts} == {
            (e.record_id, e.stage) for e in verdict_events
        }
        assert len(state.verdicts) == 3
        assert failed.counters.screened == 3

        resumed = asyncio.run(driver.resume(state.run_id))
        assert resumed.status == RunStatus.COMPLETED
        events = flaky.get_events(state.run_id)
        assert len(resumed.votes) == 18
        assert sum(e.event_type == DecisionEventType.VOTE_CAST for e in events) == 18
        assert sum(e.event_type == DecisionEventType.VERDICT_RESOLVED for e in events) == 6

    def test_adjudication_contract_violation(self, store, source_file, sample_criteria, supply_pdfs):
        supply_pdfs(ALPHA, DELTA)
        panel = make_panel()
        driver = build_driver(store, panel, ScriptedAdjudicator(decision=None))
        state = driver.create_run(sample_criteria, [source_file])

        with pytest.raises(AdjudicationContractError):
            asyncio.run(driver.advance(state))

        failed = store.load_state(state.run_id)
        assert failed.status == RunStatus.FAILED
        assert failed.verdict_for(GAMMA, ScreeningStage.ABSTRACT) is None
        assert len(failed.votes_for(GAMMA, ScreeningStage.ABSTRACT)) == 3

        fixed = build_driver(store, panel, ScriptedAdjudicator("include", "Meets criteria"))
        resumed = asyncio.run(fixed.resume(state.run_id))
        assert resumed.status == RunStatus.COMPLETED
        verdict = resumed.verdict_for(GAMMA, ScreeningStage.ABSTRACT)
        assert verdict.decision == FinalDecision.INCLUDE
        gamma_calls = [c for c in panel[0].calls if c == (GAMMA, ScreeningStage.ABSTRACT)]
        assert len(gamma_calls) == 1

    def test_wrong_reviewer_vote_rejected(self, store, source_file, sample_criteria):
        panel = [*make_panel()[:2], WrongReviewer()]
        driver = build_driver(store, panel)
        state = driver.create_run(sample_criteria, [source_file])

        with pytest.raises(OracleResponseError):
            asyncio.run(driver.advance(state))

        failed = store.load_state(state.run_id)
        assert failed.status == RunStatus.FAILED
        assert failed.verdicts == []
        assert all(v.reviewer_id != "impostor" for v in failed.votes)


class TestFulltextGate:
    """Human-gated pause while PDFs are missing."""

    def test_blocking_gate_waits(self, store, source_file, sample_criteria, supply_pdfs):
        supply_pdfs(ALPHA)
        driver = build_driver(store)
        state = asyncio.run(driver.run(sample_criteria, [source_file]))

        assert state.status == RunStatus.WAITING_FULLTEXT
        assert state.stage == Stage.ABSTRACT_SCREENING
        assert state.missing_fulltext == [DELTA]
        assert state.counters.retrieved == 1
        assert store.get_run(state.run_id)["status"] == RunStatus.WAITING_FULLTEXT.value

        # Still missing: resume halts again
        again = asyncio.run(driver.resume(state.run_id))
        assert again.status == RunStatus.WAITING_FULLTEXT

        supply_pdfs(DELTA)
        resumed = asyncio.run(driver.resume(state.run_id))
        assert resumed.status == RunStatus.COMPLETED
        assert resumed.missing_fulltext == []
        assert resumed.counters.retrieved == 2

    def test_non_blocking_gate_skips_missing(
        self, store, source_file, sample_criteria, supply_pdfs, monkeypatch
    ):
        monkeypatch.setenv("ASR_FULLTEXT_GATE_BLOCKING", "false")
        reset_settings()  # the store fixture already cached settings
        supply_pdfs(ALPHA)
        driver = build_driver(store)
        state = asyncio.run(driver.run(sample_criteria, [source_file]))

        assert state.status == RunStatus.COMPLETED
        assert state.missing_fulltext == [DELTA]
        assert state.verdict_for(DELTA, ScreeningStage.FULLTEXT) is None
        assert state.counters.retrieved == 1
        assert state.counters.included == 1
        assert state.synthesis.missing_fulltext == [DELTA]


class TestDriverValidation:
    """Inputs are rejected before any stage runs."""

    def test_invalid_criteria(self, store, source_file, sample_criteria):
        sample_criteria["inclusion"] = []
        driver = build_driver(store)
        with pytest.raises(CriteriaValidationError):
            driver.create_run(sample_criteria, [source_file])
        assert store.list_runs() == []

    def test_unsupported_source(self, store, workspace, sample_criteria):
        driver = build_driver(store)
        with pytest.raises(RecordParsingError):
            driver.create_run(sample_criteria, [workspace / "search.xlsx"])

    @pytest.mark.parametrize("size", [2, 4])
    def test_panel_size(self, store, size):
        panel = [ScriptedReviewer(f"reviewer-{n}") for n in range(size)]
        with pytest.raises(ConfigurationError):
            build_driver(store, panel)

    def test_panel_reviewer_ids_distinct(self, store):
        panel = [ScriptedReviewer("same") for _ in range(3)]
        with pytest.raises(ConfigurationError):
            build_driver(store, panel)

    def test_missing_source_file_fails_run(self, store, workspace, sample_criteria):
        driver = build_driver(store)
        state = driver.create_run(sample_criteria, [workspace / "missing.json"])
        with pytest.raises(RecordParsingError):
            asyncio.run(driver.advance(state))
        assert store.load_state(state.run_id).status == RunStatus.FAILED
        assert store.load_state(state.run_id).stage == Stage.INIT


class TestBatching:
    """Records are screened in batches with checkpoints per record."""

    def test_small_batches(self, store, source_file, sample_criteria, supply_pdfs, monkeypatch):
        monkeypatch.setenv("ASR_BATCH_SIZE", "1")
        supply_pdfs(ALPHA, DELTA)
        driver = build_driver(store)
        state = asyncio.run(driver.run(sample_criteria, [source_file]))
        assert state.status == RunStatus.COMPLETED
        assert state.counters.included == 1
