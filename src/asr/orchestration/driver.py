"""
Pipeline Driver

Owns a run's RunState and walks it through the stage graph. The driver is
the only writer of RunState: oracle work runs concurrently, but every
result is folded into state and checkpointed here, one record at a time.

Usage:
    driver = PipelineDriver(
        store=RunStore(),
        abstract_panel=create_screening_panel(ScreeningStage.ABSTRACT, provider),
        adjudicator=LLMAdjudicator(provider),
    )
    state = driver.create_run(criteria, ["exports/pubmed.ris"])
    state = await driver.advance(state)

    # after a crash, an interrupt, or once missing PDFs are supplied
    state = await driver.resume(state.run_id)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from asr.config import Settings, get_settings
from asr.consensus import PANEL_SIZE, build_verdict, resolve
from asr.core.enums import ConsensusStatus, RunStatus, ScreeningStage, Stage
from asr.core.exceptions import (
    ASRError,
    ConfigurationError,
    OracleCallError,
    OracleResponseError,
    PersistenceError,
    StageExecutionError,
)
from asr.core.schemas import (
    AdjudicationResult,
    Criteria,
    DecisionEvent,
    Record,
    RunState,
    Verdict,
    Vote,
    load_criteria,
)
from asr.ingest import DEFAULT_PARSERS, parser_for
from asr.observability import get_asr_metrics, get_tracer
from asr.orchestration.graph import PipelineGraphState, build_pipeline_graph
from asr.orchestration.stages import next_stage
from asr.parsing import PdfTextExtractor
from asr.screening.oracles import (
    AdjudicationOracle,
    AdjudicationRequest,
    DataExtractor,
    ExtractionRequest,
    FullTextExtractor,
    RecordParser,
    ScreeningOracle,
    ScreeningRequest,
)
from asr.storage import ArtifactStore, RunStore

logger = logging.getLogger(__name__)


@dataclass
class RecordOutcome:
    """What one record's screening task produced, folded by the driver."""

    record_id: str
    new_votes: list[Vote] = field(default_factory=list)
    verdict: Verdict | None = None
    error: BaseException | None = None


def generate_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"run-{stamp}-{uuid.uuid4().hex[:6]}"


def _check_panel(panel: Sequence[ScreeningOracle], name: str) -> list[ScreeningOracle]:
    panel = list(panel)
    reviewer_ids = {oracle.reviewer_id for oracle in panel}
    if len(panel) != PANEL_SIZE or len(reviewer_ids) != PANEL_SIZE:
        raise ConfigurationError(
            f"{name} panel needs {PANEL_SIZE} reviewers with distinct ids",
            {"reviewers": [oracle.reviewer_id for oracle in panel]},
        )
    return panel


class PipelineDriver:
    """
    Runs, resumes and checkpoints review runs.

    Oracles are injected; the driver validates what they return and never
    lets a malformed answer reach RunState.
    """

    def __init__(
        self,
        store: RunStore,
        abstract_panel: Sequence[ScreeningOracle],
        adjudicator: AdjudicationOracle,
        *,
        fulltext_panel: Sequence[ScreeningOracle] | None = None,
        full_text_extractor: FullTextExtractor | None = None,
        data_extractor: DataExtractor | None = None,
        record_parsers: tuple[RecordParser, ...] = DEFAULT_PARSERS,
        artifact_store: ArtifactStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.artifacts = artifact_store or ArtifactStore(self.settings.storage.artifact_path)
        self.panels = {
            ScreeningStage.ABSTRACT: _check_panel(abstract_panel, "Abstract"),
            ScreeningStage.FULLTEXT: _check_panel(
                fulltext_panel if fulltext_panel is not None else abstract_panel, "Full-text"
            ),
        }
        self.adjudicator = adjudicator
        self.full_text_extractor = full_text_extractor or PdfTextExtractor()
        self.data_extractor = data_extractor
        self.record_parsers = record_parsers

        self.metrics = get_asr_metrics()
        self.tracer = get_tracer("asr.pipeline")
        self.graph = build_pipeline_graph()

    # ==================== Run lifecycle ====================

    def create_run(
        self,
        criteria: Criteria | dict[str, Any],
        source_files: Iterable[str | Path],
        run_id: str | None = None,
    ) -> RunState:
        """
        Validate inputs and persist a new run at the INIT marker.

        Raises:
            CriteriaValidationError: Malformed criteria.
            RecordParsingError: A source file has no registered parser.
            PersistenceError: The run id is already taken.
        """
        criteria = load_criteria(criteria)
        sources = [str(Path(p)) for p in source_files]
        for path in sources:
            parser_for(Path(path), self.record_parsers)

        state = RunState(
            run_id=run_id or generate_run_id(), criteria=criteria, source_files=sources
        )
        self.store.create_run(state)
        return state

    async def run(
        self,
        criteria: Criteria | dict[str, Any],
        source_files: Iterable[str | Path],
        run_id: str | None = None,
    ) -> RunState:
        """Create a run and advance it as far as it will go."""
        return await self.advance(self.create_run(criteria, source_files, run_id))

    async def resume(self, run_id: str) -> RunState:
        """
        Reload the last checkpoint and continue from its stage marker.

        Completed runs are returned unchanged.
        """
        state = self.store.load_state(run_id)
        if state.status == RunStatus.COMPLETED:
            logger.info("Run %s already completed", run_id)
            return state
        logger.info("Resuming run %s after stage '%s'", run_id, state.stage.value)
        return await self.advance(state)

    async def advance(self, state: RunState) -> RunState:
        """
        Run every stage after the persisted marker, in order.

        Halts early with status WAITING_FULLTEXT at a blocking full-text
        gate. On error the last good state is flushed with status FAILED
        and the error is re-raised.
        """
        if state.status == RunStatus.COMPLETED:
            return state

        state.status = RunStatus.RUNNING
        state.error_message = None
        state.touch()
        self.checkpoint(state)

        with self.tracer.span("advance", {"run_id": state.run_id}) as span:
            span.set_attribute("from_stage", state.stage.value)
            try:
                await self.graph.ainvoke(
                    PipelineGraphState(run_id=state.run_id, stage=state.stage),
                    config={"configurable": {"driver": self, "run_state": state}},
                )
            except ASRError as e:
                self._fail(state, e)
                raise
            except Exception as e:
                failed = next_stage(state.stage) or state.stage
                wrapped = StageExecutionError(failed.value, f"{type(e).__name__}: {e}")
                self._fail(state, wrapped)
                raise wrapped from e

            span.set_attribute("to_stage", state.stage.value)
            span.set_attribute("status", state.status.value)

        self.metrics.runs_total.inc(labels={"status": state.status.value})
        logger.info(
            "Run %s stopped after stage '%s' with status %s",
            state.run_id,
            state.stage.value,
            state.status.value,
        )
        return state

    def _fail(self, state: RunState, error: ASRError) -> None:
        failed = next_stage(state.stage) or state.stage
        state.status = RunStatus.FAILED
        state.error_message = f"{type(error).__name__}: {error}"
        state.touch()

        self.metrics.errors.inc(labels={"type": type(error).__name__})
        self.metrics.runs_total.inc(labels={"status": RunStatus.FAILED.value})
        logger.error("Run %s failed in stage '%s': %s", state.run_id, failed.value, error)

        try:
            self.checkpoint(state, [DecisionEvent.for_failure(state.run_id, failed, error)])
        except PersistenceError as persist_err:
            # The original error is the one the caller needs to see
            logger.error("Could not persist failure of run %s: %s", state.run_id, persist_err)

    # ==================== Checkpointing ====================

    def checkpoint(self, state: RunState, events: Iterable[DecisionEvent] = ()) -> None:
        self.store.save_checkpoint(state, events)

    def complete_stage(
        self, state: RunState, stage: Stage, event: DecisionEvent | None = None
    ) -> None:
        """Advance the marker to ``stage`` and checkpoint with a stage event."""
        previous_stage, previous_counters = state.stage, state.counters
        state.stage = stage
        try:
            counters = state.refresh_counters()
            self.checkpoint(state, [event or DecisionEvent.for_stage(state.run_id, stage, counters)])
        except Exception:
            state.stage, state.counters = previous_stage, previous_counters
            raise
        self.metrics.stages_completed.inc(labels={"stage": stage.value})
        logger.info("Run %s completed stage '%s'", state.run_id, stage.value)

    def _fold(self, state: RunState, stage: ScreeningStage, outcome: RecordOutcome) -> None:
        """
        Apply one record's votes and verdict to ``state`` and checkpoint them.

        All or nothing: if any step fails, including the checkpoint, the
        in-memory state is rolled back so it never holds decisions the
        event log lacks.
        """
        if not outcome.new_votes and outcome.verdict is None:
            return

        vote_count, verdict_count, counters = len(state.votes), len(state.verdicts), state.counters
        events = []
        try:
            for vote in outcome.new_votes:
                state.add_vote(vote)
                events.append(DecisionEvent.for_vote(state.run_id, vote))
            if outcome.verdict is not None:
                state.add_verdict(outcome.verdict)
                events.append(DecisionEvent.for_verdict(state.run_id, outcome.verdict))
            state.refresh_counters()
            self.checkpoint(state, events)
        except Exception:
            state.rollback(vote_count, verdict_count, counters)
            raise

        for vote in outcome.new_votes:
            self.metrics.votes_cast.inc(
                labels={"stage": stage.value, "decision": vote.decision.value}
            )
        if outcome.verdict is not None:
            self.metrics.verdicts.inc(
                labels={
                    "stage": stage.value,
                    "path": outcome.verdict.path.value,
                    "decision": outcome.verdict.decision.value,
                }
            )

    # ==================== Screening ====================

    async def screen_records(
        self,
        state: RunState,
        stage: ScreeningStage,
        candidates: list[Record],
        load_full_text: Callable[[Record], str] | None = None,
    ) -> None:
        """
        Bring every candidate to a verdict at ``stage``.

        Candidates that already have a verdict are skipped. Records run in
        batches; within a batch they complete in any order and each one is
        checkpointed as it finishes. If any record fails, the ones that
        finished are kept and the first error is re-raised.
        """
        pending = state.pending_records(stage, candidates)
        batch_size = self.settings.pipeline.batch_size
        delay = self.settings.pipeline.batch_delay_seconds
        logger.info(
            "Screening %d/%d records at %s stage",
            len(pending),
            len(candidates),
            stage.value,
        )

        for start in range(0, len(pending), batch_size):
            if start and delay > 0:
                await asyncio.sleep(delay)
            batch = pending[start : start + batch_size]
            with self.tracer.span(f"{stage.value}_batch", {"size": len(batch), "offset": start}):
                await self._screen_batch(state, stage, batch, load_full_text)

    async def _screen_batch(
        self,
        state: RunState,
        stage: ScreeningStage,
        batch: list[Record],
        load_full_text: Callable[[Record], str] | None,
    ) -> None:
        tasks = [
            asyncio.ensure_future(self._screen_record(state, stage, record, load_full_text))
            for record in batch
        ]
        first_error: BaseException | None = None
        for finished in asyncio.as_completed(tasks):
            try:
                outcome = await finished
                self._fold(state, stage, outcome)
            except Exception as e:
                first_error = first_error or e
                continue
            if outcome.error is not None:
                first_error = first_error or outcome.error

        if first_error is not None:
            raise first_error

    async def _screen_record(
        self,
        state: RunState,
        stage: ScreeningStage,
        record: Record,
        load_full_text: Callable[[Record], str] | None,
    ) -> RecordOutcome:
        outcome = RecordOutcome(record_id=record.record_id)
        panel = self.panels[stage]
        existing = {v.reviewer_id: v for v in state.votes_for(record.record_id, stage)}

        try:
            full_text = self._load_full_text(record, load_full_text) if load_full_text else None
        except ASRError as e:
            outcome.error = e
            return outcome

        request = ScreeningRequest(
            record=record, criteria=state.criteria, stage=stage, full_text=full_text
        )
        missing = [oracle for oracle in panel if oracle.reviewer_id not in existing]
        results = await asyncio.gather(
            *(self._cast_vote(oracle, request) for oracle in missing), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Vote):
                outcome.new_votes.append(result)
                existing[result.reviewer_id] = result
            elif outcome.error is None:
                outcome.error = result
        if outcome.error is not None:
            return outcome

        votes = [existing[oracle.reviewer_id] for oracle in panel]
        try:
            consensus = resolve(votes, record.record_id)
            adjudication = None
            if consensus.status == ConsensusStatus.ESCALATE:
                self.metrics.escalations.inc(labels={"stage": stage.value})
                logger.info(
                    "Escalating %s at %s stage: %s", record.record_id, stage.value, consensus.reason
                )
                adjudication = await self._adjudicate(
                    AdjudicationRequest(
                        record=record,
                        criteria=state.criteria,
                        stage=stage,
                        votes=tuple(votes),
                        full_text=full_text,
                    )
                )
            outcome.verdict = build_verdict(votes, consensus, adjudication)
        except ASRError as e:
            outcome.error = e
        return outcome

    def _load_full_text(self, record: Record, load_full_text: Callable[[Record], str]) -> str:
        try:
            text = load_full_text(record)
        except ASRError:
            raise
        except Exception as e:
            raise OracleCallError(
                f"Full-text extraction failed: {e}", "full_text_extractor", record.record_id
            ) from e
        if not isinstance(text, str) or not text.strip():
            raise OracleResponseError(
                "Full-text extractor returned no text", "full_text_extractor", record.record_id
            )
        return text

    async def _cast_vote(self, oracle: ScreeningOracle, request: ScreeningRequest) -> Vote:
        reviewer_id = oracle.reviewer_id
        record_id = request.record.record_id
        try:
            vote = await oracle.screen(request)
        except ASRError:
            raise
        except Exception as e:
            raise OracleCallError(f"Screening failed: {e}", reviewer_id, record_id) from e

        if not isinstance(vote, Vote):
            raise OracleResponseError(
                f"Expected a Vote, got {type(vote).__name__}", reviewer_id, record_id
            )
        if (vote.record_id, vote.stage, vote.reviewer_id) != (record_id, request.stage, reviewer_id):
            raise OracleResponseError(
                f"Vote is for {vote.record_id}/{vote.stage.value}/{vote.reviewer_id}",
                reviewer_id,
                record_id,
            )
        return vote

    async def _adjudicate(self, request: AdjudicationRequest) -> AdjudicationResult:
        record_id = request.record.record_id
        try:
            result = await self.adjudicator.adjudicate(request)
        except ASRError:
            raise
        except Exception as e:
            raise OracleCallError(f"Adjudication failed: {e}", "adjudicator", record_id) from e
        if not isinstance(result, AdjudicationResult):
            raise OracleResponseError(
                f"Expected an AdjudicationResult, got {type(result).__name__}",
                "adjudicator",
                record_id,
            )
        return result

    # ==================== Extraction ====================

    async def extract_record(self, state: RunState, record: Record) -> dict[str, Any]:
        """Chart one included record with the data extractor."""
        if self.data_extractor is None:
            raise ConfigurationError("No data extractor configured")

        full_text = self._load_full_text(record, self.full_text_loader(state))
        request = ExtractionRequest(record=record, criteria=state.criteria, full_text=full_text)
        try:
            data = await self.data_extractor.extract(request)
        except ASRError:
            raise
        except Exception as e:
            raise OracleCallError(
                f"Data extraction failed: {e}", "data_extractor", record.record_id
            ) from e
        if not isinstance(data, dict):
            raise OracleResponseError(
                f"Expected a dict, got {type(data).__name__}", "data_extractor", record.record_id
            )
        return data

    def full_text_loader(self, state: RunState) -> Callable[[Record], str]:
        """Loader reading each record's located full text."""

        def load(record: Record) -> str:
            return self.full_text_extractor.extract_text(
                Path(state.fulltext_paths[record.record_id])
            )

        return load
