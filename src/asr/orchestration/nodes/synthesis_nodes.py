"""
ASR Synthesis Nodes

Data extraction, the synthesis summary and run completion.
"""

from __future__ import annotations

import logging
from collections import Counter

from langchain_core.runnables import RunnableConfig

from asr.core.enums import (
    FinalDecision,
    ResolutionPath,
    RunStatus,
    ScreeningStage,
    Stage,
    VoteDecision,
)
from asr.core.schemas import (
    DecisionEvent,
    FulltextExclusion,
    RunState,
    SynthesisSummary,
    Verdict,
)
from asr.orchestration.nodes._helpers import PipelineGraphState, get_run_context, stage_update

logger = logging.getLogger(__name__)


def exclusion_reason(verdict: Verdict) -> str:
    """Adjudicator rationale, or the first reason of the first exclude vote."""
    if verdict.path == ResolutionPath.ADJUDICATED and verdict.rationale:
        return verdict.rationale
    for vote in verdict.votes:
        if vote.decision == VoteDecision.EXCLUDE:
            return vote.reasons[0]
    return verdict.votes[0].reasons[0]


def summarize_run(run: RunState) -> SynthesisSummary:
    """Build the data summary of a screened run. Pure; reads state only."""
    included = run.included_ids(ScreeningStage.FULLTEXT)

    exclusions = [
        FulltextExclusion(record_id=v.record_id, reason=exclusion_reason(v))
        for v in run.verdicts_for_stage(ScreeningStage.FULLTEXT)
        if v.decision == FinalDecision.EXCLUDE
    ]
    adjudicated = {
        stage.value: sum(
            1 for v in run.verdicts_for_stage(stage) if v.path == ResolutionPath.ADJUDICATED
        )
        for stage in ScreeningStage
    }
    years = Counter(
        str(record.year) if record.year is not None else "unknown"
        for record_id in included
        if (record := run.get_record(record_id)) is not None
    )

    return SynthesisSummary(
        counters=run.compute_counters(),
        included_record_ids=included,
        fulltext_exclusions=exclusions,
        missing_fulltext=list(run.missing_fulltext),
        adjudicated_by_stage=adjudicated,
        year_distribution=dict(sorted(years.items())),
        extracted_count=sum(1 for record_id in included if record_id in run.extractions),
    )


async def extraction_node(state: PipelineGraphState, config: RunnableConfig) -> dict:
    """Chart data from each included record's full text.

    Node: EXTRACTION
    Input: fulltext verdicts, fulltext_paths
    Output: extractions

    No-op when the driver has no data extractor. Checkpointed per record,
    so a resumed run only extracts what is missing.
    """
    driver, run = get_run_context(config)

    with driver.tracer.span("extraction", {"run_id": run.run_id}) as span:
        if driver.data_extractor is None:
            logger.info("Run %s: no data extractor configured, skipping extraction", run.run_id)
        else:
            pending = [
                record_id
                for record_id in run.included_ids(ScreeningStage.FULLTEXT)
                if record_id not in run.extractions
            ]
            span.set_attribute("pending", len(pending))
            for record_id in pending:
                record = run.get_record(record_id)
                run.extractions[record_id] = await driver.extract_record(run, record)
                run.touch()
                driver.checkpoint(run)

        driver.complete_stage(run, Stage.EXTRACTION)

    return stage_update(run)


async def synthesis_node(state: PipelineGraphState, config: RunnableConfig) -> dict:
    """Summarize the funnel.

    Node: SYNTHESIS
    Output: synthesis
    """
    driver, run = get_run_context(config)

    with driver.tracer.span("synthesis", {"run_id": run.run_id}):
        run.synthesis = summarize_run(run)
        driver.complete_stage(run, Stage.SYNTHESIS)

    return stage_update(run)


async def complete_node(state: PipelineGraphState, config: RunnableConfig) -> dict:
    """Export artifacts and mark the run completed.

    Node: COMPLETE
    Output: ``{artifact_path}/{run_id}/`` exports, status COMPLETED

    Artifacts are written from a completed snapshot before the marker moves,
    so a failed export leaves the run resumable at this stage.
    """
    driver, run = get_run_context(config)

    with driver.tracer.span("complete", {"run_id": run.run_id}) as span:
        event = DecisionEvent.for_stage(run.run_id, Stage.COMPLETE, run.counters)
        snapshot = run.model_copy(update={"stage": Stage.COMPLETE, "status": RunStatus.COMPLETED})
        export_dir = driver.artifacts.export_run(
            snapshot, [*driver.store.get_events(run.run_id), event]
        )
        span.set_attribute("export_dir", str(export_dir))

        run.status = RunStatus.COMPLETED
        driver.complete_stage(run, Stage.COMPLETE, event)

    return stage_update(run)
