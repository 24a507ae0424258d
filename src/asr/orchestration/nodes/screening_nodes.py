"""
ASR Screening Nodes

Abstract screening, the full-text gate and full-text screening.
"""

from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from asr.core.enums import RunStatus, ScreeningStage, Stage
from asr.orchestration.nodes._helpers import PipelineGraphState, get_run_context, stage_update

logger = logging.getLogger(__name__)


async def abstract_screening_node(state: PipelineGraphState, config: RunnableConfig) -> dict:
    """Title/abstract screening of every deduplicated record.

    Node: ABSTRACT_SCREENING
    Input: records
    Output: votes, verdicts (stage=abstract)
    """
    driver, run = get_run_context(config)

    with driver.tracer.span("abstract_screening", {"run_id": run.run_id}) as span:
        await driver.screen_records(run, ScreeningStage.ABSTRACT, run.records)
        span.set_attribute("included", len(run.included_ids(ScreeningStage.ABSTRACT)))
        driver.complete_stage(run, Stage.ABSTRACT_SCREENING)

    return stage_update(run)


async def fulltext_gate_node(state: PipelineGraphState, config: RunnableConfig) -> dict:
    """Locate full texts for records included at abstract screening.

    Node: FULLTEXT_GATE
    Input: abstract verdicts, ``{pdfs_dir}/{record_id}.pdf`` files
    Output: fulltext_paths, missing_fulltext

    With a blocking gate the run halts in WAITING_FULLTEXT until every
    included record has a PDF; resuming re-checks the directory. A
    non-blocking gate drops records without a PDF from full-text screening.
    """
    driver, run = get_run_context(config)
    pdfs_dir = driver.settings.pipeline.pdfs_dir

    with driver.tracer.span("fulltext_gate", {"run_id": run.run_id}) as span:
        # Paths found on an earlier check are kept so ``retrieved`` never shrinks
        for record_id in run.included_ids(ScreeningStage.ABSTRACT):
            if record_id in run.fulltext_paths:
                continue
            path = pdfs_dir / f"{record_id}.pdf"
            if path.is_file():
                run.fulltext_paths[record_id] = str(path)

        run.missing_fulltext = [
            record_id
            for record_id in run.included_ids(ScreeningStage.ABSTRACT)
            if record_id not in run.fulltext_paths
        ]
        span.set_attribute("located", len(run.fulltext_paths))
        span.set_attribute("missing", len(run.missing_fulltext))

        if run.missing_fulltext and driver.settings.pipeline.fulltext_gate_blocking:
            run.status = RunStatus.WAITING_FULLTEXT
            run.refresh_counters()
            driver.checkpoint(run)
            logger.warning(
                "Run %s waiting for %d full text(s) in %s",
                run.run_id,
                len(run.missing_fulltext),
                pdfs_dir,
            )
            return stage_update(run)

        if run.missing_fulltext:
            logger.warning(
                "Run %s: %d record(s) without full text skip full-text screening",
                run.run_id,
                len(run.missing_fulltext),
            )
        driver.complete_stage(run, Stage.FULLTEXT_GATE)

    return stage_update(run)


async def fulltext_screening_node(state: PipelineGraphState, config: RunnableConfig) -> dict:
    """Full-text screening of records whose PDF was located.

    Node: FULLTEXT_SCREENING
    Input: fulltext_paths
    Output: votes, verdicts (stage=fulltext)
    """
    driver, run = get_run_context(config)
    candidates = [r for r in run.records if r.record_id in run.fulltext_paths]

    with driver.tracer.span("fulltext_screening", {"run_id": run.run_id}) as span:
        await driver.screen_records(
            run, ScreeningStage.FULLTEXT, candidates, driver.full_text_loader(run)
        )
        span.set_attribute("included", len(run.included_ids(ScreeningStage.FULLTEXT)))
        driver.complete_stage(run, Stage.FULLTEXT_SCREENING)

    return stage_update(run)
