"""
ASR Ingest Node

Parses every source file and collapses duplicates.
"""

from __future__ import annotations

import logging
from pathlib import Path

from langchain_core.runnables import RunnableConfig

from asr.core.enums import Stage
from asr.dedup import deduplicate
from asr.ingest import parse_sources
from asr.orchestration.nodes._helpers import PipelineGraphState, get_run_context, stage_update

logger = logging.getLogger(__name__)


async def ingest_node(state: PipelineGraphState, config: RunnableConfig) -> dict:
    """Parse sources, count identified records and deduplicate.

    Node: INGESTED
    Input: source_files
    Output: identified, records, duplicate_groups

    Safe to re-run: nothing is screened before this stage completes, so
    records are replaced wholesale.
    """
    driver, run = get_run_context(config)

    with driver.tracer.span("ingest", {"run_id": run.run_id}) as span:
        parsed = parse_sources([Path(p) for p in run.source_files], driver.record_parsers)
        result = deduplicate(parsed, driver.settings.dedupe.title_similarity)

        run.identified = len(parsed)
        run.set_records(result.unique, result.groups)

        span.set_attribute("identified", len(parsed))
        span.set_attribute("unique", len(result.unique))
        driver.metrics.duplicates_removed.inc(result.duplicates_removed)

        if not result.unique:
            logger.warning(
                "Run %s: no records ingested from %d source(s)", run.run_id, len(run.source_files)
            )

        driver.complete_stage(run, Stage.INGESTED)

    return stage_update(run)
