#!/usr/bin/env python3
"""
Example: Run a screening review from Python

Screens the sample RIS export against the sample criteria with an LLM
panel, then prints the funnel. The run pauses at the full-text gate until
PDFs named ``{record_id}.pdf`` are placed in ``ASR_PDFS_DIR``; run the
script again with ``--resume RUN_ID`` once they are there.

Requirements:
    pip install -e ".[test]"
    export ANTHROPIC_API_KEY=...   # or ASR_LLM_PROVIDER=openai + OPENAI_API_KEY

Usage:
    python examples/run_review.py
    python examples/run_review.py --resume run-20260101120000-a1b2c3
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from asr.config import configure_logging, get_settings
from asr.core.enums import RunStatus, ScreeningStage
from asr.core.exceptions import ASRError
from asr.llm import create_provider
from asr.orchestration import PipelineDriver
from asr.screening import LLMAdjudicator, LLMDataExtractor, create_screening_panel
from asr.storage import RunStore

DATA_DIR = Path(__file__).resolve().parent / "data"


def build_driver() -> PipelineDriver:
    provider = create_provider()
    return PipelineDriver(
        store=RunStore(),
        abstract_panel=create_screening_panel(ScreeningStage.ABSTRACT, provider),
        fulltext_panel=create_screening_panel(ScreeningStage.FULLTEXT, provider),
        adjudicator=LLMAdjudicator(provider),
        data_extractor=LLMDataExtractor(provider),
    )


def print_funnel(state) -> None:
    counters = state.counters
    print("📊  Funnel:")
    print(f"    Identified:            {counters.identified}")
    print(f"    After deduplication:   {counters.deduplicated}")
    print(f"    Screened:              {counters.screened}")
    print(f"    Excluded at screening: {counters.excluded_at_screen}")
    print(f"    Full texts retrieved:  {counters.retrieved}")
    print(f"    Excluded at full text: {counters.excluded_at_fulltext}")
    print(f"    Included:              {counters.included}")


async def main(resume: str | None) -> int:
    configure_logging()
    settings = get_settings()

    try:
        driver = build_driver()
        if resume:
            print(f"🔁  Resuming {resume}")
            state = await driver.resume(resume)
        else:
            criteria = json.loads((DATA_DIR / "criteria.json").read_text(encoding="utf-8"))
            state = await driver.run(criteria, [DATA_DIR / "search.ris"])
    except ASRError as e:
        print(f"❌  Pipeline error: {e}")
        return 1

    print(f"🔬  Run {state.run_id}: {state.status.value} after '{state.stage.value}'")
    print()
    print_funnel(state)
    print()

    if state.status == RunStatus.WAITING_FULLTEXT:
        print(f"📄  Waiting for {len(state.missing_fulltext)} PDF(s) in {settings.pipeline.pdfs_dir}:")
        for record_id in state.missing_fulltext:
            record = state.get_record(record_id)
            print(f"    {record_id}.pdf  {record.title[:70]}")
        print()
        print(f"    Then run: python examples/run_review.py --resume {state.run_id}")
    elif state.status == RunStatus.COMPLETED:
        print(f"✅  Artifacts: {settings.storage.artifact_path / state.run_id}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--resume", metavar="RUN_ID", help="Resume an existing run")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.resume)))
