"""
ASR Orchestration Layer

Stage transition table, the LangGraph stage walk and the pipeline driver.
"""

from asr.orchestration.driver import PipelineDriver, generate_run_id
from asr.orchestration.graph import STAGE_HANDLERS, build_pipeline_graph
from asr.orchestration.stages import RUNNABLE_STAGES, TRANSITIONS, next_stage, stage_order

__all__ = [
    "PipelineDriver",
    "generate_run_id",
    "build_pipeline_graph",
    "STAGE_HANDLERS",
    "TRANSITIONS",
    "RUNNABLE_STAGES",
    "next_stage",
    "stage_order",
]
