"""
ASR Pipeline Graph

LangGraph stage walk. Each stage is a node; a conditional entry point jumps
to the first stage after the persisted marker, and a conditional edge after
each node either continues to the next stage or ends the walk when the run
halted at the full-text gate.

Node functions are organized in the `nodes/` package:
- ingest_nodes: ingest
- screening_nodes: abstract_screening, fulltext_gate, fulltext_screening
- synthesis_nodes: extraction, synthesis, complete
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph

from asr.core.enums import Stage
from asr.core.exceptions import OrchestrationError
from asr.orchestration.nodes import (
    abstract_screening_node,
    complete_node,
    extraction_node,
    fulltext_gate_node,
    fulltext_screening_node,
    ingest_node,
    synthesis_node,
)
from asr.orchestration.nodes._helpers import PipelineGraphState
from asr.orchestration.stages import RUNNABLE_STAGES, next_stage

NodeFn = Callable[..., Awaitable[dict]]

# Handler for each stage; the key is the marker the node leaves behind
STAGE_HANDLERS: dict[Stage, NodeFn] = {
    Stage.INGESTED: ingest_node,
    Stage.ABSTRACT_SCREENING: abstract_screening_node,
    Stage.FULLTEXT_GATE: fulltext_gate_node,
    Stage.FULLTEXT_SCREENING: fulltext_screening_node,
    Stage.EXTRACTION: extraction_node,
    Stage.SYNTHESIS: synthesis_node,
    Stage.COMPLETE: complete_node,
}


def _check_handlers() -> None:
    missing = set(RUNNABLE_STAGES) - set(STAGE_HANDLERS)
    if missing:
        raise OrchestrationError(
            "Stages without a handler", {"stages": sorted(s.value for s in missing)}
        )


_check_handlers()


# =============================================================================
# CONDITIONAL EDGES
# =============================================================================


def route_from_marker(state: PipelineGraphState) -> str:
    """First stage after the persisted marker, or END when there is none."""
    following = next_stage(state.stage)
    return END if following is None else following.value


def route_after_stage(state: PipelineGraphState) -> str:
    """Stop on a halted run, otherwise continue to the next stage."""
    if state.halted:
        return END
    return route_from_marker(state)


# =============================================================================
# GRAPH BUILDER
# =============================================================================


def build_pipeline_graph() -> CompiledStateGraph:
    """Build the stage-walk graph.

    Returns:
        Compiled LangGraph StateGraph over PipelineGraphState. Invoke with
        ``config={"configurable": {"driver": ..., "run_state": ...}}``.
    """
    graph = StateGraph(PipelineGraphState)

    for stage in RUNNABLE_STAGES:
        graph.add_node(stage.value, STAGE_HANDLERS[stage])

    destinations = {stage.value: stage.value for stage in RUNNABLE_STAGES}
    destinations[END] = END

    graph.add_conditional_edges(START, route_from_marker, destinations)
    for stage in RUNNABLE_STAGES:
        graph.add_conditional_edges(stage.value, route_after_stage, destinations)

    return graph.compile()
