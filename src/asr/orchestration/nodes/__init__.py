"""ASR Orchestration Nodes Package: one async node per pipeline stage."""

from asr.orchestration.nodes.ingest_nodes import ingest_node
from asr.orchestration.nodes.screening_nodes import (
    abstract_screening_node,
    fulltext_gate_node,
    fulltext_screening_node,
)
from asr.orchestration.nodes.synthesis_nodes import (
    complete_node,
    extraction_node,
    summarize_run,
    synthesis_node,
)

__all__ = [
    "ingest_node",
    "abstract_screening_node",
    "fulltext_gate_node",
    "fulltext_screening_node",
    "extraction_node",
    "synthesis_node",
    "complete_node",
    "summarize_run",
]
