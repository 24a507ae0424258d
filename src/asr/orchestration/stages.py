"""
Stage Transitions

Total order of pipeline stages. The persisted stage marker names the last
stage that completed; the next stage to run is looked up here.
"""

from asr.core.enums import Stage
from asr.core.exceptions import OrchestrationError

TRANSITIONS: dict[Stage, Stage | None] = {
    Stage.INIT: Stage.INGESTED,
    Stage.INGESTED: Stage.ABSTRACT_SCREENING,
    Stage.ABSTRACT_SCREENING: Stage.FULLTEXT_GATE,
    Stage.FULLTEXT_GATE: Stage.FULLTEXT_SCREENING,
    Stage.FULLTEXT_SCREENING: Stage.EXTRACTION,
    Stage.EXTRACTION: Stage.SYNTHESIS,
    Stage.SYNTHESIS: Stage.COMPLETE,
    Stage.COMPLETE: None,
}

# Stages that run as graph nodes (everything but the initial marker)
RUNNABLE_STAGES: tuple[Stage, ...] = tuple(s for s in Stage if s != Stage.INIT)


def next_stage(marker: Stage) -> Stage | None:
    """Stage that follows ``marker``, or None once the run is complete."""
    return TRANSITIONS[marker]


def stage_order() -> list[Stage]:
    """Stages in execution order, starting from INIT."""
    order = [Stage.INIT]
    while (following := TRANSITIONS.get(order[-1])) is not None and following not in order:
        order.append(following)
    return order


def _check_transitions() -> None:
    missing = set(Stage) - set(TRANSITIONS)
    if missing:
        raise OrchestrationError(
            "Stages without a transition", {"stages": sorted(s.value for s in missing)}
        )
    if stage_order() != list(Stage):
        raise OrchestrationError("Transition table does not walk every stage in order")


_check_transitions()
