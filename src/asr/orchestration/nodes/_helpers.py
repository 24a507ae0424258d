"""
Node Helpers

Graph state and the run context every stage node pulls from its config.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from langchain_core.runnables import RunnableConfig
from pydantic import BaseModel

from asr.core.enums import RunStatus, Stage
from asr.core.exceptions import OrchestrationError

if TYPE_CHECKING:
    from asr.core.schemas import RunState
    from asr.orchestration.driver import PipelineDriver


class PipelineGraphState(BaseModel):
    """What flows between graph nodes.

    The RunState itself is owned by the driver and reached through the
    config; the graph only tracks the marker and whether the run halted.
    """

    run_id: str
    stage: Stage = Stage.INIT
    halted: bool = False


def get_run_context(config: RunnableConfig) -> tuple[PipelineDriver, RunState]:
    configurable = config.get("configurable", {})
    driver = configurable.get("driver")
    state = configurable.get("run_state")
    if driver is None or state is None:
        raise OrchestrationError("Stage node invoked without a driver and run state")
    return driver, state


def stage_update(state: RunState) -> dict[str, Any]:
    return {"stage": state.stage, "halted": state.status == RunStatus.WAITING_FULLTEXT}
