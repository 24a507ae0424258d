"""
Artifact Store

Filesystem exports of a run for downstream reporting collaborators.

Structure:
    {base_path}/
        {run_id}/
            state.json           full RunState document
            decision_log.jsonl   one audit event per line
            funnel.json          FunnelCounters snapshot
"""

import json
from pathlib import Path
from typing import Any

from asr.config import get_settings
from asr.core.exceptions import PersistenceError
from asr.core.schemas import DecisionEvent, RunState


class ArtifactStore:
    """Writes run exports under a base directory."""

    def __init__(self, base_path: Path | None = None) -> None:
        self._base_path = Path(base_path or get_settings().storage.artifact_path)

    @property
    def base_path(self) -> Path:
        return self._base_path

    def run_path(self, run_id: str) -> Path:
        return self._base_path / run_id

    def export_run(self, state: RunState, events: list[DecisionEvent]) -> Path:
        """
        Write state, audit log and funnel snapshot for a run.

        Returns:
            The run's export directory.

        Raises:
            PersistenceError: If the files cannot be written.
        """
        run_dir = self.run_path(state.run_id)
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            self._write_json(run_dir / "state.json", state.model_dump(mode="json"))
            self._write_json(run_dir / "funnel.json", state.counters.model_dump(mode="json"))
            with open(run_dir / "decision_log.jsonl", "w", encoding="utf-8") as f:
                for event in events:
                    f.write(event.model_dump_json() + "\n")
        except OSError as e:
            raise PersistenceError(f"Cannot export run artifacts: {e}", state.run_id) from e
        return run_dir

    def _write_json(self, path: Path, data: dict[str, Any]) -> None:
        path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False, default=str), encoding="utf-8"
        )
