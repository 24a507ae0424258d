"""
ASR Storage Layer

SQLite run state and audit log, plus filesystem exports.
"""

from asr.storage.artifact_store import ArtifactStore
from asr.storage.run_store import RunStore

__all__ = ["RunStore", "ArtifactStore"]
