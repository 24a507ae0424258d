"""
ASR Tracer

Structured span tracing for pipeline stages and oracle calls.
Spans are kept in memory and, in debug mode, appended as JSON lines
under ``{artifact_path}/traces``.
"""

import json
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Generator

from asr.config import get_settings


class SpanStatus(str, Enum):
    """Span completion status."""

    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


@dataclass
class Span:
    """Unit of traced work."""

    trace_id: str
    span_id: str
    name: str
    parent_id: str | None = None
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    status: SpanStatus = SpanStatus.UNSET
    status_message: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status: SpanStatus, message: str | None = None) -> None:
        self.status = status
        self.status_message = message

    def end(self) -> None:
        if self.end_time is None:
            self.end_time = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_id": self.parent_id,
            "name": self.name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "status_message": self.status_message,
            "attributes": self.attributes,
        }


class Tracer:
    """
    Tracer for structured operation tracking.

    Usage:
        tracer = Tracer("asr.orchestration")

        with tracer.span("abstract_screening") as span:
            span.set_attribute("pending", len(pending))
            ...
    """

    def __init__(self, name: str, export_path: Path | None = None) -> None:
        self._name = name
        self._trace_id = uuid.uuid4().hex[:16]
        self._export_path = export_path
        self._spans: list[Span] = []
        self._current_span: Span | None = None

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @contextmanager
    def span(self, name: str, attributes: dict[str, Any] | None = None) -> Generator[Span, None, None]:
        """
        Context manager for creating and managing spans.

        Exceptions are recorded on the span and re-raised.
        """
        span = Span(
            trace_id=self._trace_id,
            span_id=uuid.uuid4().hex[:16],
            parent_id=self._current_span.span_id if self._current_span else None,
            name=f"{self._name}.{name}",
            attributes=dict(attributes or {}),
        )
        previous_span = self._current_span
        self._current_span = span

        try:
            yield span
            if span.status == SpanStatus.UNSET:
                span.set_status(SpanStatus.OK)
        except Exception as e:
            span.set_status(SpanStatus.ERROR, f"{type(e).__name__}: {e}")
            raise
        finally:
            span.end()
            self._spans.append(span)
            self._current_span = previous_span
            if self._export_path:
                self._export_span(span)

    def _export_span(self, span: Span) -> None:
        assert self._export_path is not None
        self._export_path.mkdir(parents=True, exist_ok=True)
        day = datetime.now(timezone.utc).strftime("%Y%m%d")
        with open(self._export_path / f"trace_{self._trace_id}_{day}.jsonl", "a") as f:
            f.write(json.dumps(span.to_dict(), default=str) + "\n")

    def get_spans(self) -> list[Span]:
        return self._spans.copy()


# Global tracer registry
_tracers: dict[str, Tracer] = {}


def get_tracer(name: str) -> Tracer:
    """Get or create a tracer by name (typically the module name)."""
    if name not in _tracers:
        settings = get_settings()
        export_path = None
        if settings.features.debug:
            export_path = settings.storage.artifact_path / "traces"
        _tracers[name] = Tracer(name, export_path)
    return _tracers[name]


def reset_tracers() -> None:
    """Reset all tracers (for testing)."""
    _tracers.clear()
