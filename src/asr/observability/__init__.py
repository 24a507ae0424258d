"""
ASR Observability Layer

Tracing and metrics.
"""

from asr.observability.metrics import (
    ASRMetrics,
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    get_asr_metrics,
    get_registry,
    reset_metrics,
)
from asr.observability.tracer import Span, SpanStatus, Tracer, get_tracer, reset_tracers

__all__ = [
    # Tracer
    "Tracer",
    "Span",
    "SpanStatus",
    "get_tracer",
    "reset_tracers",
    # Metrics
    "MetricsRegistry",
    "Counter",
    "Gauge",
    "Histogram",
    "ASRMetrics",
    "get_registry",
    "get_asr_metrics",
    "reset_metrics",
]
