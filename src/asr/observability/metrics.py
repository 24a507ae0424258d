"""
ASR Metrics

In-process counters and histograms for runs, votes, verdicts and oracle calls.
"""

import time
from collections import defaultdict
from threading import Lock
from typing import Any


def _labels_key(labels: dict[str, str] | None) -> str:
    if not labels:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class Counter:
    """
    Monotonically increasing counter.

    Usage:
        counter = Counter("asr_votes_total", "Votes cast")
        counter.inc(labels={"decision": "include"})
    """

    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._values: dict[str, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] += value

    def get(self, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._values[_labels_key(labels)]

    def total(self) -> float:
        with self._lock:
            return sum(self._values.values())

    def values(self) -> dict[str, float]:
        with self._lock:
            return dict(self._values)


class Gauge:
    """Value that can go up or down."""

    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._values: dict[str, float] = defaultdict(float)
        self._lock = Lock()

    def set(self, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] = value

    def inc(self, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] += value

    def dec(self, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] -= value

    def get(self, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._values[_labels_key(labels)]

    def values(self) -> dict[str, float]:
        with self._lock:
            return dict(self._values)


class Histogram:
    """
    Distribution of observed values (latencies).

    Usage:
        with hist.time(labels={"oracle": "screener"}):
            await oracle.screen(request)
    """

    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._sums: dict[str, float] = defaultdict(float)
        self._counts: dict[str, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        key = _labels_key(labels)
        with self._lock:
            self._sums[key] += value
            self._counts[key] += 1

    def time(self, labels: dict[str, str] | None = None) -> "_HistogramTimer":
        return _HistogramTimer(self, labels)

    def get_count(self, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counts[_labels_key(labels)]

    def get_mean(self, labels: dict[str, str] | None = None) -> float:
        key = _labels_key(labels)
        with self._lock:
            if self._counts[key] == 0:
                return 0.0
            return self._sums[key] / self._counts[key]


class _HistogramTimer:
    """Context manager for timing with histogram."""

    def __init__(self, histogram: Histogram, labels: dict[str, str] | None) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start: float | None = None

    def __enter__(self) -> "_HistogramTimer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self._start is not None:
            self._histogram.observe(time.perf_counter() - self._start, self._labels)


class MetricsRegistry:
    """Registry for all metrics, keyed by name."""

    def __init__(self) -> None:
        self._metrics: dict[str, Counter | Gauge | Histogram] = {}
        self._lock = Lock()

    def counter(self, name: str, description: str = "") -> Counter:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Counter(name, description)
            return self._metrics[name]  # type: ignore

    def gauge(self, name: str, description: str = "") -> Gauge:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Gauge(name, description)
            return self._metrics[name]  # type: ignore

    def histogram(self, name: str, description: str = "") -> Histogram:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Histogram(name, description)
            return self._metrics[name]  # type: ignore

    def get_all(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        with self._lock:
            for name, metric in self._metrics.items():
                if isinstance(metric, (Counter, Gauge)):
                    result[name] = metric.values()
                else:
                    result[name] = {"count": metric.get_count(), "mean": metric.get_mean()}
        return result


# Global metrics registry
_registry: MetricsRegistry | None = None


def get_registry() -> MetricsRegistry:
    """Get global metrics registry."""
    global _registry
    if _registry is None:
        _registry = MetricsRegistry()
    return _registry


def reset_metrics() -> None:
    """Reset global metrics."""
    global _registry
    _registry = None


class ASRMetrics:
    """Pre-defined ASR metrics."""

    def __init__(self, registry: MetricsRegistry | None = None) -> None:
        self._registry = registry or get_registry()

    @property
    def runs_total(self) -> Counter:
        """Runs started or resumed, by outcome status."""
        return self._registry.counter("asr_runs_total", "Pipeline runs by status")

    @property
    def stages_completed(self) -> Counter:
        return self._registry.counter("asr_stages_completed_total", "Stages completed")

    @property
    def votes_cast(self) -> Counter:
        return self._registry.counter("asr_votes_total", "Votes by stage and decision")

    @property
    def verdicts(self) -> Counter:
        return self._registry.counter("asr_verdicts_total", "Verdicts by stage, path, decision")

    @property
    def escalations(self) -> Counter:
        return self._registry.counter("asr_escalations_total", "Panels sent to adjudication")

    @property
    def duplicates_removed(self) -> Counter:
        return self._registry.counter("asr_duplicates_removed_total", "Records collapsed")

    @property
    def oracle_latency(self) -> Histogram:
        return self._registry.histogram("asr_oracle_latency_seconds", "Oracle call latency")

    @property
    def llm_tokens(self) -> Counter:
        return self._registry.counter("asr_llm_tokens_total", "LLM tokens")

    @property
    def errors(self) -> Counter:
        """Errors by type."""
        return self._registry.counter("asr_errors_total", "Errors by type")


def get_asr_metrics() -> ASRMetrics:
    """Get ASR metrics instance."""
    return ASRMetrics()
