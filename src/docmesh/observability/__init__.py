"""Prometheus metrics exporter for DocMesh observability.

The engine never talks to a metrics backend directly: it emits counts
and observations through the small :class:`MetricsRecorder` protocol,
which any sink (Prometheus, Micrometer-style registries, test doubles)
can implement.  :class:`PrometheusMetrics` is the bundled recorder and
renders everything in Prometheus text format.

Metrics emitted by :class:`MetricsHook`:
- docmesh_attempts_total: Attempts by outcome kind
- docmesh_sessions_total: Finished retry sessions by terminal status
- docmesh_retry_delay_seconds: Delays slept between attempts (histogram)

Usage:
    from docmesh.observability import PrometheusMetrics

    metrics = PrometheusMetrics()
    engine = RetryEngine(hooks=[metrics.create_hook()])

    # Expose via whatever HTTP layer the application already runs
    body = metrics.export()
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Protocol

from docmesh.core.hooks import AttemptHook

if TYPE_CHECKING:
    from docmesh.core.models import AttemptContext, Outcome, SessionStatus

_Key = tuple[str, tuple[tuple[str, str], ...]]


class Counter(Protocol):
    def increment_by(self, number: int) -> None: ...


class ValueRecorder(Protocol):
    def record_value(self, value: float) -> None: ...


class MetricsRecorder(Protocol):
    """Sink the core reports counts and observations to."""

    def counter(self, name: str, tags: dict[str, str] | None = None) -> Counter: ...

    def value_recorder(self, name: str, tags: dict[str, str] | None = None) -> ValueRecorder: ...


def _key(name: str, tags: dict[str, str] | None) -> _Key:
    return name, tuple(sorted((tags or {}).items()))


def _labels(pairs: tuple[tuple[str, str], ...], **extra: str) -> str:
    items = [*pairs, *extra.items()]
    if not items:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in items) + "}"


class _PrometheusCounter:
    def __init__(self, owner: PrometheusMetrics, key: _Key) -> None:
        self._owner = owner
        self._key = key

    def increment_by(self, number: int) -> None:
        self._owner._counters[self._key] += number


class _PrometheusValueRecorder:
    def __init__(self, owner: PrometheusMetrics, key: _Key) -> None:
        self._owner = owner
        self._key = key

    def record_value(self, value: float) -> None:
        self._owner._observations[self._key].append(value)


class PrometheusMetrics:
    """Collects counters and histograms and exports Prometheus text."""

    def __init__(self, buckets: list[float] | None = None) -> None:
        self._counters: dict[_Key, int] = defaultdict(int)
        self._observations: dict[_Key, list[float]] = defaultdict(list)
        self._buckets = buckets or [0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0]

    def counter(self, name: str, tags: dict[str, str] | None = None) -> _PrometheusCounter:
        return _PrometheusCounter(self, _key(name, tags))

    def value_recorder(
        self, name: str, tags: dict[str, str] | None = None
    ) -> _PrometheusValueRecorder:
        return _PrometheusValueRecorder(self, _key(name, tags))

    def count(self, name: str, tags: dict[str, str] | None = None) -> int:
        """Current value of a counter (0 if never incremented)."""
        return self._counters.get(_key(name, tags), 0)

    def observations(self, name: str, tags: dict[str, str] | None = None) -> list[float]:
        return list(self._observations.get(_key(name, tags), []))

    def export(self) -> str:
        """Export metrics in Prometheus text format."""
        lines: list[str] = []

        counter_names = sorted({name for name, _ in self._counters})
        for name in counter_names:
            lines.append(f"# TYPE {name} counter")
            for (metric, pairs), count in self._counters.items():
                if metric == name:
                    lines.append(f"{name}{_labels(pairs)} {count}")
            lines.append("")

        histogram_names = sorted({name for name, _ in self._observations})
        for name in histogram_names:
            lines.append(f"# TYPE {name} histogram")
            for (metric, pairs), observations in self._observations.items():
                if metric != name or not observations:
                    continue
                for bucket in self._buckets:
                    cumulative = sum(1 for obs in observations if obs <= bucket)
                    lines.append(
                        f"{name}_bucket{_labels(pairs, le=str(bucket))} {cumulative}"
                    )
                lines.append(f"{name}_bucket{_labels(pairs, le='+Inf')} {len(observations)}")
                lines.append(f"{name}_sum{_labels(pairs)} {sum(observations):.4f}")
                lines.append(f"{name}_count{_labels(pairs)} {len(observations)}")
            lines.append("")

        return "\n".join(lines)

    def create_hook(self) -> MetricsHook:
        """Create an :class:`AttemptHook` feeding this recorder."""
        return MetricsHook(self)


class MetricsHook(AttemptHook):
    """AttemptHook that reports engine activity to a :class:`MetricsRecorder`."""

    def __init__(self, recorder: MetricsRecorder) -> None:
        self._recorder = recorder

    async def after_attempt(self, context: AttemptContext, outcome: Outcome) -> None:
        self._recorder.counter(
            "docmesh_attempts_total", {"outcome": type(outcome).__name__}
        ).increment_by(1)

    async def on_retry(self, context: AttemptContext, delay_seconds: float) -> None:
        self._recorder.value_recorder("docmesh_retry_delay_seconds").record_value(delay_seconds)

    async def on_complete(self, context: AttemptContext, status: SessionStatus) -> None:
        self._recorder.counter("docmesh_sessions_total", {"status": status.value}).increment_by(1)
