"""Prometheus text metrics for the relay gateway.

Counters and latency histograms live in-process behind a lock and are rendered
on ``/metrics``.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field

from fastapi import APIRouter, Response

LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)

LabelKey = tuple[tuple[str, str], ...]


@dataclass
class _Histogram:
    buckets: list[int] = field(default_factory=lambda: [0] * len(LATENCY_BUCKETS))
    total: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        self.total += value
        self.count += 1
        for index, bound in enumerate(LATENCY_BUCKETS):
            if value <= bound:
                self.buckets[index] += 1


_lock = threading.Lock()
_counters: dict[str, dict[LabelKey, float]] = defaultdict(lambda: defaultdict(float))
_histograms: dict[str, dict[LabelKey, _Histogram]] = defaultdict(
    lambda: defaultdict(_Histogram)
)


def _key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted(labels.items()))


def _format_labels(pairs: LabelKey, **extra: str) -> str:
    merged = dict(pairs)
    merged.update(extra)
    if not merged:
        return ""
    return "{" + ",".join(f'{name}="{value}"' for name, value in sorted(merged.items())) + "}"


def inc_counter(name: str, labels: dict[str, str], value: float = 1.0) -> None:
    with _lock:
        _counters[name][_key(labels)] += value


def observe_histogram(name: str, labels: dict[str, str], value: float) -> None:
    with _lock:
        _histograms[name][_key(labels)].observe(value)


def render_metrics() -> str:
    lines: list[str] = []
    with _lock:
        for name, series in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for pairs, value in sorted(series.items()):
                lines.append(f"{name}{_format_labels(pairs)} {value}")

        for name, series in sorted(_histograms.items()):
            lines.append(f"# TYPE {name} histogram")
            for pairs, histogram in sorted(series.items()):
                cumulative = 0
                for bound, hits in zip(LATENCY_BUCKETS, histogram.buckets, strict=True):
                    cumulative += hits
                    lines.append(f"{name}_bucket{_format_labels(pairs, le=str(bound))} {cumulative}")
                lines.append(f"{name}_bucket{_format_labels(pairs, le='+Inf')} {histogram.count}")
                lines.append(f"{name}_sum{_format_labels(pairs)} {histogram.total}")
                lines.append(f"{name}_count{_format_labels(pairs)} {histogram.count}")

    lines.append("")
    return "\n".join(lines)


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _histograms.clear()


def record_request(endpoint: str, model: str, status_code: int, latency_s: float) -> None:
    """Record the outcome of one relayed request."""
    labels = {"endpoint": endpoint, "model": model}
    inc_counter("relay_requests_total", {**labels, "status": str(status_code)})
    observe_histogram("relay_request_duration_seconds", labels, latency_s)


def record_stream_outcome(outcome: str, frames_sent: int) -> None:
    inc_counter("relay_streams_total", {"outcome": outcome})
    if frames_sent > 0:
        inc_counter("relay_stream_frames_total", {"outcome": outcome}, float(frames_sent))


metrics_router = APIRouter()


@metrics_router.get("/metrics")
def prometheus_metrics() -> Response:
    return Response(
        content=render_metrics(),
        media_type="text/plain; charset=utf-8",
    )
