"""Runtime metrics for speaker sessions."""

import bisect
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class HistogramSnapshot:
    """Serializable histogram snapshot for metrics export."""

    bounds: tuple[float, ...]
    cumulative_counts: tuple[int, ...]
    count: int
    sum: float


class Histogram:
    """Thread-safe(under external lock) histogram with fixed buckets."""

    def __init__(self, bounds: tuple[float, ...]):
        normalized = []
        for value in bounds:
            value = float(value)
            if value < 0:
                continue
            if normalized and value <= normalized[-1]:
                continue
            normalized.append(value)
        self._bounds = tuple(normalized)
        self._bucket_counts = [0] * (len(self._bounds) + 1)  # includes +Inf bucket
        self._count = 0
        self._sum = 0.0

    def observe(self, value: float) -> None:
        """Observe a non-negative sample."""
        if value < 0:
            return
        index = bisect.bisect_left(self._bounds, value)
        self._bucket_counts[index] += 1
        self._count += 1
        self._sum += value

    def snapshot(self) -> HistogramSnapshot:
        cumulative = []
        running = 0
        for count in self._bucket_counts:
            running += count
            cumulative.append(running)
        return HistogramSnapshot(
            bounds=self._bounds,
            cumulative_counts=tuple(cumulative),
            count=self._count,
            sum=self._sum,
        )


class Metrics:
    """Thread-safe counters and aggregations for gate metrics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active_sessions = 0
        self._frames_received = 0
        self._frames_forwarded = 0
        self._frames_dropped_not_ready = 0
        self._frames_dropped_backpressure = 0
        self._frames_malformed = 0
        self._utterances_started = 0
        self._deliveries: Dict[str, int] = defaultdict(int)
        self._delivery_failures = 0
        self._finality_flush_skipped = 0
        self._keepalives_sent = 0
        self._reconnects_scheduled = 0
        self._reconnects_skipped = 0
        self._reconnects_exhausted = 0
        self._backend_errors = 0
        self._utterance_duration_hist = Histogram(
            (0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 20.0, 30.0, 60.0)
        )

    def increase_active_sessions(self) -> None:
        with self._lock:
            self._active_sessions += 1

    def decrease_active_sessions(self) -> None:
        with self._lock:
            if self._active_sessions > 0:
                self._active_sessions -= 1

    def record_frame(self) -> None:
        with self._lock:
            self._frames_received += 1

    def record_forwarded(self, count: int = 1) -> None:
        with self._lock:
            self._frames_forwarded += max(0, count)

    def record_dropped_not_ready(self, count: int = 1) -> None:
        with self._lock:
            self._frames_dropped_not_ready += max(0, count)

    def record_dropped_backpressure(self, count: int = 1) -> None:
        with self._lock:
            self._frames_dropped_backpressure += max(0, count)

    def record_malformed_frame(self) -> None:
        with self._lock:
            self._frames_malformed += 1

    def record_utterance_start(self) -> None:
        with self._lock:
            self._utterances_started += 1

    def record_delivery(self, reason: str, utterance_sec: float | None = None) -> None:
        with self._lock:
            self._deliveries[reason] += 1
            if utterance_sec is not None:
                self._utterance_duration_hist.observe(utterance_sec)

    def record_delivery_failure(self) -> None:
        with self._lock:
            self._delivery_failures += 1

    def record_finality_flush_skipped(self) -> None:
        with self._lock:
            self._finality_flush_skipped += 1

    def record_keepalive(self) -> None:
        with self._lock:
            self._keepalives_sent += 1

    def record_reconnect_scheduled(self) -> None:
        with self._lock:
            self._reconnects_scheduled += 1

    def record_reconnect_skipped(self) -> None:
        with self._lock:
            self._reconnects_skipped += 1

    def record_reconnect_exhausted(self) -> None:
        with self._lock:
            self._reconnects_exhausted += 1

    def record_backend_error(self) -> None:
        with self._lock:
            self._backend_errors += 1

    def render(self) -> Dict[str, Any]:
        """Return a snapshot of all metrics as a plain dict."""
        with self._lock:
            hist = self._utterance_duration_hist.snapshot()
            return {
                "active_sessions": self._active_sessions,
                "frames_received": self._frames_received,
                "frames_forwarded": self._frames_forwarded,
                "frames_dropped_not_ready": self._frames_dropped_not_ready,
                "frames_dropped_backpressure": self._frames_dropped_backpressure,
                "frames_malformed": self._frames_malformed,
                "utterances_started": self._utterances_started,
                "deliveries": dict(self._deliveries),
                "delivery_failures": self._delivery_failures,
                "finality_flush_skipped": self._finality_flush_skipped,
                "keepalives_sent": self._keepalives_sent,
                "reconnects_scheduled": self._reconnects_scheduled,
                "reconnects_skipped": self._reconnects_skipped,
                "reconnects_exhausted": self._reconnects_exhausted,
                "backend_errors": self._backend_errors,
                "utterance_duration_sec": {
                    "bounds": list(hist.bounds),
                    "cumulative_counts": list(hist.cumulative_counts),
                    "count": hist.count,
                    "sum": hist.sum,
                },
            }
