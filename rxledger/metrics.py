"""
Submission metrics for the prescription gateway.

Every ledger submission (prescription or dispensation) is recorded with its
wall-clock latency and outcome. Latency percentiles are computed over
successful submissions only; failures are counted by error kind.
In memory only, reset on restart.
"""
import math
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass
class SubmissionMetric:
    ts: str
    record_type: str
    prescription_id: str
    latency_ms: float
    success: bool
    error_kind: Optional[str] = None


@dataclass
class RunSummary:
    started_at: str
    total_submitted: int
    total_success: int
    total_failed: int
    avg_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    failures_by_kind: dict = field(default_factory=dict)
    by_record_type: dict = field(default_factory=dict)


def _nearest_rank(ordered: list[float], pct: float) -> float:
    if not ordered:
        return 0.0
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


class MetricsCollector:
    """Thread-safe; the API handlers and executor threads may both record."""

    def __init__(self, clock=lambda: datetime.now(timezone.utc)):
        self._guard = threading.Lock()
        self._entries: list[SubmissionMetric] = []
        self._started = clock().isoformat(timespec="seconds")

    def record(self, metric: SubmissionMetric) -> None:
        with self._guard:
            self._entries.append(metric)

    def summary(self) -> RunSummary:
        with self._guard:
            entries = self._entries[:]

        ok = sorted(e.latency_ms for e in entries if e.success)
        failed = [e for e in entries if not e.success]
        mean = sum(ok) / len(ok) if ok else 0.0

        return RunSummary(
            started_at=self._started,
            total_submitted=len(entries),
            total_success=len(ok),
            total_failed=len(failed),
            avg_latency_ms=round(mean, 2),
            p95_latency_ms=round(_nearest_rank(ok, 95), 2),
            p99_latency_ms=round(_nearest_rank(ok, 99), 2),
            failures_by_kind=dict(Counter(e.error_kind for e in failed)),
            by_record_type=dict(Counter(e.record_type for e in entries)),
        )

    def recent(self, n: int = 50) -> list[SubmissionMetric]:
        with self._guard:
            return self._entries[-n:]
