"""
In-process metrics for the Precedent RAG engine.

Counts analyses (outcome, case type, degraded parses), keeps a rolling
latency window, and totals sync batch throughput. Served by the API at
/api/v1/metrics.
"""

import time
import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)

HISTORY_SIZE = 1000


@dataclass
class LatencyWindow:
    """Rolling sample of latencies in milliseconds."""
    samples: deque = field(default_factory=lambda: deque(maxlen=HISTORY_SIZE))
    count: int = 0
    total_ms: float = 0.0
    lowest_ms: Optional[float] = None
    highest_ms: float = 0.0

    def add(self, value_ms: float) -> None:
        self.samples.append(value_ms)
        self.count += 1
        self.total_ms += value_ms
        self.highest_ms = max(self.highest_ms, value_ms)
        self.lowest_ms = value_ms if self.lowest_ms is None else min(self.lowest_ms, value_ms)

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def percentile(self, fraction: float) -> float:
        """Nearest-rank percentile over the retained samples."""
        if not self.samples:
            return 0.0
        ordered = sorted(self.samples)
        return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]

    def summary(self) -> dict:
        return {
            "avg": round(self.mean_ms, 2),
            "min": round(self.lowest_ms or 0.0, 2),
            "max": round(self.highest_ms, 2),
            "p95": round(self.percentile(0.95), 2),
        }


@dataclass
class AnalysisRecord:
    """Outcome of one tracked analysis."""
    description: str
    started_at: datetime
    latency_ms: float = 0.0
    case_type: Optional[str] = None
    matches_count: int = 0
    confidence: float = 0.0
    parse_degraded: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class SystemMetrics:
    """Aggregated counters since start-up (or the last reset)."""
    analyses: int = 0
    analyses_failed: int = 0
    degraded_parses: int = 0
    case_types: Counter = field(default_factory=Counter)
    latency: LatencyWindow = field(default_factory=LatencyWindow)

    sync_batches: int = 0
    precedents_fetched: int = 0
    precedents_indexed: int = 0
    sync_failures: int = 0

    errors: Counter = field(default_factory=Counter)

    @property
    def analyses_succeeded(self) -> int:
        return self.analyses - self.analyses_failed

    @property
    def error_rate(self) -> float:
        return self.analyses_failed / self.analyses if self.analyses else 0.0

    def to_dict(self) -> dict:
        return {
            "analyses": {
                "total": self.analyses,
                "successful": self.analyses_succeeded,
                "failed": self.analyses_failed,
                "degraded_parses": self.degraded_parses,
                "error_rate": f"{self.error_rate:.2%}",
                "by_case_type": dict(self.case_types),
            },
            "latency_ms": self.latency.summary(),
            "sync": {
                "batches": self.sync_batches,
                "fetched": self.precedents_fetched,
                "indexed": self.precedents_indexed,
                "failed": self.sync_failures,
            },
            "errors": dict(self.errors),
        }


class AnalysisTimer:
    """
    Times one analysis and reports it to the collector on exit.

    An exception inside the block is recorded as a failure and re-raised.
    """

    def __init__(self, collector: "MetricsCollector", description: str):
        self._collector = collector
        self._started = 0.0
        self.record = AnalysisRecord(description=description[:200], started_at=datetime.now())

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.record.latency_ms = (time.perf_counter() - self._started) * 1000
        if exc_type is not None:
            self.record.error = str(exc_val)
        self._collector._add(self.record, exc_type.__name__ if exc_type else None)
        return False

    def set_result(self, result) -> None:
        """Copy outcome fields from an AnalysisResult."""
        self.record.case_type = result.case_type
        self.record.matches_count = len(result.retrieved_matches)
        self.record.confidence = result.confidence
        self.record.parse_degraded = result.parse_degraded


class MetricsCollector:
    """
    Process-wide metrics sink.

    Usage:
        collector = get_metrics_collector()
        with collector.track_analysis(description) as timer:
            timer.set_result(analyzer.analyze(description))
        collector.record_sync(report)
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._lock = threading.Lock()
            instance._reset_state()
            cls._instance = instance
        return cls._instance

    def _reset_state(self) -> None:
        self.metrics = SystemMetrics()
        self._history: deque = deque(maxlen=HISTORY_SIZE)
        self._started_at = datetime.now()

    def reset(self) -> None:
        with self._lock:
            self._reset_state()

    def track_analysis(self, description: str) -> AnalysisTimer:
        return AnalysisTimer(self, description)

    def _add(self, record: AnalysisRecord, error_type: Optional[str]) -> None:
        with self._lock:
            m = self.metrics
            m.analyses += 1
            m.latency.add(record.latency_ms)
            if error_type:
                m.analyses_failed += 1
                m.errors[error_type] += 1
            else:
                if record.parse_degraded:
                    m.degraded_parses += 1
                if record.case_type:
                    m.case_types[record.case_type] += 1
            self._history.append(record)

    def record_sync(self, report) -> None:
        """Add a finished SyncReport to the sync totals."""
        with self._lock:
            m = self.metrics
            m.sync_batches += 1
            m.precedents_fetched += report.fetched
            m.precedents_indexed += report.newly_indexed
            m.sync_failures += report.failed
        logger.info(
            f"Sync batch recorded: {report.newly_indexed} indexed, {report.failed} failed"
        )

    def get_metrics(self) -> SystemMetrics:
        return self.metrics

    def get_metrics_dict(self) -> dict:
        with self._lock:
            return self.metrics.to_dict()

    def get_recent_analyses(self, limit: int = 10) -> list[AnalysisRecord]:
        with self._lock:
            return list(self._history)[-limit:]

    def get_uptime(self) -> timedelta:
        return datetime.now() - self._started_at


_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
