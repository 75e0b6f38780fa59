"""
Results Collector - Aggregates per-request outcomes from writers and readers.

Provides live counters, percentile calculations and the latency/error
section of the final report.
"""

import statistics
import threading
import time
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional


@dataclass
class RequestResult:
    """Result of a single set/get against one node."""

    operation: str
    node: str
    key: str

    # Timing (seconds)
    start_time: float
    end_time: float

    status: str = "success"  # success, error, timeout, cancelled
    status_code: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def latency(self) -> float:
        return self.end_time - self.start_time


@dataclass
class AggregateStats:
    """Aggregated statistics for a metric."""
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    stddev: float = 0.0

    @classmethod
    def from_values(cls, values: List[float]) -> "AggregateStats":
        """Calculate statistics from a list of values."""
        if not values:
            return cls()

        sorted_values = sorted(values)
        n = len(values)

        return cls(
            count=n,
            min=sorted_values[0],
            max=sorted_values[-1],
            mean=statistics.mean(values),
            median=statistics.median(values),
            p90=sorted_values[int(n * 0.90)] if n > 1 else sorted_values[0],
            p95=sorted_values[int(n * 0.95)] if n > 1 else sorted_values[0],
            p99=sorted_values[int(n * 0.99)] if n > 1 else sorted_values[0],
            stddev=statistics.stdev(values) if n > 1 else 0.0,
        )


class ResultsCollector:
    """
    Thread-safe collector for request results.

    Usage:
        collector = ResultsCollector()
        client = HttpNodeClient(on_result=collector.add_result)
        ...
        report = collector.generate_report()
    """

    def __init__(self):
        self._results: List[RequestResult] = []
        self._lock = threading.Lock()
        self._start_time: Optional[float] = None
        self._end_time: Optional[float] = None

        self._success_count = 0
        self._error_count = 0
        self._timeout_count = 0
        self._cancelled_count = 0

    def start(self):
        self._start_time = time.time()

    def stop(self):
        self._end_time = time.time()

    def add_result(self, result: RequestResult):
        """Add a request result (thread-safe)."""
        with self._lock:
            self._results.append(result)

            if result.status == "success":
                self._success_count += 1
            elif result.status == "error":
                self._error_count += 1
            elif result.status == "timeout":
                self._timeout_count += 1
            elif result.status == "cancelled":
                self._cancelled_count += 1

    @property
    def results(self) -> List[RequestResult]:
        with self._lock:
            return list(self._results)

    def get_live_stats(self) -> Dict[str, Any]:
        """Lightweight counters for progress logging."""
        with self._lock:
            total = len(self._results)
            elapsed = time.time() - (self._start_time or time.time())
            return {
                "total_requests": total,
                "success_count": self._success_count,
                "error_count": self._error_count,
                "timeout_count": self._timeout_count,
                "cancelled_count": self._cancelled_count,
                "success_rate": self._success_count / total if total > 0 else 0.0,
                "requests_per_second": total / elapsed if elapsed > 0 else 0.0,
            }

    def latency_stats(self, operation: Optional[str] = None) -> AggregateStats:
        """Latency of successful requests, optionally for one operation."""
        with self._lock:
            values = [
                r.latency for r in self._results
                if r.status == "success" and (operation is None or r.operation == operation)
            ]
        return AggregateStats.from_values(values)

    def generate_report(self) -> Dict[str, Any]:
        """Summary, latency per operation and grouped errors."""
        with self._lock:
            results = self._results.copy()

        if not results:
            return {
                "status": "no_data",
                "message": "No results collected",
            }

        success_results = [r for r in results if r.status == "success"]
        error_results = [r for r in results if r.status != "success"]

        total_duration = (self._end_time or time.time()) - (self._start_time or time.time())

        report: Dict[str, Any] = {
            "summary": {
                "total_duration_seconds": total_duration,
                "total_requests": len(results),
                "successful_requests": len(success_results),
                "failed_requests": len([r for r in results if r.status == "error"]),
                "timeout_requests": len([r for r in results if r.status == "timeout"]),
                "cancelled_requests": len([r for r in results if r.status == "cancelled"]),
                "success_rate": len(success_results) / len(results),
                "requests_per_second": len(results) / total_duration if total_duration > 0 else 0,
            },
            "latency": {},
            "errors": [],
        }

        by_operation: Dict[str, List[float]] = defaultdict(list)
        for r in success_results:
            by_operation[r.operation].append(r.latency)
        for operation, values in sorted(by_operation.items()):
            report["latency"][operation] = asdict(AggregateStats.from_values(values))

        if error_results:
            error_messages: Dict[str, int] = defaultdict(int)
            for r in error_results:
                error_messages[r.error_message or "Unknown error"] += 1

            report["errors"] = [
                {"message": msg, "count": count}
                for msg, count in sorted(error_messages.items(), key=lambda x: -x[1])
            ]

        return report
