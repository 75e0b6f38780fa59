"""
Prometheus metrics for the replica verifier.

Metrics live in memory and are only exposed when a metrics port is
configured, so a one-shot verification run can still be scraped while it
is in progress.

Usage:
    from replica_verifier.metrics import METRICS, MetricsServer

    MetricsServer(port=9100).start()
    METRICS.requests_total.labels(operation="get", status="success").inc()
"""

import time
from typing import Optional

import structlog
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    REGISTRY,
    start_http_server,
)

logger = structlog.get_logger()

# Store round-trips: local network, typically 1ms - 500ms
REQUEST_LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class VerifierMetrics:
    """Container for all verifier metrics."""

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.requests_total = Counter(
            'replica_verifier_requests_total',
            'Requests issued against store nodes',
            ['operation', 'status'],  # status: success, error, timeout, cancelled
            registry=registry,
        )

        self.request_latency = Histogram(
            'replica_verifier_request_latency_seconds',
            'Latency of a single set/get against one node',
            ['operation'],
            buckets=REQUEST_LATENCY_BUCKETS,
            registry=registry,
        )

        self.absent_cells = Counter(
            'replica_verifier_absent_cells_total',
            'Result matrix cells left absent after collection',
            ['kind'],  # transport, parse
            registry=registry,
        )

        self.verdicts = Counter(
            'replica_verifier_verdicts_total',
            'Per-key verdicts produced by the consistency checker',
            ['status'],  # consistent, inconsistent, unverified
            registry=registry,
        )

        self.phase = Gauge(
            'replica_verifier_phase',
            'Index of the workflow phase currently executing',
            registry=registry,
        )


class Timer:
    """
    Wall-clock timer for a single request.

    Usage:
        with Timer() as t:
            await client.get(url)
        METRICS.request_latency.labels(operation="get").observe(t.duration)
    """

    def __init__(self):
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def start(self):
        self.start_time = time.perf_counter()

    def stop(self):
        self.end_time = time.perf_counter()

    @property
    def duration(self) -> float:
        """Returns duration in seconds."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time else time.perf_counter()
        return end - self.start_time

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.stop()


class MetricsServer:
    """Serves /metrics on its own port in a background thread."""

    def __init__(self, port: int = 9100):
        self.port = port
        self._started = False

    def start(self):
        if self._started:
            logger.warning("Metrics server already started", port=self.port)
            return

        try:
            start_http_server(self.port)
            self._started = True
            logger.info("Metrics server started", port=self.port)
        except OSError as e:
            logger.error("Failed to start metrics server", port=self.port, error=str(e))
            raise


# Single instance of metrics - import this in other modules
METRICS = VerifierMetrics()
