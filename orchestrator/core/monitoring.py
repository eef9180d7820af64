"""Prometheus Metrics Configuration"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest, start_http_server
from typing import Optional

# Create a custom registry for our metrics
registry = CollectorRegistry()

# ============================================================================
# Scheduler Metrics
# ============================================================================

scheduler_scans_total = Counter(
    'scheduler_scans_total',
    'Total due-schedule scans performed',
    registry=registry
)

scheduled_executions_total = Counter(
    'scheduled_executions_total',
    'Scheduled tests processed by the scanner',
    ['outcome'],  # dispatched, skipped, in_flight, error
    registry=registry
)

scheduled_executions_in_flight = Gauge(
    'scheduled_executions_in_flight',
    'Scheduled test runs currently executing',
    registry=registry
)

# ============================================================================
# Execution Metrics
# ============================================================================

test_runs_completed_total = Counter(
    'test_runs_completed_total',
    'Test runs that reached a terminal status',
    ['status'],
    registry=registry
)

runner_invocations_total = Counter(
    'runner_invocations_total',
    'External test runner invocations',
    ['runner', 'outcome'],  # completed, error
    registry=registry
)

runner_duration_seconds = Histogram(
    'runner_duration_seconds',
    'External test runner wall-clock duration in seconds',
    ['runner'],
    registry=registry,
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 180.0, 300.0)
)

# ============================================================================
# Helper Functions
# ============================================================================

def get_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(registry)


def start_metrics_server(port: int) -> None:
    """
    Expose the metrics registry over HTTP for Prometheus scraping.

    Args:
        port: TCP port to listen on
    """
    start_http_server(port, registry=registry)


class MetricsCollector:
    """Helper class for collecting and updating metrics"""

    @staticmethod
    def record_scan():
        """Record one scheduler scan"""
        scheduler_scans_total.inc()

    @staticmethod
    def record_scheduled_execution(outcome: str):
        """Record how the scanner handled one due schedule"""
        scheduled_executions_total.labels(outcome=outcome).inc()

    @staticmethod
    def set_in_flight(count: int):
        """Update the in-flight scheduled run gauge"""
        scheduled_executions_in_flight.set(count)

    @staticmethod
    def record_test_run(status: str):
        """Record a test run reaching a terminal status"""
        test_runs_completed_total.labels(status=status).inc()

    @staticmethod
    def record_runner_invocation(runner: str, outcome: str, duration: Optional[float] = None):
        """Record runner invocation metrics"""
        runner_invocations_total.labels(runner=runner, outcome=outcome).inc()
        if duration is not None:
            runner_duration_seconds.labels(runner=runner).observe(duration)
