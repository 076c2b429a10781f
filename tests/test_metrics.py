"""Unit tests for metrics collectors."""

from prometheus_client import CollectorRegistry

from gruenerator_ai.metrics import (
    ConnectionMetrics,
    DispatchEvent,
    LoggingMetricsCollector,
    PrometheusMetricsCollector,
)


def test_logging_metrics_collector_logs():
    logs = {}

    class _Logger:
        def info(self, name, extra=None):
            logs["name"] = name
            logs["extra"] = extra

    collector = LoggingMetricsCollector(logger=_Logger())
    collector.record(
        DispatchEvent(
            request_id="req-1",
            request_type="presse",
            status="success",
            provider="mistral",
            model="mistral-medium-latest",
            duration_ms=12.3456,
        )
    )

    assert logs["name"] == "dispatch_metrics"
    assert logs["extra"]["metrics"]["status"] == "success"
    assert logs["extra"]["metrics"]["duration_ms"] == 12.346


def test_prometheus_metrics_collector_records_values():
    registry = CollectorRegistry()
    collector = PrometheusMetricsCollector(worker_id="worker-b", registry=registry)

    collector.record(
        DispatchEvent(
            request_id="req-1",
            request_type="sharepic",
            status="success",
            provider="claude",
            model="claude",
            duration_ms=100.0,
            fallback_used=True,
        )
    )
    collector.record(
        DispatchEvent(
            request_id="req-2",
            request_type="presse",
            status="error",
            provider=None,
            model=None,
            duration_ms=200.0,
            error_code="content_policy",
        )
    )

    success_total = registry.get_sample_value(
        "gruenerator_ai_dispatch_total",
        labels={
            "worker_id": "worker-b",
            "status": "success",
            "provider": "claude",
            "request_type": "sharepic",
            "fallback": "true",
            "error_code": "none",
        },
    )
    assert success_total == 1.0

    error_total = registry.get_sample_value(
        "gruenerator_ai_dispatch_total",
        labels={
            "worker_id": "worker-b",
            "status": "error",
            "provider": "unknown",
            "request_type": "presse",
            "fallback": "false",
            "error_code": "content_policy",
        },
    )
    assert error_total == 1.0

    duration_sum = registry.get_sample_value(
        "gruenerator_ai_dispatch_duration_seconds_sum",
        labels={"worker_id": "worker-b", "status": "success", "provider": "claude"},
    )
    assert duration_sum == 0.1


def test_connection_metrics_snapshot():
    metrics = ConnectionMetrics(clock=lambda: 42.0)

    metrics.on_attempt("ionos")
    metrics.on_failure("ionos", "timeout")
    metrics.on_retry("ionos")
    metrics.on_attempt("ionos")
    metrics.on_success("ionos")

    snapshot = metrics.snapshot()
    assert (snapshot.attempts, snapshot.successes, snapshot.failures, snapshot.retries) == (2, 1, 1, 1)
    assert snapshot.last_failure_time == 42.0
    assert snapshot.last_failure_reason == "ionos: timeout"
