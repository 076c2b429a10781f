"""Metrics collection primitives for the AI dispatch worker."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


@dataclass
class DispatchEvent:
    """Structured metrics payload for one dispatch."""

    request_id: str
    request_type: str
    status: str
    provider: Optional[str]
    model: Optional[str]
    duration_ms: float
    fallback_used: bool = False
    error_code: Optional[str] = None


class MetricsCollector(Protocol):
    """Protocol for collecting dispatch events."""

    def record(self, event: DispatchEvent) -> None:
        """Persist or emit the metrics event."""


class LoggingMetricsCollector(MetricsCollector):
    """Default metrics collector that logs structured events."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("gruenerator_ai.metrics")

    def record(self, event: DispatchEvent) -> None:
        payload = {
            "request_id": event.request_id,
            "request_type": event.request_type,
            "status": event.status,
            "provider": event.provider,
            "model": event.model,
            "duration_ms": round(event.duration_ms, 3),
            "fallback_used": event.fallback_used,
            "error_code": event.error_code,
        }
        self._logger.info("dispatch_metrics", extra={"metrics": payload})


class PrometheusMetricsCollector(MetricsCollector):
    """Metrics collector backed by Prometheus client library."""

    def __init__(
        self,
        *,
        worker_id: str,
        port: Optional[int] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._worker_id = worker_id
        self._registry = registry or CollectorRegistry()
        self._events = Counter(
            "gruenerator_ai_dispatch_total",
            "Total dispatch outcomes",
            ["worker_id", "status", "provider", "request_type", "fallback", "error_code"],
            registry=self._registry,
        )
        self._duration = Histogram(
            "gruenerator_ai_dispatch_duration_seconds",
            "Dispatch duration including retries and fallback",
            ["worker_id", "status", "provider"],
            registry=self._registry,
        )
        if port is not None:
            start_http_server(port, registry=self._registry)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record(self, event: DispatchEvent) -> None:
        provider = event.provider or "unknown"
        self._events.labels(
            worker_id=self._worker_id,
            status=event.status,
            provider=provider,
            request_type=event.request_type,
            fallback=str(bool(event.fallback_used)).lower(),
            error_code=event.error_code or "none",
        ).inc()
        self._duration.labels(
            worker_id=self._worker_id,
            status=event.status,
            provider=provider,
        ).observe(max(event.duration_ms / 1000.0, 0.0))


@dataclass(frozen=True)
class ConnectionSnapshot:
    attempts: int
    successes: int
    failures: int
    retries: int
    last_failure_time: Optional[float]
    last_failure_reason: Optional[str]


class RetryObserver(Protocol):
    """Sink for per-attempt retry outcomes."""

    def on_attempt(self, provider: str) -> None: ...

    def on_success(self, provider: str) -> None: ...

    def on_failure(self, provider: str, reason: str) -> None: ...

    def on_retry(self, provider: str) -> None: ...


class ConnectionMetrics(RetryObserver):
    """Thread-safe diagnostic counters for vendor connection attempts."""

    def __init__(self, clock=time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._attempts = 0
        self._successes = 0
        self._failures = 0
        self._retries = 0
        self._last_failure_time: Optional[float] = None
        self._last_failure_reason: Optional[str] = None

    def on_attempt(self, provider: str) -> None:
        with self._lock:
            self._attempts += 1

    def on_success(self, provider: str) -> None:
        with self._lock:
            self._successes += 1

    def on_failure(self, provider: str, reason: str) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_time = self._clock()
            self._last_failure_reason = f"{provider}: {reason}"

    def on_retry(self, provider: str) -> None:
        with self._lock:
            self._retries += 1

    def snapshot(self) -> ConnectionSnapshot:
        with self._lock:
            return ConnectionSnapshot(
                attempts=self._attempts,
                successes=self._successes,
                failures=self._failures,
                retries=self._retries,
                last_failure_time=self._last_failure_time,
                last_failure_reason=self._last_failure_reason,
            )
