"""Runtime orchestration for the AI dispatch worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from beast_mailbox_core import MailboxMessage
from beast_mailbox_core.redis_mailbox import RedisMailboxService

from .config import WorkerConfig
from .dispatcher import Dispatcher
from .fallback import FallbackChain
from .handlers import RequestHandler
from .metrics import ConnectionMetrics, LoggingMetricsCollector, MetricsCollector, PrometheusMetricsCollector
from .pending import RedisPendingRequestLock, RedisPendingRequestStore
from .providers.registry import ProviderRegistry
from .retry import RetryPolicy

LOGGER = logging.getLogger("gruenerator_ai.runtime")


def _level_for(name: str) -> int:
    level = getattr(logging, name.upper(), logging.INFO)
    if isinstance(level, int):
        return level
    return logging.INFO


def create_metrics_collector(config: WorkerConfig) -> MetricsCollector:
    if config.metrics_backend == "prometheus":
        return PrometheusMetricsCollector(
            worker_id=config.worker_id,
            port=config.metrics_port,
        )
    return LoggingMetricsCollector()


def create_dispatcher(
    config: WorkerConfig,
    *,
    registry: Optional[ProviderRegistry] = None,
    metrics: Optional[MetricsCollector] = None,
    connection_metrics: Optional[ConnectionMetrics] = None,
) -> Dispatcher:
    """Wire registry, retry policy, fallback chain and metrics from configuration."""
    registry = registry or ProviderRegistry(config)
    retry_policy = RetryPolicy(
        max_attempts=config.retry_max,
        base_delay=config.retry_backoff_base,
        observer=connection_metrics or ConnectionMetrics(),
    )
    return Dispatcher(
        config=config,
        registry=registry,
        retry_policy=retry_policy,
        fallback_chain=FallbackChain(registry),
        metrics=metrics or create_metrics_collector(config),
    )


class WorkerRuntime:
    """Manage mailbox lifecycle and request processing."""

    def __init__(
        self,
        *,
        config: WorkerConfig,
        mailbox_service: Optional[RedisMailboxService] = None,
        registry: Optional[ProviderRegistry] = None,
        request_handler: Optional[RequestHandler] = None,
    ) -> None:
        self.config = config
        LOGGER.setLevel(_level_for(config.log_level))

        self.mailbox_service = mailbox_service or RedisMailboxService(
            config.worker_id,
            config.to_mailbox_config(),
        )
        self._registry = registry or ProviderRegistry(config)
        self.connection_metrics = ConnectionMetrics()
        self.pending_lock: Optional[RedisPendingRequestLock] = None
        self.pending_store: Optional[RedisPendingRequestStore] = None
        if config.redis_url:
            self.pending_lock = RedisPendingRequestLock(url=config.redis_url, ttl=config.pending_lock_ttl)
            self.pending_store = RedisPendingRequestStore(url=config.redis_url)

        if request_handler is None:
            request_handler = RequestHandler(
                config=config,
                dispatcher=create_dispatcher(
                    config,
                    registry=self._registry,
                    connection_metrics=self.connection_metrics,
                ),
                send_response=self.mailbox_service.send_message,
                pending_lock=self.pending_lock,
                pending_store=self.pending_store,
            )
        self._request_handler = request_handler
        self._request_callback: Callable[[MailboxMessage], Awaitable[None]] = request_handler.handle

        self._shutdown_event = asyncio.Event()
        self._started = False
        self._handler_registered = False

    async def start(self) -> None:
        """Start mailbox processing."""
        if self._started:
            return
        if not self._handler_registered:
            self.mailbox_service.register_handler(self._request_callback)
            self._handler_registered = True
        await self.mailbox_service.start()
        self._started = True
        LOGGER.info("AI worker runtime started for worker_id=%s", self.config.worker_id)

    async def stop(self) -> None:
        """Stop mailbox processing and cleanup resources."""
        if not self._started:
            return
        try:
            await self.mailbox_service.stop()
        finally:
            await self._registry.aclose()
            if self.pending_lock is not None:
                await self.pending_lock.aclose()
            if self.pending_store is not None:
                await self.pending_store.aclose()
            self._started = False
            self._shutdown_event.set()
            snapshot = self.connection_metrics.snapshot()
            LOGGER.info(
                "AI worker runtime stopped for worker_id=%s (attempts=%s successes=%s failures=%s retries=%s)",
                self.config.worker_id,
                snapshot.attempts,
                snapshot.successes,
                snapshot.failures,
                snapshot.retries,
            )

    def request_shutdown(self) -> None:
        """Signal the runtime loop to exit."""
        self._shutdown_event.set()

    async def run(self) -> None:
        """Start the runtime and run until shutdown is requested."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()


async def perform_healthcheck(
    config: WorkerConfig,
    mailbox_factory: Optional[Callable[[WorkerConfig], RedisMailboxService]] = None,
) -> bool:
    """Attempt to connect to the mailbox backend and report configured providers."""
    mailbox_factory = mailbox_factory or (lambda cfg: RedisMailboxService(cfg.worker_id, cfg.to_mailbox_config()))
    configured = [name.value for name, settings in config.providers.items() if settings.is_configured]
    if not configured:
        LOGGER.warning("Healthcheck: no LLM provider is configured for worker_id=%s", config.worker_id)
    mailbox = mailbox_factory(config)
    try:
        await mailbox.connect()
        LOGGER.info("Healthcheck succeeded for worker_id=%s (providers=%s)", config.worker_id, ",".join(configured))
        return bool(configured)
    except Exception as exc:
        LOGGER.warning("Healthcheck failed for worker_id=%s: %s", config.worker_id, exc)
        return False
    finally:
        if getattr(mailbox, "_running", False):
            try:
                await mailbox.stop()
            except Exception:
                LOGGER.debug("Error stopping mailbox after healthcheck", exc_info=True)
