"""
Service Registry — wires the alert pipeline together.

All components are created once and shared across the process:

    queue ─▶ publisher
    queue ─▶ workers ─▶ processor ─▶ actions
                              └────▶ fanout ─▶ hub ◀─ notifications

Usage:
    from creditwatch.registry import get_services
    services = get_services()
    await services.publisher.publish_alert(alert)
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from creditwatch.alerting.actions import (
    AccountActions,
    AccountStatusLookup,
    InMemoryAccountActions,
)
from creditwatch.alerting.fanout import FanoutDispatcher
from creditwatch.alerting.processor import AlertProcessor
from creditwatch.config import Settings, settings
from creditwatch.publisher import AlertPublisher
from creditwatch.queue.base import AlertQueueClient
from creditwatch.queue.memory import InMemoryAlertQueue
from creditwatch.queue.redis_streams import RedisAlertQueue
from creditwatch.realtime.hub import NotificationHub
from creditwatch.realtime.notifications import NotificationService
from creditwatch.worker import AlertWorker, WorkerPool

logger = structlog.get_logger(__name__)


@dataclass
class ServiceRegistry:
    config: Settings
    queue: AlertQueueClient
    actions: AccountActions
    hub: NotificationHub
    fanout: FanoutDispatcher
    notifications: NotificationService
    processor: AlertProcessor
    publisher: AlertPublisher
    workers: WorkerPool

    async def close(self) -> None:
        await self.workers.stop(timeout=self.config.graceful_shutdown_seconds)
        await self.queue.close()


def build_queue(config: Settings) -> AlertQueueClient:
    if config.queue_backend == "memory":
        return InMemoryAlertQueue(lock_seconds=config.queue_lock_seconds)
    if config.queue_backend == "redis":
        return RedisAlertQueue.from_url(
            config.redis_url,
            stream=config.alert_stream,
            group=config.alert_consumer_group,
            dead_letter_stream=config.dead_letter_stream,
            lock_seconds=config.queue_lock_seconds,
        )
    raise ValueError(f"Unknown QUEUE_BACKEND: {config.queue_backend!r}")


def build_services(
    config: Optional[Settings] = None,
    *,
    queue: Optional[AlertQueueClient] = None,
    actions: Optional[AccountActions] = None,
) -> ServiceRegistry:
    """Build every pipeline component from settings. Collaborators may be injected."""
    config = config or settings
    queue = queue or build_queue(config)
    actions = actions or InMemoryAccountActions()

    hub = NotificationHub(delivery_timeout=config.delivery_timeout_seconds)
    fanout = FanoutDispatcher(hub)
    processor = AlertProcessor(
        actions,
        fanout=fanout,
        max_attempts=config.max_attempts,
        max_concurrency=config.processor_concurrency,
    )
    workers = WorkerPool([
        AlertWorker(
            queue,
            processor,
            worker_id=f"worker-{i}",
            batch_size=config.batch_size,
            receive_wait=config.receive_wait_seconds,
            empty_backoff=config.empty_backoff_seconds,
            error_backoff=config.error_backoff_seconds,
            redelivery_delay=config.redelivery_delay_seconds,
        )
        for i in range(config.worker_count)
    ])
    logger.debug(
        "services_built",
        queue_backend=type(queue).__name__,
        workers=config.worker_count,
        max_attempts=config.max_attempts,
    )
    return ServiceRegistry(
        config=config,
        queue=queue,
        actions=actions,
        hub=hub,
        fanout=fanout,
        notifications=NotificationService(
            hub,
            fanout,
            accounts=actions if isinstance(actions, AccountStatusLookup) else None,
        ),
        processor=processor,
        publisher=AlertPublisher(queue),
        workers=workers,
    )


_services: Optional[ServiceRegistry] = None


def get_services() -> ServiceRegistry:
    """Get or create the process-wide registry."""
    global _services
    if _services is None:
        _services = build_services()
    return _services
