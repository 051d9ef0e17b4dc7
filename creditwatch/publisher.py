"""
Alert Publisher — producer-facing entry point.

The risk evaluation side calls ``publish_alert`` exactly once per created
alert; everything downstream is driven by the queue.
"""

import structlog

from creditwatch.alerting.schemas import Alert
from creditwatch.metrics import ALERTS_PUBLISHED
from creditwatch.queue.base import AlertQueueClient

logger = structlog.get_logger(__name__)


class AlertPublisher:
    def __init__(self, queue: AlertQueueClient):
        self._queue = queue

    async def publish_alert(self, alert: Alert) -> str:
        """Enqueue ``alert``. Returns the queue message id."""
        message_id = await self._queue.send(alert)
        ALERTS_PUBLISHED.labels(severity=alert.severity.label).inc()
        logger.info(
            "alert_published",
            alert_id=alert.id,
            account_id=alert.account_id,
            severity=alert.severity.label,
            message_id=message_id,
        )
        return message_id
