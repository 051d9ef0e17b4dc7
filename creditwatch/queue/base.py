"""
Alert Queue Contract.

Durable, at-least-once transport between the alert producer and the
processors. A message is leased to at most one consumer at a time; no
ordering is guaranteed across messages or consumers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from creditwatch.alerting.schemas import Alert


@dataclass(frozen=True)
class QueuedMessage:
    """
    A leased queue message.

    Owned by the transport: processors only read it. ``lock_token`` is the
    transport's handle for settling the lease.
    """

    message_id: str
    body: str
    delivery_count: int = 1
    lock_token: Optional[str] = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeadLetterRecord:
    """Dead-lettered message — keeps everything needed for a manual replay."""

    entry_id: str
    message_id: str
    reason: str
    description: str
    body: str
    delivery_count: int
    dead_lettered_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "message_id": self.message_id,
            "reason": self.reason,
            "description": self.description,
            "body": self.body,
            "delivery_count": self.delivery_count,
            "dead_lettered_at": self.dead_lettered_at.isoformat(),
        }


class AlertQueueClient(Protocol):
    """Transport operations used by the publisher, workers and replay tooling."""

    async def send(self, alert: Alert) -> str:
        """Enqueue an alert. Returns the queue message id."""
        ...

    async def receive_batch(
        self, max_messages: int, wait_timeout: float
    ) -> list[QueuedMessage]:
        """Lease up to ``max_messages``, waiting at most ``wait_timeout`` seconds."""
        ...

    async def complete(self, message: QueuedMessage) -> None:
        ...

    async def abandon(self, message: QueuedMessage, delay: float = 0.0) -> None:
        """Release the lease; the message is redelivered with delivery_count + 1."""
        ...

    async def dead_letter(
        self, message: QueuedMessage, reason: str, description: str = ""
    ) -> None:
        ...

    async def dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        ...

    async def replay_dead_letter(self, entry_id: str) -> bool:
        """Move a dead-lettered message back onto the main queue."""
        ...

    async def close(self) -> None:
        ...


def message_properties(alert: Alert) -> dict[str, Any]:
    """Routing properties stamped on every outgoing alert message."""
    return {
        "subject": "CreditAlert",
        "content_type": "application/json",
        "alert_id": alert.id,
        "alert_type": alert.alert_type,
        "severity": alert.severity.label,
        "account_id": alert.account_id,
        "created_at": alert.created_at.isoformat(),
    }
