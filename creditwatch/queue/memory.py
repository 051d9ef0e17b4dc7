"""
In-Memory Alert Queue.

Process-local transport with the same lease semantics as the Redis one:
- a message is leased to one consumer at a time for ``lock_seconds``
- every lease increments ``delivery_count`` (abandon and lease expiry both
  lead to redelivery)
- settling with a lost lease raises QueueTransportError

Used for development (QUEUE_BACKEND=memory) and tests.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from creditwatch.alerting.schemas import Alert
from creditwatch.exceptions import QueueTransportError
from creditwatch.queue.base import DeadLetterRecord, QueuedMessage, message_properties

logger = structlog.get_logger(__name__)


@dataclass
class _Entry:
    message_id: str
    body: str
    properties: dict[str, Any]
    enqueued_at: datetime
    delivery_count: int = 0
    visible_at: float = 0.0
    lock_token: Optional[str] = None
    locked_until: float = 0.0
    seq: int = field(default=0)


class InMemoryAlertQueue:
    """Lease-based in-memory queue with a dead-letter side channel."""

    def __init__(
        self,
        lock_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lock_seconds = lock_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._dead: dict[str, DeadLetterRecord] = {}
        self._seq = 0
        self._cond = asyncio.Condition()

    # ── Introspection ──────────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        """Messages not yet settled (available, delayed or leased)."""
        return len(self._entries)

    @property
    def dead_letter_count(self) -> int:
        return len(self._dead)

    # ── Producer ───────────────────────────────────────────────────────

    async def send(self, alert: Alert) -> str:
        return await self.send_raw(alert.to_message_body(), message_properties(alert))

    async def send_raw(
        self, body: str, properties: Optional[dict[str, Any]] = None,
        message_id: Optional[str] = None,
    ) -> str:
        """Enqueue a raw body. Lets tests and replays push arbitrary payloads."""
        message_id = message_id or str(uuid.uuid4())
        async with self._cond:
            self._seq += 1
            self._entries[message_id] = _Entry(
                message_id=message_id,
                body=body,
                properties=dict(properties or {}),
                enqueued_at=datetime.now(timezone.utc),
                seq=self._seq,
            )
            self._cond.notify_all()
        logger.debug("queue_message_sent", message_id=message_id, backend="memory")
        return message_id

    # ── Consumer ───────────────────────────────────────────────────────

    async def receive_batch(
        self, max_messages: int, wait_timeout: float
    ) -> list[QueuedMessage]:
        deadline = self._clock() + max(wait_timeout, 0.0)
        async with self._cond:
            while True:
                batch = self._lease_available(max_messages)
                if batch:
                    return batch
                now = self._clock()
                remaining = deadline - now
                if remaining <= 0:
                    return []
                wake = self._next_wake(now)
                timeout = remaining if wake is None else min(remaining, max(wake - now, 0.001))
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass

    async def complete(self, message: QueuedMessage) -> None:
        async with self._cond:
            self._take_leased(message)
        logger.debug("queue_message_completed", message_id=message.message_id)

    async def abandon(self, message: QueuedMessage, delay: float = 0.0) -> None:
        async with self._cond:
            entry = self._take_leased(message, remove=False)
            entry.lock_token = None
            entry.locked_until = 0.0
            entry.visible_at = self._clock() + max(delay, 0.0)
            self._cond.notify_all()
        logger.debug(
            "queue_message_abandoned",
            message_id=message.message_id,
            delivery_count=message.delivery_count,
            delay=delay,
        )

    async def dead_letter(
        self, message: QueuedMessage, reason: str, description: str = ""
    ) -> None:
        async with self._cond:
            entry = self._take_leased(message)
            entry_id = f"dlq_{uuid.uuid4().hex[:16]}"
            self._dead[entry_id] = DeadLetterRecord(
                entry_id=entry_id,
                message_id=entry.message_id,
                reason=reason,
                description=description,
                body=entry.body,
                delivery_count=entry.delivery_count,
                dead_lettered_at=datetime.now(timezone.utc),
            )
        logger.debug("queue_message_dead_lettered", message_id=message.message_id, reason=reason)

    # ── Dead letters ───────────────────────────────────────────────────

    async def dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        records = sorted(self._dead.values(), key=lambda r: r.dead_lettered_at, reverse=True)
        return records[:limit]

    async def replay_dead_letter(self, entry_id: str) -> bool:
        record = self._dead.pop(entry_id, None)
        if record is None:
            return False
        await self.send_raw(record.body, {"replayed_from": entry_id}, message_id=record.message_id)
        logger.info("dead_letter_replayed", entry_id=entry_id, message_id=record.message_id)
        return True

    async def close(self) -> None:
        return None

    # ── Internals ──────────────────────────────────────────────────────

    def _is_available(self, entry: _Entry, now: float) -> bool:
        if entry.lock_token is not None and entry.locked_until > now:
            return False
        return entry.visible_at <= now

    def _lease_available(self, max_messages: int) -> list[QueuedMessage]:
        now = self._clock()
        batch: list[QueuedMessage] = []
        for entry in sorted(self._entries.values(), key=lambda e: e.seq):
            if len(batch) >= max_messages:
                break
            if not self._is_available(entry, now):
                continue
            entry.delivery_count += 1
            entry.lock_token = uuid.uuid4().hex
            entry.locked_until = now + self._lock_seconds
            batch.append(
                QueuedMessage(
                    message_id=entry.message_id,
                    body=entry.body,
                    delivery_count=entry.delivery_count,
                    lock_token=entry.lock_token,
                    enqueued_at=entry.enqueued_at,
                    properties=dict(entry.properties),
                )
            )
        return batch

    def _next_wake(self, now: float) -> Optional[float]:
        times = []
        for entry in self._entries.values():
            if entry.lock_token is not None and entry.locked_until > now:
                times.append(entry.locked_until)
            elif entry.visible_at > now:
                times.append(entry.visible_at)
        return min(times) if times else None

    def _take_leased(self, message: QueuedMessage, remove: bool = True) -> _Entry:
        entry = self._entries.get(message.message_id)
        if (
            entry is None
            or entry.lock_token != message.lock_token
            or entry.locked_until <= self._clock()
        ):
            raise QueueTransportError(
                f"Lock lost for message {message.message_id}",
                details={"message_id": message.message_id},
            )
        if remove:
            del self._entries[message.message_id]
        return entry
