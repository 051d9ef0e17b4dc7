"""
Redis Streams Alert Queue.

Production transport built on a Redis Stream consumer group:
- send: XADD to the alert stream
- receive: XREADGROUP with a bounded BLOCK (never waits forever)
- complete: XACK + XDEL
- abandon: XACK + XDEL the old entry, then re-add with delivery_count + 1
  (delayed redelivery parks the entry in a sorted set until due)
- dead-letter: XACK + XDEL, then XADD to the dead-letter stream with reason + body

Each settle is one Lua script: the write only happens when XACK returned 1,
so a consumer whose entry was already settled elsewhere raises instead of
adding a duplicate.

Consumers that crash leave entries pending in the group. Entries idle longer
than the lease duration are reclaimed with XAUTOCLAIM and re-added with an
incremented delivery count, so a crash counts as a delivery attempt.
"""

import json
import os
import socket
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from redis.exceptions import RedisError, ResponseError

from creditwatch.alerting.schemas import Alert
from creditwatch.config import settings
from creditwatch.exceptions import QueueTransportError
from creditwatch.queue.base import DeadLetterRecord, QueuedMessage, message_properties

logger = structlog.get_logger(__name__)

# Atomically move due entries from the delayed set back onto the stream.
_PROMOTE_DELAYED = """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
for _, member in ipairs(due) do
  redis.call('ZREM', KEYS[1], member)
  local f = cjson.decode(member)
  redis.call('XADD', KEYS[2], '*',
    'message_id', f.message_id, 'body', f.body,
    'delivery_count', f.delivery_count, 'properties', f.properties,
    'enqueued_at', f.enqueued_at)
end
return #due
"""

# XACK first; only an entry this group still had pending is deleted and
# re-added (stream / dead-letter stream) or parked (delayed set).
# ARGV: group, entry id, action (complete|add|delay), score, JSON payload.
_SETTLE = """
local acked = redis.call('XACK', KEYS[1], ARGV[1], ARGV[2])
if acked == 0 then
  return 0
end
redis.call('XDEL', KEYS[1], ARGV[2])
if ARGV[3] == 'add' then
  local fields = {}
  for k, v in pairs(cjson.decode(ARGV[5])) do
    table.insert(fields, k)
    table.insert(fields, v)
  end
  redis.call('XADD', KEYS[2], '*', unpack(fields))
elseif ARGV[3] == 'delay' then
  redis.call('ZADD', KEYS[2], ARGV[4], ARGV[5])
end
return 1
"""


def _consumer_name() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class RedisAlertQueue:
    """Consumer-group backed queue with a dead-letter stream."""

    def __init__(
        self,
        redis=None,
        stream: Optional[str] = None,
        group: Optional[str] = None,
        dead_letter_stream: Optional[str] = None,
        lock_seconds: Optional[float] = None,
        consumer: Optional[str] = None,
    ):
        self._redis = redis
        self.stream = stream or settings.alert_stream
        self.group = group or settings.alert_consumer_group
        self.dead_letter_stream = dead_letter_stream or settings.dead_letter_stream
        self.delayed_key = f"{self.stream}:delayed"
        self.lock_ms = int((lock_seconds or settings.queue_lock_seconds) * 1000)
        self.consumer = consumer or _consumer_name()
        self._group_ready = False
        self._promote = None
        self._settle_script = None

    @classmethod
    def from_url(cls, url: Optional[str] = None, **kwargs) -> "RedisAlertQueue":
        import redis.asyncio as aioredis

        client = aioredis.from_url(
            url or settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=3,
        )
        return cls(redis=client, **kwargs)

    # ── Setup ──────────────────────────────────────────────────────────

    async def ensure_group(self) -> None:
        """Create the consumer group (and stream) if missing."""
        if self._group_ready:
            return
        try:
            await self._redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info("consumer_group_created", stream=self.stream, group=self.group)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise QueueTransportError(f"Cannot create consumer group: {e}") from e
        self._group_ready = True

    # ── Producer ───────────────────────────────────────────────────────

    async def send(self, alert: Alert) -> str:
        message_id = str(uuid.uuid4())
        fields = self._fields(
            message_id=message_id,
            body=alert.to_message_body(),
            delivery_count=1,
            properties=message_properties(alert),
        )
        try:
            await self._redis.xadd(self.stream, fields)
        except RedisError as e:
            logger.error("queue_send_failed", alert_id=alert.id, error=str(e))
            raise QueueTransportError(f"Send failed: {e}") from e
        logger.info(
            "alert_enqueued",
            alert_id=alert.id,
            message_id=message_id,
            severity=alert.severity.label,
            stream=self.stream,
        )
        return message_id

    # ── Consumer ───────────────────────────────────────────────────────

    async def receive_batch(
        self, max_messages: int, wait_timeout: float
    ) -> list[QueuedMessage]:
        try:
            await self.ensure_group()
            await self._promote_delayed()
            await self._reclaim_stale(max_messages)
            response = await self._redis.xreadgroup(
                self.group,
                self.consumer,
                {self.stream: ">"},
                count=max_messages,
                block=max(int(wait_timeout * 1000), 1),
            )
        except RedisError as e:
            raise QueueTransportError(f"Receive failed: {e}") from e

        messages: list[QueuedMessage] = []
        for _stream, entries in response or []:
            for entry_id, fields in entries:
                messages.append(self._to_message(entry_id, fields))
        return messages

    async def complete(self, message: QueuedMessage) -> None:
        await self._settle_or_raise(message, "complete", self.stream, op="Complete")

    async def abandon(self, message: QueuedMessage, delay: float = 0.0) -> None:
        action, destination, score = self._requeue_target(delay)
        await self._settle_or_raise(
            message,
            action,
            destination,
            payload=self._requeue_fields(message),
            score=score,
            op="Abandon",
        )

    async def dead_letter(
        self, message: QueuedMessage, reason: str, description: str = ""
    ) -> None:
        record = {
            "message_id": message.message_id,
            "reason": reason,
            "description": description,
            "body": message.body,
            "delivery_count": str(message.delivery_count),
            "dead_lettered_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._settle_or_raise(
            message, "add", self.dead_letter_stream, payload=record, op="Dead-letter"
        )

    # ── Dead letters ───────────────────────────────────────────────────

    async def dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        try:
            entries = await self._redis.xrevrange(self.dead_letter_stream, count=limit)
        except RedisError as e:
            raise QueueTransportError(f"Dead-letter listing failed: {e}") from e
        return [self._to_dead_letter(entry_id, fields) for entry_id, fields in entries]

    async def replay_dead_letter(self, entry_id: str) -> bool:
        try:
            entries = await self._redis.xrange(self.dead_letter_stream, min=entry_id, max=entry_id)
            if not entries:
                return False
            _, fields = entries[0]
            replay = self._fields(
                message_id=fields["message_id"],
                body=fields["body"],
                delivery_count=1,
                properties={"replayed_from": entry_id},
            )
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.xadd(self.stream, replay)
                pipe.xdel(self.dead_letter_stream, entry_id)
                await pipe.execute()
        except RedisError as e:
            raise QueueTransportError(f"Replay failed: {e}") from e
        logger.info("dead_letter_replayed", entry_id=entry_id, message_id=fields["message_id"])
        return True

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    # ── Internals ──────────────────────────────────────────────────────

    async def _promote_delayed(self) -> None:
        if self._promote is None:
            self._promote = self._redis.register_script(_PROMOTE_DELAYED)
        promoted = await self._promote(keys=[self.delayed_key, self.stream], args=[time.time(), 100])
        if promoted:
            logger.debug("delayed_messages_promoted", count=promoted)

    async def _reclaim_stale(self, count: int) -> None:
        """Re-add entries whose consumer died mid-lease, counting the lost delivery."""
        result = await self._redis.xautoclaim(
            self.stream, self.group, self.consumer,
            min_idle_time=self.lock_ms, start_id="0-0", count=count,
        )
        claimed = result[1] if len(result) > 1 else []
        for entry_id, fields in claimed:
            if not fields:
                continue
            message = self._to_message(entry_id, fields)
            requeued = await self._settle(
                message, "add", self.stream, payload=self._requeue_fields(message), op="Reclaim"
            )
            if requeued:
                logger.warning(
                    "stale_message_reclaimed",
                    message_id=message.message_id,
                    delivery_count=message.delivery_count,
                )
            else:
                # Original consumer settled it between XAUTOCLAIM and now
                logger.info("stale_message_already_settled", message_id=message.message_id)

    async def _settle(
        self,
        message: QueuedMessage,
        action: str,
        destination: str,
        payload: Optional[dict[str, str]] = None,
        score: float = 0.0,
        op: str = "Settle",
    ) -> bool:
        """Run one settle step server-side; False when the entry was no longer pending."""
        if self._settle_script is None:
            self._settle_script = self._redis.register_script(_SETTLE)
        try:
            acked = await self._settle_script(
                keys=[self.stream, destination],
                args=[
                    self.group,
                    message.lock_token,
                    action,
                    score,
                    json.dumps(payload) if payload is not None else "",
                ],
            )
        except RedisError as e:
            raise QueueTransportError(f"{op} failed: {e}") from e
        return bool(acked)

    async def _settle_or_raise(self, message: QueuedMessage, *args, **kwargs) -> None:
        if not await self._settle(message, *args, **kwargs):
            raise QueueTransportError(
                f"Lock lost for message {message.message_id}",
                details={"message_id": message.message_id},
            )

    def _requeue_target(self, delay: float) -> tuple[str, str, float]:
        if delay > 0:
            return "delay", self.delayed_key, time.time() + delay
        return "add", self.stream, 0.0

    def _requeue_fields(self, message: QueuedMessage) -> dict[str, str]:
        return self._fields(
            message_id=message.message_id,
            body=message.body,
            delivery_count=message.delivery_count + 1,
            properties=message.properties,
            enqueued_at=message.enqueued_at,
        )

    @staticmethod
    def _fields(
        message_id: str,
        body: str,
        delivery_count: int,
        properties: dict[str, Any],
        enqueued_at: Optional[datetime] = None,
    ) -> dict[str, str]:
        return {
            "message_id": message_id,
            "body": body,
            "delivery_count": str(delivery_count),
            "properties": json.dumps(properties, default=str),
            "enqueued_at": (enqueued_at or datetime.now(timezone.utc)).isoformat(),
        }

    @staticmethod
    def _to_message(entry_id: str, fields: dict[str, str]) -> QueuedMessage:
        try:
            properties = json.loads(fields.get("properties") or "{}")
        except ValueError:
            properties = {}
        enqueued_raw = fields.get("enqueued_at")
        try:
            enqueued_at = datetime.fromisoformat(enqueued_raw) if enqueued_raw else None
        except ValueError:
            enqueued_at = None
        return QueuedMessage(
            message_id=fields.get("message_id") or entry_id,
            body=fields.get("body", ""),
            delivery_count=max(int(fields.get("delivery_count", "1")), 1),
            lock_token=entry_id,
            enqueued_at=enqueued_at or datetime.now(timezone.utc),
            properties=properties,
        )

    @staticmethod
    def _to_dead_letter(entry_id: str, fields: dict[str, str]) -> DeadLetterRecord:
        return DeadLetterRecord(
            entry_id=entry_id,
            message_id=fields.get("message_id", ""),
            reason=fields.get("reason", ""),
            description=fields.get("description", ""),
            body=fields.get("body", ""),
            delivery_count=int(fields.get("delivery_count", "0")),
            dead_lettered_at=datetime.fromisoformat(fields["dead_lettered_at"])
            if fields.get("dead_lettered_at")
            else datetime.now(timezone.utc),
        )
