"""
Tests for the Redis Streams Alert Queue (mocked redis client).

Covers:
- Consumer group creation (BUSYGROUP tolerated)
- send / receive field mapping
- complete / abandon / dead-letter settle script arguments and lost locks
- A settle whose XACK finds nothing pending writes nothing
- Stale entry reclaim counts as a delivery
- Redis errors surface as QueueTransportError
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from creditwatch.exceptions import QueueTransportError
from creditwatch.queue.base import QueuedMessage
from creditwatch.queue.redis_streams import RedisAlertQueue

from conftest import make_alert


def _mock_redis(pipeline_results=None, settle=None):
    redis = MagicMock()
    redis.xgroup_create = AsyncMock()
    redis.xadd = AsyncMock(return_value="1-0")
    redis.xreadgroup = AsyncMock(return_value=[])
    redis.xautoclaim = AsyncMock(return_value=["0-0", [], []])
    redis.xrevrange = AsyncMock(return_value=[])
    redis.xrange = AsyncMock(return_value=[])
    redis.aclose = AsyncMock()

    promote = AsyncMock(return_value=0)
    redis.settle_script = settle or AsyncMock(return_value=1)
    redis.register_script = MagicMock(
        side_effect=lambda script: redis.settle_script if "XACK" in script else promote
    )

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=pipeline_results or [1, 1])
    redis.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
    redis.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
    return redis, pipe


def _settle_call(redis, index=-1) -> dict:
    call = redis.settle_script.await_args_list[index]
    stream, destination = call.kwargs["keys"]
    group, entry_id, action, score, payload = call.kwargs["args"]
    return {
        "stream": stream,
        "destination": destination,
        "group": group,
        "entry_id": entry_id,
        "action": action,
        "score": score,
        "payload": json.loads(payload) if payload else None,
    }


class _PendingEntries:
    """Settle script stand-in: XACK on a pending entry gates every write."""

    def __init__(self, *entry_ids):
        self.pending = set(entry_ids)
        self.writes = []

    async def __call__(self, keys, args):
        _stream, destination = keys
        _group, entry_id, action, _score, payload = args
        if entry_id not in self.pending:
            return 0
        self.pending.discard(entry_id)
        if action != "complete":
            self.writes.append((action, destination, json.loads(payload)))
        return 1


def _queue(redis, consumer="test-consumer") -> RedisAlertQueue:
    return RedisAlertQueue(
        redis=redis,
        stream="alerts",
        group="processors",
        dead_letter_stream="alerts:dlq",
        lock_seconds=60,
        consumer=consumer,
    )


def _message(entry_id="5-0", delivery_count=1) -> QueuedMessage:
    return QueuedMessage(
        message_id="m-1",
        body=make_alert(alert_id="a-1").to_message_body(),
        delivery_count=delivery_count,
        lock_token=entry_id,
        properties={"alert_id": "a-1"},
    )


# ── Setup ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_ensure_group_tolerates_busygroup():
    redis, _ = _mock_redis()
    redis.xgroup_create.side_effect = ResponseError("BUSYGROUP Consumer Group name already exists")
    queue = _queue(redis)

    await queue.ensure_group()
    await queue.ensure_group()

    redis.xgroup_create.assert_awaited_once_with("alerts", "processors", id="0", mkstream=True)


@pytest.mark.asyncio
async def test_ensure_group_other_errors_raise():
    redis, _ = _mock_redis()
    redis.xgroup_create.side_effect = ResponseError("WRONGTYPE")
    with pytest.raises(QueueTransportError):
        await _queue(redis).ensure_group()


# ── Producer ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_send_adds_entry_with_first_delivery():
    redis, _ = _mock_redis()
    alert = make_alert(alert_id="a-1")

    message_id = await _queue(redis).send(alert)

    stream, fields = redis.xadd.await_args.args
    assert stream == "alerts"
    assert fields["message_id"] == message_id
    assert fields["delivery_count"] == "1"
    assert json.loads(fields["body"])["id"] == "a-1"
    assert json.loads(fields["properties"])["severity"] == alert.severity.label


@pytest.mark.asyncio
async def test_send_wraps_redis_errors():
    redis, _ = _mock_redis()
    redis.xadd.side_effect = RedisConnectionError("refused")
    with pytest.raises(QueueTransportError):
        await _queue(redis).send(make_alert())


# ── Consumer ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_receive_maps_entries_to_messages():
    redis, _ = _mock_redis()
    redis.xreadgroup.return_value = [
        ["alerts", [
            ("7-0", {
                "message_id": "m-7",
                "body": "{}",
                "delivery_count": "2",
                "properties": '{"alert_id": "a-7"}',
                "enqueued_at": "2026-01-05T10:00:00+00:00",
            }),
        ]],
    ]

    [message] = await _queue(redis).receive_batch(10, 5)

    assert message.message_id == "m-7"
    assert message.lock_token == "7-0"
    assert message.delivery_count == 2
    assert message.properties == {"alert_id": "a-7"}
    redis.xreadgroup.assert_awaited_once_with(
        "processors", "test-consumer", {"alerts": ">"}, count=10, block=5000
    )


@pytest.mark.asyncio
async def test_receive_wraps_redis_errors():
    redis, _ = _mock_redis()
    redis.xreadgroup.side_effect = RedisConnectionError("down")
    with pytest.raises(QueueTransportError):
        await _queue(redis).receive_batch(10, 1)


@pytest.mark.asyncio
async def test_stale_entries_are_reclaimed_with_incremented_count():
    redis, _ = _mock_redis()
    redis.xautoclaim.return_value = [
        "0-0",
        [("3-0", {"message_id": "m-3", "body": "{}", "delivery_count": "1"})],
        [],
    ]

    await _queue(redis).receive_batch(10, 1)

    call = _settle_call(redis)
    assert call["entry_id"] == "3-0"
    assert call["action"] == "add"
    assert call["destination"] == "alerts"
    assert call["payload"]["message_id"] == "m-3"
    assert call["payload"]["delivery_count"] == "2"


@pytest.mark.asyncio
async def test_reclaim_of_entry_settled_meanwhile_is_skipped():
    pending = _PendingEntries()
    redis, _ = _mock_redis(settle=pending)
    redis.xautoclaim.return_value = [
        "0-0",
        [("3-0", {"message_id": "m-3", "body": "{}", "delivery_count": "1"})],
        [],
    ]

    assert await _queue(redis).receive_batch(10, 1) == []
    assert pending.writes == []


# ── Settlement ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_complete_acks_and_deletes():
    redis, _ = _mock_redis()
    await _queue(redis).complete(_message("5-0"))

    call = _settle_call(redis)
    assert call["stream"] == "alerts"
    assert call["group"] == "processors"
    assert call["entry_id"] == "5-0"
    assert call["action"] == "complete"
    assert call["payload"] is None


@pytest.mark.asyncio
async def test_complete_with_lost_lock_raises():
    redis, _ = _mock_redis(settle=AsyncMock(return_value=0))
    with pytest.raises(QueueTransportError):
        await _queue(redis).complete(_message())


@pytest.mark.asyncio
async def test_abandon_readds_with_next_delivery_count():
    redis, _ = _mock_redis()
    await _queue(redis).abandon(_message("5-0", delivery_count=2))

    call = _settle_call(redis)
    assert call["action"] == "add"
    assert call["destination"] == "alerts"
    assert call["entry_id"] == "5-0"
    assert call["payload"]["delivery_count"] == "3"
    assert call["payload"]["message_id"] == "m-1"


@pytest.mark.asyncio
async def test_abandon_with_delay_parks_in_sorted_set():
    redis, _ = _mock_redis()
    await _queue(redis).abandon(_message(delivery_count=1), delay=30)

    call = _settle_call(redis)
    assert call["action"] == "delay"
    assert call["destination"] == "alerts:delayed"
    assert call["score"] > 0
    assert call["payload"]["delivery_count"] == "2"


@pytest.mark.asyncio
async def test_dead_letter_keeps_reason_and_body():
    redis, _ = _mock_redis()
    message = _message(delivery_count=3)

    await _queue(redis).dead_letter(message, "ProcessingFailed: boom", "boom")

    call = _settle_call(redis)
    assert call["action"] == "add"
    assert call["destination"] == "alerts:dlq"
    record = call["payload"]
    assert record["reason"] == "ProcessingFailed: boom"
    assert record["body"] == message.body
    assert record["delivery_count"] == "3"


@pytest.mark.asyncio
@pytest.mark.parametrize("settle", ["abandon", "dead_letter"])
async def test_settle_with_lost_lock_raises_and_writes_nothing(settle):
    pending = _PendingEntries()
    redis, pipe = _mock_redis(settle=pending)
    queue = _queue(redis)

    with pytest.raises(QueueTransportError):
        if settle == "abandon":
            await queue.abandon(_message("5-0"))
        else:
            await queue.dead_letter(_message("5-0"), "ProcessingFailed: boom")

    assert pending.writes == []
    redis.xadd.assert_not_awaited()
    pipe.xadd.assert_not_called()


@pytest.mark.asyncio
async def test_reclaimed_entry_is_not_dead_lettered_by_former_owner():
    pending = _PendingEntries("5-0")
    redis, _ = _mock_redis(settle=pending)
    stalled = _queue(redis, consumer="stalled")
    rescuer = _queue(redis, consumer="rescuer")
    redis.xautoclaim.return_value = [
        "0-0",
        [("5-0", {"message_id": "m-1", "body": "{}", "delivery_count": "1"})],
        [],
    ]

    await rescuer.receive_batch(10, 1)
    with pytest.raises(QueueTransportError):
        await stalled.dead_letter(_message("5-0"), "ProcessingFailed: boom")

    assert len(pending.writes) == 1
    action, destination, fields = pending.writes[0]
    assert (action, destination) == ("add", "alerts")
    assert fields["delivery_count"] == "2"


@pytest.mark.asyncio
async def test_settle_wraps_redis_errors():
    redis, _ = _mock_redis(settle=AsyncMock(side_effect=RedisConnectionError("down")))
    with pytest.raises(QueueTransportError):
        await _queue(redis).abandon(_message())


# ── Dead letters ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dead_letters_listing():
    redis, _ = _mock_redis()
    redis.xrevrange.return_value = [
        ("2-0", {
            "message_id": "m-2",
            "reason": "InvalidMessageFormat",
            "description": "bad",
            "body": "{",
            "delivery_count": "1",
            "dead_lettered_at": "2026-01-05T10:00:00+00:00",
        }),
    ]

    [record] = await _queue(redis).dead_letters(limit=5)

    assert record.entry_id == "2-0"
    assert record.reason == "InvalidMessageFormat"
    redis.xrevrange.assert_awaited_once_with("alerts:dlq", count=5)


@pytest.mark.asyncio
async def test_replay_moves_entry_back():
    redis, pipe = _mock_redis(pipeline_results=["8-0", 1])
    redis.xrange.return_value = [("2-0", {"message_id": "m-2", "body": "{}"})]

    assert await _queue(redis).replay_dead_letter("2-0") is True

    stream, fields = pipe.xadd.call_args.args
    assert stream == "alerts"
    assert fields["delivery_count"] == "1"
    pipe.xdel.assert_called_once_with("alerts:dlq", "2-0")


@pytest.mark.asyncio
async def test_replay_unknown_entry():
    redis, _ = _mock_redis()
    assert await _queue(redis).replay_dead_letter("404-0") is False


@pytest.mark.asyncio
async def test_close():
    redis, _ = _mock_redis()
    await _queue(redis).close()
    redis.aclose.assert_awaited_once()
