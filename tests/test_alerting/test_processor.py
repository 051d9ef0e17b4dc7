"""
Tests for the Alert Processor.

Covers:
- Success → Complete, side effects applied, alert fanned out
- Malformed payloads → DeadLetter(InvalidMessageFormat), no side effects
- Transient failure → Retry below max attempts, DeadLetter at max attempts
- Fan-out failure never fails the message
- Batch order and bounded concurrency
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from creditwatch.alerting.actions import InMemoryAccountActions
from creditwatch.alerting.processor import AlertProcessor, parse_alert
from creditwatch.alerting.schemas import (
    INVALID_MESSAGE_FORMAT,
    PROCESSING_FAILED,
    AlertSeverity,
    OutcomeAction,
)
from creditwatch.exceptions import InvalidAlertMessage, SideEffectError

from conftest import make_alert, make_message


class FlakyActions(InMemoryAccountActions):
    """Fails the first ``failures`` suspend / flag / rating calls."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.calls = 0

    async def _maybe_fail(self, action: str, account_id: str) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise SideEffectError(action, "downstream unavailable", account_id=account_id)

    async def suspend_transactions(self, account_id, alert_id):
        await self._maybe_fail("suspend_transactions", account_id)
        await super().suspend_transactions(account_id, alert_id)

    async def flag_for_review(self, account_id, alert_id):
        await self._maybe_fail("flag_for_review", account_id)
        await super().flag_for_review(account_id, alert_id)

    async def update_risk_rating(self, account_id, rating):
        await self._maybe_fail("update_risk_rating", account_id)
        await super().update_risk_rating(account_id, rating)


# ── parse_alert ────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "body",
    ["not json", "[1, 2]", '"text"', '{"id": "a-1"}', '{"id": "a-1", "accountId": "1", "severity": "Severe"}'],
)
def test_parse_alert_rejects_malformed(body):
    with pytest.raises(InvalidAlertMessage):
        parse_alert(body)


def test_parse_alert_accepts_bytes():
    alert = make_alert()
    assert parse_alert(alert.to_message_body().encode()) == alert


# ── Success ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_success_completes_and_fans_out(actions):
    fanout = AsyncMock()
    processor = AlertProcessor(actions, fanout=fanout)
    alert = make_alert(AlertSeverity.CRITICAL, account_id="42")
    message = make_message(alert)

    outcome = await processor.process_message(message)

    assert outcome.action is OutcomeAction.COMPLETE
    assert outcome.message_id == message.message_id
    assert outcome.alert_id == alert.id
    assert actions.suspended == {"42": alert.id}
    fanout.dispatch.assert_awaited_once_with(alert)


@pytest.mark.asyncio
async def test_success_on_last_attempt_completes(actions):
    processor = AlertProcessor(actions, max_attempts=3)
    outcome = await processor.process_message(make_message(delivery_count=3))
    assert outcome.action is OutcomeAction.COMPLETE


# ── Malformed ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize("delivery_count", [1, 3])
async def test_malformed_is_dead_lettered_immediately(actions, delivery_count):
    fanout = AsyncMock()
    processor = AlertProcessor(actions, fanout=fanout)

    outcome = await processor.process_message(
        make_message(body="{broken", delivery_count=delivery_count)
    )

    assert outcome.action is OutcomeAction.DEAD_LETTER
    assert outcome.reason == INVALID_MESSAGE_FORMAT
    assert outcome.alert_id is None
    assert actions.snapshot() == InMemoryAccountActions().snapshot()
    fanout.dispatch.assert_not_awaited()


# ── Transient failure ──────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize("delivery_count", [1, 2])
async def test_failure_below_max_attempts_retries(delivery_count):
    actions = FlakyActions(failures=10)
    processor = AlertProcessor(actions, max_attempts=3)

    outcome = await processor.process_message(
        make_message(make_alert(AlertSeverity.HIGH), delivery_count=delivery_count)
    )

    assert outcome.action is OutcomeAction.RETRY
    assert "downstream unavailable" in outcome.description


@pytest.mark.asyncio
async def test_failure_at_max_attempts_dead_letters_with_error():
    actions = FlakyActions(failures=10)
    fanout = AsyncMock()
    processor = AlertProcessor(actions, fanout=fanout, max_attempts=3)

    outcome = await processor.process_message(
        make_message(make_alert(AlertSeverity.CRITICAL), delivery_count=3)
    )

    assert outcome.action is OutcomeAction.DEAD_LETTER
    assert outcome.reason.startswith(PROCESSING_FAILED)
    assert "suspend_transactions failed" in outcome.reason
    fanout.dispatch.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_then_success_matches_single_run():
    alert = make_alert(AlertSeverity.CRITICAL, account_id="42")
    flaky = FlakyActions(failures=1)
    processor = AlertProcessor(flaky, max_attempts=3)

    first = await processor.process_message(make_message(alert, delivery_count=1))
    second = await processor.process_message(make_message(alert, delivery_count=2))

    clean = InMemoryAccountActions()
    await AlertProcessor(clean).process_message(make_message(alert))

    assert first.action is OutcomeAction.RETRY
    assert second.action is OutcomeAction.COMPLETE
    assert flaky.snapshot() == clean.snapshot()


@pytest.mark.asyncio
async def test_max_attempts_one_never_retries():
    processor = AlertProcessor(FlakyActions(failures=10), max_attempts=1)
    outcome = await processor.process_message(make_message(make_alert(AlertSeverity.LOW)))
    assert outcome.action is OutcomeAction.DEAD_LETTER


def test_max_attempts_must_be_positive(actions):
    with pytest.raises(ValueError):
        AlertProcessor(actions, max_attempts=0)


# ── Fan-out failure ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fanout_failure_still_completes(actions):
    fanout = AsyncMock()
    fanout.dispatch.side_effect = RuntimeError("hub down")
    processor = AlertProcessor(actions, fanout=fanout)

    outcome = await processor.process_message(make_message(make_alert(AlertSeverity.HIGH)))

    assert outcome.action is OutcomeAction.COMPLETE


# ── Batches ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_batch_outcomes_keep_order(actions):
    processor = AlertProcessor(actions)
    batch = [make_message(), make_message(body="nope"), make_message()]

    outcomes = await processor.process(batch)

    assert [o.message_id for o in outcomes] == [m.message_id for m in batch]
    assert [o.action for o in outcomes] == [
        OutcomeAction.COMPLETE,
        OutcomeAction.DEAD_LETTER,
        OutcomeAction.COMPLETE,
    ]


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    in_flight = 0
    peak = 0

    class SlowActions(InMemoryAccountActions):
        async def notify(self, alert, tier, audience):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

    processor = AlertProcessor(SlowActions(), max_concurrency=2)
    outcomes = await processor.process([make_message() for _ in range(6)])

    assert all(o.action is OutcomeAction.COMPLETE for o in outcomes)
    assert peak == 2


@pytest.mark.asyncio
async def test_empty_batch(actions):
    assert await AlertProcessor(actions).process([]) == []
