"""
Alert Processor — resolves each queued alert message to a terminal outcome.

Pipeline per message:
1. Deserialize the body into an Alert (malformed → dead-letter, never retried)
2. Run the severity tier's side effects (idempotent, see actions.py)
3. Fan the alert out to live subscribers (best effort, never fails the message)
4. Resolve: Complete on success; on failure Retry while attempts remain,
   otherwise DeadLetter with the error captured as the reason

Errors never escape ``process``: every message maps to exactly one Outcome.
"""

import asyncio
import json
from typing import Optional

import structlog

from creditwatch.alerting.actions import AccountActions, apply_side_effects
from creditwatch.alerting.fanout import FanoutDispatcher
from creditwatch.alerting.schemas import (
    INVALID_MESSAGE_FORMAT,
    PROCESSING_FAILED,
    Alert,
    Outcome,
    OutcomeAction,
)
from creditwatch.exceptions import InvalidAlertMessage
from creditwatch.metrics import record_outcome, track_step
from creditwatch.queue.base import QueuedMessage

logger = structlog.get_logger(__name__)


def parse_alert(body: str | bytes) -> Alert:
    """Deserialize a queue body. Raises InvalidAlertMessage on any defect."""
    try:
        data = json.loads(body)
    except (ValueError, TypeError) as e:
        raise InvalidAlertMessage(f"Body is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidAlertMessage(f"Body must be a JSON object, got {type(data).__name__}")
    try:
        return Alert.model_validate(data)
    except ValueError as e:
        raise InvalidAlertMessage(f"Alert validation failed: {e}") from e


class AlertProcessor:
    """
    Classifies a batch of queued alerts into Complete / Retry / DeadLetter.

    Stateless between messages; ordering between messages is never assumed.
    """

    def __init__(
        self,
        actions: AccountActions,
        fanout: Optional[FanoutDispatcher] = None,
        max_attempts: int = 3,
        max_concurrency: int = 1,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._actions = actions
        self._fanout = fanout
        self.max_attempts = max_attempts
        self.max_concurrency = max(max_concurrency, 1)

    async def process(self, batch: list[QueuedMessage]) -> list[Outcome]:
        """Resolve every message in the batch. Outcomes keep batch order."""
        if self.max_concurrency == 1 or len(batch) <= 1:
            return [await self.process_message(message) for message in batch]

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(message: QueuedMessage) -> Outcome:
            async with semaphore:
                return await self.process_message(message)

        return list(await asyncio.gather(*(_bounded(m) for m in batch)))

    async def process_message(self, message: QueuedMessage) -> Outcome:
        with structlog.contextvars.bound_contextvars(
            message_id=message.message_id,
            delivery_count=message.delivery_count,
        ):
            # ── 1. Deserialize ────────────────────────────────────────
            try:
                with track_step("deserialize"):
                    alert = parse_alert(message.body)
            except InvalidAlertMessage as e:
                logger.warning("alert_message_invalid", error=e.message)
                record_outcome(OutcomeAction.DEAD_LETTER.value)
                return Outcome.dead_letter(
                    message.message_id, INVALID_MESSAGE_FORMAT, description=e.message
                )

            severity = alert.severity.label

            # ── 2. Severity side effects ──────────────────────────────
            try:
                with track_step("side_effects", severity):
                    performed = await apply_side_effects(self._actions, alert)
            except Exception as e:
                return self._classify_failure(message, alert, e)

            # ── 3. Real-time fan-out ──────────────────────────────────
            await self._fan_out(alert)

            # ── 4. Complete ───────────────────────────────────────────
            record_outcome(OutcomeAction.COMPLETE.value, severity)
            logger.info(
                "alert_processed",
                alert_id=alert.id,
                account_id=alert.account_id,
                alert_type=alert.alert_type,
                severity=severity,
                actions=performed,
            )
            return Outcome.complete(message.message_id, alert_id=alert.id)

    async def _fan_out(self, alert: Alert) -> None:
        if self._fanout is None:
            return
        try:
            with track_step("fanout", alert.severity.label):
                await self._fanout.dispatch(alert)
        except Exception as e:
            # Real-time push is best effort; persisted side effects are the record
            logger.warning("alert_fanout_failed", alert_id=alert.id, error=str(e))

    def _classify_failure(self, message: QueuedMessage, alert: Alert, error: Exception) -> Outcome:
        severity = alert.severity.label
        error_text = str(error) or type(error).__name__

        if message.delivery_count < self.max_attempts:
            logger.warning(
                "alert_processing_retry",
                alert_id=alert.id,
                attempt=message.delivery_count,
                max_attempts=self.max_attempts,
                error=error_text,
            )
            record_outcome(OutcomeAction.RETRY.value, severity)
            return Outcome.retry(message.message_id, description=error_text, alert_id=alert.id)

        logger.error(
            "alert_processing_failed",
            alert_id=alert.id,
            attempts=message.delivery_count,
            error=error_text,
            error_type=type(error).__name__,
        )
        record_outcome(OutcomeAction.DEAD_LETTER.value, severity)
        return Outcome.dead_letter(
            message.message_id,
            f"{PROCESSING_FAILED}: {error_text}",
            description=error_text,
            alert_id=alert.id,
        )
