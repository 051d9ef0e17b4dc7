"""
Queue Workers — poll, process, settle.

Each worker loops:
1. Receive up to ``batch_size`` messages (bounded wait, never blocks forever)
2. Empty batch → sleep ``empty_backoff`` (woken early by stop)
3. Process the batch, then apply every outcome to the queue
   (complete / abandon for retry / dead-letter)

Stopping never interrupts an in-flight batch: it always reaches terminal
classification and is settled before the worker exits, so no message is
left leased but unowned. Failing to settle is logged; the lease expires and
the queue redelivers (at-least-once).
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from creditwatch.alerting.processor import AlertProcessor
from creditwatch.alerting.schemas import Outcome, OutcomeAction
from creditwatch.metrics import QUEUE_SETTLE_ERRORS
from creditwatch.queue.base import AlertQueueClient, QueuedMessage

logger = structlog.get_logger(__name__)


@dataclass
class WorkerStats:
    batches: int = 0
    completed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    settle_errors: int = 0
    receive_errors: int = 0


class AlertWorker:
    """One polling consumer."""

    def __init__(
        self,
        queue: AlertQueueClient,
        processor: AlertProcessor,
        worker_id: str = "worker-0",
        batch_size: int = 10,
        receive_wait: float = 5.0,
        empty_backoff: float = 1.0,
        error_backoff: float = 5.0,
        redelivery_delay: float = 0.0,
    ):
        self._queue = queue
        self._processor = processor
        self.worker_id = worker_id
        self.batch_size = batch_size
        self.receive_wait = receive_wait
        self.empty_backoff = empty_backoff
        self.error_backoff = error_backoff
        self.redelivery_delay = redelivery_delay
        self.stats = WorkerStats()

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until ``stop`` is set."""
        with structlog.contextvars.bound_contextvars(worker_id=self.worker_id):
            logger.info("worker_started", batch_size=self.batch_size)
            while not stop.is_set():
                try:
                    batch = await self._queue.receive_batch(self.batch_size, self.receive_wait)
                except Exception as e:
                    self.stats.receive_errors += 1
                    logger.error("worker_receive_failed", error=str(e))
                    await self._pause(stop, self.error_backoff)
                    continue

                if not batch:
                    await self._pause(stop, self.empty_backoff)
                    continue

                await self._run_to_completion(batch)
            logger.info("worker_stopped", **self.stats.__dict__)

    async def run_once(self) -> list[Outcome]:
        """Receive and handle a single batch. Returns its outcomes."""
        batch = await self._queue.receive_batch(self.batch_size, self.receive_wait)
        if not batch:
            return []
        return await self._run_to_completion(batch)

    async def _run_to_completion(self, batch: list[QueuedMessage]) -> list[Outcome]:
        task = asyncio.ensure_future(self._handle_batch(batch))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning("worker_cancelled_mid_batch", in_flight=len(batch))
            await task
            raise

    async def _handle_batch(self, batch: list[QueuedMessage]) -> list[Outcome]:
        self.stats.batches += 1
        outcomes = await self._processor.process(batch)
        for message, outcome in zip(batch, outcomes):
            await self._settle(message, outcome)
        return outcomes

    async def _settle(self, message: QueuedMessage, outcome: Outcome) -> None:
        try:
            if outcome.action is OutcomeAction.COMPLETE:
                await self._queue.complete(message)
                self.stats.completed += 1
            elif outcome.action is OutcomeAction.RETRY:
                await self._queue.abandon(message, delay=self.redelivery_delay)
                self.stats.retried += 1
            else:
                await self._queue.dead_letter(message, outcome.reason or "", outcome.description)
                self.stats.dead_lettered += 1
                logger.error(
                    "message_dead_lettered",
                    message_id=message.message_id,
                    alert_id=outcome.alert_id,
                    reason=outcome.reason,
                )
        except Exception as e:
            self.stats.settle_errors += 1
            QUEUE_SETTLE_ERRORS.labels(action=outcome.action.value).inc()
            logger.error(
                "worker_settle_failed",
                message_id=message.message_id,
                action=outcome.action.value,
                error=str(e),
            )

    @staticmethod
    async def _pause(stop: asyncio.Event, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


class WorkerPool:
    """Runs several workers against one queue and stops them together."""

    def __init__(self, workers: list[AlertWorker]):
        self.workers = workers
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(worker.run(self._stop), name=worker.worker_id)
            for worker in self.workers
        ]
        logger.info("worker_pool_started", workers=len(self.workers))

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Signal stop and wait for in-flight batches; cancel after ``timeout``."""
        self._stop.set()
        if not self._tasks:
            return
        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("worker_pool_forced_stop", cancelled=len(pending))
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("worker_crashed", worker=task.get_name(), error=str(task.exception()))
        self._tasks = []
        logger.info("worker_pool_stopped")
