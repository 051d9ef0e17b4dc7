"""
Test fixtures for CreditWatch.

Provides:
- Alert / queued-message factories
- Fake live connections that record what the hub sends
- Principals per role
- In-memory queue, actions, hub and a wired ServiceRegistry
"""

import itertools
from typing import Any, Optional

import pytest
import pytest_asyncio

from creditwatch.alerting.actions import InMemoryAccountActions
from creditwatch.alerting.schemas import Alert, AlertSeverity
from creditwatch.auth.roles import Principal, Role
from creditwatch.config import Settings
from creditwatch.queue.base import QueuedMessage
from creditwatch.queue.memory import InMemoryAlertQueue
from creditwatch.realtime.hub import NotificationHub
from creditwatch.registry import build_services

_ids = itertools.count(1)


def make_alert(
    severity: AlertSeverity = AlertSeverity.MEDIUM,
    account_id: str = "42",
    alert_id: Optional[str] = None,
    **overrides: Any,
) -> Alert:
    data = {
        "id": alert_id or f"alert-{next(_ids)}",
        "account_id": account_id,
        "severity": severity,
        "alert_type": "ScoreDrop",
        "description": "Credit score dropped",
        "previous_score": 720,
        "current_score": 610,
    }
    data.update(overrides)
    return Alert(**data)


def make_message(
    alert: Optional[Alert] = None,
    body: Optional[str] = None,
    delivery_count: int = 1,
    message_id: Optional[str] = None,
) -> QueuedMessage:
    if body is None:
        body = (alert or make_alert()).to_message_body()
    return QueuedMessage(
        message_id=message_id or f"msg-{next(_ids)}",
        body=body,
        delivery_count=delivery_count,
        lock_token="token",
    )


class RecordingConnection:
    """ClientConnection that keeps every (event, payload) it receives."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: list[tuple[str, dict]] = []

    async def send(self, event: str, payload: dict) -> None:
        if self.fail:
            raise ConnectionError("client went away")
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [event for event, _ in self.events]


@pytest.fixture
def officer() -> Principal:
    return Principal.of("officer-1", [Role.CREDIT_OFFICER])


@pytest.fixture
def manager() -> Principal:
    return Principal.of("manager-1", [Role.MANAGER])


@pytest.fixture
def admin() -> Principal:
    return Principal.of("admin-1", [Role.ADMIN])


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub(delivery_timeout=0.5)


@pytest.fixture
def actions() -> InMemoryAccountActions:
    return InMemoryAccountActions()


@pytest.fixture
def memory_queue() -> InMemoryAlertQueue:
    return InMemoryAlertQueue(lock_seconds=30)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        queue_backend="memory",
        max_attempts=3,
        worker_count=1,
        batch_size=10,
        receive_wait_seconds=0.05,
        empty_backoff_seconds=0.01,
        error_backoff_seconds=0.01,
    )


@pytest_asyncio.fixture
async def services(test_settings, memory_queue, actions):
    registry = build_services(test_settings, queue=memory_queue, actions=actions)
    yield registry
    await registry.close()
