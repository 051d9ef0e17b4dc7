"""
Severity-Tiered Side Effects.

Each alert severity triggers a fixed set of account actions:

    CRITICAL → notify management, emergency review, suspend new transactions,
               audit entry
    HIGH     → notify credit managers, flag for review, raise monitoring level
    MEDIUM/LOW → notify assigned credit officer, update risk rating,
               monitoring-log entry

Queue delivery is at-least-once, so every action must be idempotent:
actions SET state (flags, levels, entries keyed by alert id) and never
increment it. Running the plan twice for the same alert leaves the same end
state as running it once.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional, Protocol, runtime_checkable

import structlog

from creditwatch.alerting.routing import target_roles
from creditwatch.alerting.schemas import Alert, AlertSeverity
from creditwatch.auth.roles import Role

logger = structlog.get_logger(__name__)


class NotificationTier(StrEnum):
    MANAGEMENT = "management"
    CREDIT_MANAGER = "credit_manager"
    CREDIT_OFFICER = "credit_officer"


class MonitoringFrequency(StrEnum):
    STANDARD = "standard"
    HIGH = "high"


CRITICAL_AUDIT_ACTION = "CRITICAL_ALERT_PROCESSED"


def risk_rating_for_score(score: int) -> str:
    """Map a credit score to the account's letter rating."""
    if score >= 740:
        return "A"
    if score >= 670:
        return "B"
    if score >= 580:
        return "C"
    return "D"


class AccountActions(Protocol):
    """
    Downstream account operations.

    Implementations raise SideEffectError (or any exception) on transient
    failure; the processor turns that into a retry.
    """

    async def notify(self, alert: Alert, tier: NotificationTier, audience: frozenset[Role]) -> None:
        ...

    async def mark_emergency_review(self, account_id: str, alert_id: str) -> None:
        ...

    async def suspend_transactions(self, account_id: str, alert_id: str) -> None:
        ...

    async def write_audit_entry(self, alert: Alert, action: str) -> None:
        ...

    async def flag_for_review(self, account_id: str, alert_id: str) -> None:
        ...

    async def set_monitoring_frequency(self, account_id: str, level: MonitoringFrequency) -> None:
        ...

    async def update_risk_rating(self, account_id: str, rating: str) -> None:
        ...

    async def write_monitoring_log(self, alert: Alert) -> None:
        ...


@dataclass(frozen=True)
class AccountStatus:
    status: str
    alert_count: int
    last_update: Optional[datetime] = None


@runtime_checkable
class AccountStatusLookup(Protocol):
    """Read side for on-demand status requests from a live client."""

    async def account_status(self, account_id: str) -> AccountStatus:
        ...


async def apply_side_effects(actions: AccountActions, alert: Alert) -> list[str]:
    """
    Run the severity tier's actions in order. Returns the action names run.

    The notify audience comes from the shared severity router.
    """
    audience = target_roles(alert.severity)
    account_id = alert.account_id
    performed: list[str] = []

    if alert.severity is AlertSeverity.CRITICAL:
        logger.warning("critical_alert_processing", alert_id=alert.id, alert_type=alert.alert_type)
        await actions.notify(alert, NotificationTier.MANAGEMENT, audience)
        performed.append("notify_management")
        await actions.mark_emergency_review(account_id, alert.id)
        performed.append("mark_emergency_review")
        await actions.suspend_transactions(account_id, alert.id)
        performed.append("suspend_transactions")
        await actions.write_audit_entry(alert, CRITICAL_AUDIT_ACTION)
        performed.append("write_audit_entry")

    elif alert.severity is AlertSeverity.HIGH:
        logger.warning("high_alert_processing", alert_id=alert.id, alert_type=alert.alert_type)
        await actions.notify(alert, NotificationTier.CREDIT_MANAGER, audience)
        performed.append("notify_credit_manager")
        await actions.flag_for_review(account_id, alert.id)
        performed.append("flag_for_review")
        await actions.set_monitoring_frequency(account_id, MonitoringFrequency.HIGH)
        performed.append("increase_monitoring_frequency")

    else:
        logger.info("standard_alert_processing", alert_id=alert.id, alert_type=alert.alert_type)
        await actions.notify(alert, NotificationTier.CREDIT_OFFICER, audience)
        performed.append("notify_credit_officer")
        await actions.update_risk_rating(account_id, risk_rating_for_score(alert.current_score))
        performed.append("update_risk_rating")
        await actions.write_monitoring_log(alert)
        performed.append("write_monitoring_log")

    return performed


@dataclass(frozen=True)
class LogEntry:
    alert_id: str
    account_id: str
    action: str
    recorded_at: datetime


class InMemoryAccountActions:
    """
    Process-local AccountActions with set-semantics state.

    Used by the development worker and tests. Every write is keyed so that
    a repeat for the same alert overwrites instead of accumulating.
    """

    def __init__(self):
        self.notifications: dict[tuple[str, NotificationTier], frozenset[Role]] = {}
        self.emergency_review: dict[str, str] = {}
        self.suspended: dict[str, str] = {}
        self.review_flags: dict[str, str] = {}
        self.monitoring_frequency: dict[str, MonitoringFrequency] = {}
        self.risk_ratings: dict[str, str] = {}
        self.audit_log: dict[tuple[str, str], LogEntry] = {}
        self.monitoring_log: dict[str, LogEntry] = {}
        self.alerts_by_account: dict[str, set[str]] = {}
        self.updated_at: dict[str, datetime] = {}

    async def notify(self, alert: Alert, tier: NotificationTier, audience: frozenset[Role]) -> None:
        self.notifications[(alert.id, tier)] = audience
        self.alerts_by_account.setdefault(alert.account_id, set()).add(alert.id)
        self.updated_at[alert.account_id] = datetime.now(timezone.utc)
        logger.info(
            "alert_notification_sent",
            alert_id=alert.id,
            tier=tier.value,
            audience=sorted(str(r) for r in audience),
        )

    async def mark_emergency_review(self, account_id: str, alert_id: str) -> None:
        self.emergency_review[account_id] = alert_id

    async def suspend_transactions(self, account_id: str, alert_id: str) -> None:
        self.suspended[account_id] = alert_id

    async def write_audit_entry(self, alert: Alert, action: str) -> None:
        self.audit_log[(alert.id, action)] = LogEntry(
            alert_id=alert.id,
            account_id=alert.account_id,
            action=action,
            recorded_at=datetime.now(timezone.utc),
        )

    async def flag_for_review(self, account_id: str, alert_id: str) -> None:
        self.review_flags[account_id] = alert_id

    async def set_monitoring_frequency(self, account_id: str, level: MonitoringFrequency) -> None:
        self.monitoring_frequency[account_id] = level

    async def update_risk_rating(self, account_id: str, rating: str) -> None:
        self.risk_ratings[account_id] = rating

    async def write_monitoring_log(self, alert: Alert) -> None:
        self.monitoring_log[alert.id] = LogEntry(
            alert_id=alert.id,
            account_id=alert.account_id,
            action=f"{alert.severity.label.upper()}_ALERT_LOGGED",
            recorded_at=datetime.now(timezone.utc),
        )

    async def account_status(self, account_id: str) -> AccountStatus:
        if account_id in self.suspended:
            status = "Suspended"
        elif account_id in self.emergency_review or account_id in self.review_flags:
            status = "UnderReview"
        else:
            status = "Active"
        return AccountStatus(
            status=status,
            alert_count=len(self.alerts_by_account.get(account_id, ())),
            last_update=self.updated_at.get(account_id),
        )

    def snapshot(self) -> dict:
        """Comparable end state, ignoring timestamps."""
        return {
            "notifications": dict(self.notifications),
            "emergency_review": dict(self.emergency_review),
            "suspended": dict(self.suspended),
            "review_flags": dict(self.review_flags),
            "monitoring_frequency": dict(self.monitoring_frequency),
            "risk_ratings": dict(self.risk_ratings),
            "audit_log": sorted(self.audit_log),
            "monitoring_log": sorted(self.monitoring_log),
            "alerts_by_account": {k: sorted(v) for k, v in self.alerts_by_account.items()},
        }
