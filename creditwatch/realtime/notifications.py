"""
Notification Service — every real-time channel event the UI listens for.

    CreditAlert           → severity fan-out, or a single user
    AccountStatusUpdate   → officer roles + account watchers, or a single user
    SystemNotification    → one role group, or everyone
    ReportReady           → the requesting user
    AccountStatusReceived → the requesting connection only

Payloads are flat JSON-serializable dicts stamped with a UTC timestamp.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from creditwatch.alerting.actions import AccountStatus, AccountStatusLookup
from creditwatch.alerting.fanout import FanoutDispatcher
from creditwatch.alerting.routing import account_group, role_group
from creditwatch.alerting.schemas import Alert
from creditwatch.auth.roles import Role
from creditwatch.realtime.events import ChannelEvent
from creditwatch.realtime.hub import NotificationHub

logger = structlog.get_logger(__name__)

STATUS_UPDATE_ROLES = (Role.CREDIT_OFFICER, Role.MANAGER, Role.ADMIN)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationService:
    def __init__(
        self,
        hub: NotificationHub,
        fanout: Optional[FanoutDispatcher] = None,
        accounts: Optional[AccountStatusLookup] = None,
    ):
        self._hub = hub
        self._fanout = fanout or FanoutDispatcher(hub)
        self._accounts = accounts

    @property
    def fanout(self) -> FanoutDispatcher:
        return self._fanout

    async def send_credit_alert(self, alert: Alert, user_id: Optional[str] = None) -> int:
        """Returns the number of connections reached, either path."""
        if user_id:
            return await self._hub.deliver_to_user(
                user_id, ChannelEvent.CREDIT_ALERT.value, alert.to_payload()
            )
        return await self._fanout.deliver(alert)

    async def send_account_status_update(
        self, account_id: str | int, new_status: str, user_id: Optional[str] = None
    ) -> int:
        payload = {
            "accountId": str(account_id),
            "newStatus": new_status,
            "timestamp": _now(),
        }
        event = ChannelEvent.ACCOUNT_STATUS_UPDATE.value
        if user_id:
            sent = await self._hub.deliver_to_user(user_id, event, payload)
        else:
            groups = {role_group(r) for r in STATUS_UPDATE_ROLES}
            groups.add(account_group(account_id))
            sent = await self._hub.deliver_to_groups(groups, event, payload)
        logger.info("account_status_update_sent", account_id=str(account_id), delivered=sent)
        return sent

    async def send_system_notification(
        self, message: str, level: str = "info", role: Optional[str] = None
    ) -> int:
        payload = {"message": message, "level": level, "timestamp": _now()}
        event = ChannelEvent.SYSTEM_NOTIFICATION.value
        if role:
            sent = await self._hub.deliver_to_groups({role_group(role)}, event, payload)
        else:
            sent = await self._hub.deliver_to_all(event, payload)
        logger.info("system_notification_sent", level=level, role=role, delivered=sent)
        return sent

    async def send_report_ready(self, report_name: str, download_url: str, user_id: str) -> int:
        payload = {
            "reportName": report_name,
            "downloadUrl": download_url,
            "timestamp": _now(),
        }
        sent = await self._hub.deliver_to_user(user_id, ChannelEvent.REPORT_READY.value, payload)
        logger.info("report_ready_sent", report_name=report_name, user_id=user_id, delivered=sent)
        return sent

    async def request_account_status(self, connection_id: str, account_id: str | int) -> int:
        """
        Answer a client's status request on its own connection.

        Without a status source every account reads as Active with no alerts.
        """
        if self._accounts is not None:
            current = await self._accounts.account_status(str(account_id))
        else:
            current = AccountStatus(status="Active", alert_count=0)
        payload = {
            "accountId": str(account_id),
            "status": current.status,
            "lastUpdate": (current.last_update or datetime.now(timezone.utc)).isoformat(),
            "alertCount": current.alert_count,
        }
        sent = await self._hub.deliver_to_connection(
            connection_id, ChannelEvent.ACCOUNT_STATUS_RECEIVED.value, payload
        )
        logger.info(
            "account_status_requested",
            connection_id=connection_id,
            account_id=str(account_id),
            status=current.status,
            delivered=sent,
        )
        return sent
