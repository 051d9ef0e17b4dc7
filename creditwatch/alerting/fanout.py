"""
Fan-out Dispatcher — pushes processed alerts to live subscribers.

Dual addressing:
- role groups from the severity router (who is on duty for this tier)
- the alert's account group (who explicitly watches this account)

An officer outside the severity's roles who watches the account still sees
the alert.
"""

from typing import Any, Protocol

import structlog

from creditwatch.alerting.routing import delivery_groups
from creditwatch.alerting.schemas import Alert
from creditwatch.realtime.events import ChannelEvent

logger = structlog.get_logger(__name__)


class GroupDelivery(Protocol):
    async def deliver_to_groups(self, group_names, event: str, payload: dict[str, Any]) -> int:
        ...


class FanoutDispatcher:
    def __init__(self, hub: GroupDelivery):
        self._hub = hub

    async def dispatch(self, alert: Alert) -> frozenset[str]:
        """Deliver ``alert`` as a CreditAlert event. Returns the groups targeted."""
        groups, _ = await self._fan_out(alert)
        return groups

    async def deliver(self, alert: Alert) -> int:
        """Same fan-out as ``dispatch``; returns how many connections it reached."""
        _, delivered = await self._fan_out(alert)
        return delivered

    async def _fan_out(self, alert: Alert) -> tuple[frozenset[str], int]:
        groups = delivery_groups(alert)
        delivered = await self._hub.deliver_to_groups(
            groups, ChannelEvent.CREDIT_ALERT.value, alert.to_payload()
        )
        logger.info(
            "alert_fanned_out",
            alert_id=alert.id,
            severity=alert.severity.label,
            groups=sorted(groups),
            delivered=delivered,
        )
        return groups, delivered
