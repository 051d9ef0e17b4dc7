"""
Severity Routing — who is entitled to see an alert.

Single source of truth for the severity → audience mapping. The processor's
notify side effects and the fan-out group targeting both call these
functions, so the two can never diverge.
"""

from types import MappingProxyType

from creditwatch.alerting.schemas import Alert, AlertSeverity
from creditwatch.auth.roles import Role

ROLE_GROUP_PREFIX = "role:"
ACCOUNT_GROUP_PREFIX = "account:"

_ALL_OFFICER_ROLES = frozenset({Role.ADMIN, Role.MANAGER, Role.CREDIT_OFFICER})

SEVERITY_TARGETS = MappingProxyType({
    AlertSeverity.CRITICAL: _ALL_OFFICER_ROLES,
    AlertSeverity.HIGH: _ALL_OFFICER_ROLES,
    AlertSeverity.MEDIUM: _ALL_OFFICER_ROLES,
    AlertSeverity.LOW: frozenset({Role.CREDIT_OFFICER}),
})


def target_roles(severity: AlertSeverity) -> frozenset[Role]:
    """Roles entitled to receive an alert of the given severity."""
    return SEVERITY_TARGETS.get(AlertSeverity.parse(severity), frozenset({Role.CREDIT_OFFICER}))


def role_group(role: Role | str) -> str:
    return f"{ROLE_GROUP_PREFIX}{role}"


def account_group(account_id: str | int) -> str:
    return f"{ACCOUNT_GROUP_PREFIX}{account_id}"


def delivery_groups(alert: Alert) -> frozenset[str]:
    """
    Group names an alert is pushed to.

    Role groups give severity-tier breadth; the account group is always
    added so explicit watchers of the account see every alert.
    """
    groups = {role_group(role) for role in target_roles(alert.severity)}
    groups.add(account_group(alert.account_id))
    return frozenset(groups)
