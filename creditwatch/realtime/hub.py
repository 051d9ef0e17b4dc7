"""
Notification Hub — live connection ↔ group membership and delivery.

Groups:
- ``role:<Role>``: joined on connect from the principal's role claims
- ``account:<AccountId>``: explicit opt-in per watched account

Membership is created on connect, changed by join/leave, and discarded on
disconnect. A reconnect under a new connection id starts from scratch.

Delivery is best-effort fire-and-forget: a target that is gone or slow
simply misses the event. There is no inbox and no retry.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog

from creditwatch.alerting.routing import account_group, role_group
from creditwatch.auth.roles import Principal
from creditwatch.metrics import LIVE_CONNECTIONS, record_send
from creditwatch.realtime.connection import ClientConnection
from creditwatch.realtime.locks import KeyedLock

logger = structlog.get_logger(__name__)


def _conn_key(connection_id: str) -> str:
    return f"conn:{connection_id}"


def _group_key(group: str) -> str:
    return f"group:{group}"


def _user_key(user_id: str) -> str:
    return f"user:{user_id}"


@dataclass
class _Membership:
    connection_id: str
    principal: Principal
    connection: ClientConnection
    groups: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationHub:
    """
    Connection registry and group-addressed delivery.

    Mutations and delivery snapshots lock only the connection / group /
    user keys involved; there is no hub-wide lock.
    """

    def __init__(self, delivery_timeout: float = 2.0):
        self._delivery_timeout = delivery_timeout
        self._connections: dict[str, _Membership] = {}
        self._groups: dict[str, set[str]] = {}
        self._users: dict[str, set[str]] = {}
        self._locks = KeyedLock()

    # ── Introspection ──────────────────────────────────────────────────

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def groups_for(self, connection_id: str) -> frozenset[str]:
        membership = self._connections.get(connection_id)
        return frozenset(membership.groups) if membership else frozenset()

    def members_of(self, group: str) -> frozenset[str]:
        return frozenset(self._groups.get(group, ()))

    def principal_for(self, connection_id: str) -> Optional[Principal]:
        membership = self._connections.get(connection_id)
        return membership.principal if membership else None

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def on_connect(
        self,
        connection_id: str,
        principal: Principal,
        connection: ClientConnection,
    ) -> frozenset[str]:
        """
        Register a connection and join its role groups.

        Idempotent for the same principal. An id re-registered under a
        different principal drops the previous membership first, so no
        user index or group keeps pointing at the old identity.
        """
        role_groups = {role_group(role) for role in principal.roles}

        while True:
            existing = self._connections.get(connection_id)
            keys, held_groups = self._lock_plan(existing)
            keys.extend([_conn_key(connection_id), _user_key(principal.user_id)])
            keys.extend(_group_key(g) for g in role_groups)

            async with self._locks.hold(*keys):
                if not self._unchanged(connection_id, existing, held_groups):
                    continue
                membership = existing
                if membership is not None and membership.principal != principal:
                    self._discard(membership)
                    logger.warning(
                        "hub_connection_reassigned",
                        connection_id=connection_id,
                        previous_user_id=membership.principal.user_id,
                        user_id=principal.user_id,
                    )
                    membership = None
                if membership is None:
                    membership = _Membership(connection_id, principal, connection)
                    self._connections[connection_id] = membership
                    self._users.setdefault(principal.user_id, set()).add(connection_id)
                else:
                    membership.connection = connection
                for group in role_groups:
                    self._join(membership, group)
                groups = frozenset(membership.groups)
                break

        LIVE_CONNECTIONS.set(len(self._connections))
        logger.info(
            "hub_connected",
            connection_id=connection_id,
            user_id=principal.user_id,
            groups=sorted(groups),
        )
        return groups

    async def on_disconnect(self, connection_id: str) -> None:
        """Drop a connection from every group. Unknown or repeated ids are a no-op."""
        while True:
            membership = self._connections.get(connection_id)
            if membership is None:
                logger.debug("hub_disconnect_unknown", connection_id=connection_id)
                return

            keys, held_groups = self._lock_plan(membership)
            async with self._locks.hold(*keys):
                # A join that landed while we waited adds a group we do not hold
                if not self._unchanged(connection_id, membership, held_groups):
                    continue
                self._discard(membership)
                break

        LIVE_CONNECTIONS.set(len(self._connections))
        logger.info(
            "hub_disconnected",
            connection_id=connection_id,
            user_id=membership.principal.user_id,
        )

    # ── Account groups ─────────────────────────────────────────────────

    async def join_account_group(self, connection_id: str, account_id: str | int) -> bool:
        """Opt a connection into an account's alerts. Returns False for unknown connections."""
        group = account_group(account_id)
        async with self._locks.hold(_conn_key(connection_id), _group_key(group)):
            membership = self._connections.get(connection_id)
            if membership is None:
                return False
            self._join(membership, group)
        logger.info("hub_account_joined", connection_id=connection_id, account_id=str(account_id))
        return True

    async def leave_account_group(self, connection_id: str, account_id: str | int) -> bool:
        group = account_group(account_id)
        async with self._locks.hold(_conn_key(connection_id), _group_key(group)):
            membership = self._connections.get(connection_id)
            if membership is None:
                return False
            self._leave(membership, group)
        logger.info("hub_account_left", connection_id=connection_id, account_id=str(account_id))
        return True

    # ── Delivery ───────────────────────────────────────────────────────

    async def deliver_to_groups(
        self, group_names: Iterable[str], event: str, payload: dict[str, Any]
    ) -> int:
        """
        Send to every connection in any of the groups, at most once each.

        Returns the number of connections the event reached.
        """
        groups = frozenset(group_names)
        async with self._locks.hold(*(_group_key(g) for g in groups)):
            connection_ids: set[str] = set()
            for group in groups:
                connection_ids |= self._groups.get(group, set())
            targets = self._snapshot(connection_ids)
        return await self._send_all(targets, event, payload, groups=sorted(groups))

    async def deliver_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> int:
        """Send to every connection authenticated as ``user_id``."""
        async with self._locks.hold(_user_key(user_id)):
            targets = self._snapshot(self._users.get(user_id, set()))
        return await self._send_all(targets, event, payload, user_id=user_id)

    async def deliver_to_connection(
        self, connection_id: str, event: str, payload: dict[str, Any]
    ) -> int:
        """Reply on one connection only (the caller's own stream)."""
        async with self._locks.hold(_conn_key(connection_id)):
            targets = self._snapshot([connection_id])
        return await self._send_all(targets, event, payload, connection_id=connection_id)

    async def deliver_to_all(self, event: str, payload: dict[str, Any]) -> int:
        targets = self._snapshot(self._connections.keys())
        return await self._send_all(targets, event, payload, broadcast=True)

    # ── Internals ──────────────────────────────────────────────────────

    @staticmethod
    def _lock_plan(membership: Optional[_Membership]) -> tuple[list[str], frozenset[str]]:
        """Lock keys for everything ``membership`` is indexed under, plus the groups they cover."""
        if membership is None:
            return [], frozenset()
        groups = frozenset(membership.groups)
        keys = [_conn_key(membership.connection_id), _user_key(membership.principal.user_id)]
        keys.extend(_group_key(g) for g in groups)
        return keys, groups

    def _unchanged(
        self, connection_id: str, seen: Optional[_Membership], held_groups: frozenset[str]
    ) -> bool:
        """
        True if the membership read before locking is still current and has
        not joined a group whose key we do not hold.
        """
        current = self._connections.get(connection_id)
        if current is not seen:
            return False
        return current is None or current.groups <= held_groups

    def _discard(self, membership: _Membership) -> None:
        self._connections.pop(membership.connection_id, None)
        for group in list(membership.groups):
            self._leave(membership, group)
        user_connections = self._users.get(membership.principal.user_id)
        if user_connections is not None:
            user_connections.discard(membership.connection_id)
            if not user_connections:
                del self._users[membership.principal.user_id]

    def _join(self, membership: _Membership, group: str) -> None:
        membership.groups.add(group)
        self._groups.setdefault(group, set()).add(membership.connection_id)

    def _leave(self, membership: _Membership, group: str) -> None:
        membership.groups.discard(group)
        members = self._groups.get(group)
        if members is not None:
            members.discard(membership.connection_id)
            if not members:
                del self._groups[group]

    def _snapshot(self, connection_ids: Iterable[str]) -> list[_Membership]:
        return [
            self._connections[cid]
            for cid in sorted(connection_ids)
            if cid in self._connections
        ]

    async def _send_all(
        self,
        targets: list[_Membership],
        event: str,
        payload: dict[str, Any],
        **log_context: Any,
    ) -> int:
        if not targets:
            logger.debug("hub_no_recipients", hub_event=event, **log_context)
            return 0
        results = await asyncio.gather(*(self._send(t, event, payload) for t in targets))
        delivered = sum(1 for ok in results if ok)
        logger.debug(
            "hub_delivered",
            hub_event=event,
            recipients=len(targets),
            delivered=delivered,
            **log_context,
        )
        return delivered

    async def _send(self, target: _Membership, event: str, payload: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(
                target.connection.send(event, payload),
                timeout=self._delivery_timeout,
            )
        except Exception as e:
            # Expected for closed or stalled clients: dropped, never retried
            logger.debug(
                "hub_delivery_dropped",
                connection_id=target.connection_id,
                hub_event=event,
                error=type(e).__name__,
            )
            record_send(event, delivered=False)
            return False
        record_send(event, delivered=True)
        return True
