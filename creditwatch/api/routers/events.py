"""
SSE Events Stream and account subscriptions.

GET    /api/v1/events/stream?token=xxx
POST   /api/v1/events/connections/{connection_id}/accounts/{account_id}
DELETE /api/v1/events/connections/{connection_id}/accounts/{account_id}
POST   /api/v1/events/connections/{connection_id}/accounts/{account_id}/status

Client usage:
    const es = new EventSource('/api/v1/events/stream?token=xxx');
    es.addEventListener('Connected', (e) => { connectionId = JSON.parse(e.data).connectionId; });
    es.addEventListener('CreditAlert', (e) => { const alert = JSON.parse(e.data); ... });

Auth via query param token. EventSource API does not support custom headers.
The first event on every stream is ``Connected``; its connection id is what
the join/leave endpoints take.
"""

import uuid
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from creditwatch.api.deps import authenticate, get_principal, get_services
from creditwatch.auth.roles import Principal
from creditwatch.realtime.connection import StreamConnection, format_sse
from creditwatch.realtime.events import ChannelEvent
from creditwatch.realtime.hub import NotificationHub
from creditwatch.registry import ServiceRegistry

router = APIRouter(prefix="/api/v1/events", tags=["events"])


async def open_event_source(
    hub: NotificationHub,
    principal: Principal,
    connection: StreamConnection,
    keepalive_seconds: float = 30.0,
) -> AsyncGenerator[str, None]:
    """
    Register ``connection`` with the hub and stream its events.

    Disconnects from the hub when the client goes away (generator closed).
    """
    groups = await hub.on_connect(connection.connection_id, principal, connection)
    try:
        yield format_sse(
            ChannelEvent.CONNECTED,
            {
                "connectionId": connection.connection_id,
                "userId": principal.user_id,
                "groups": sorted(groups),
            },
        )
        async for frame in connection.stream(keepalive_seconds):
            yield frame
    finally:
        connection.close()
        await hub.on_disconnect(connection.connection_id)


@router.get("/stream")
async def event_stream(
    token: str = Query(default=""),
    services: ServiceRegistry = Depends(get_services),
):
    """
    SSE notification stream for the authenticated user.

    Events include:
    - CreditAlert: alert routed to one of the connection's groups
    - AccountStatusUpdate: status change on a watched account
    - SystemNotification: operator broadcast
    - ReportReady: report generated for this user
    - AccountStatusReceived: reply to a status request from this connection
    """
    principal = authenticate(token)
    connection = StreamConnection(
        str(uuid.uuid4()),
        max_queue=services.config.connection_queue_size,
    )
    return StreamingResponse(
        open_event_source(
            services.hub,
            principal,
            connection,
            keepalive_seconds=services.config.sse_keepalive_seconds,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


def _owned_connection(hub: NotificationHub, connection_id: str, principal: Principal) -> None:
    owner = hub.principal_for(connection_id)
    if owner is None:
        raise HTTPException(status_code=404, detail="Connection not found")
    if owner.user_id != principal.user_id:
        raise HTTPException(status_code=403, detail="Connection belongs to another user")


@router.post("/connections/{connection_id}/accounts/{account_id}")
async def join_account(
    connection_id: str,
    account_id: str,
    services: ServiceRegistry = Depends(get_services),
    principal: Principal = Depends(get_principal),
):
    """Receive alerts for ``account_id`` on this connection."""
    _owned_connection(services.hub, connection_id, principal)
    joined = await services.hub.join_account_group(connection_id, account_id)
    if not joined:
        raise HTTPException(status_code=404, detail="Connection not found")
    return {
        "connection_id": connection_id,
        "account_id": account_id,
        "groups": sorted(services.hub.groups_for(connection_id)),
    }


@router.delete("/connections/{connection_id}/accounts/{account_id}")
async def leave_account(
    connection_id: str,
    account_id: str,
    services: ServiceRegistry = Depends(get_services),
    principal: Principal = Depends(get_principal),
):
    _owned_connection(services.hub, connection_id, principal)
    await services.hub.leave_account_group(connection_id, account_id)
    return {
        "connection_id": connection_id,
        "account_id": account_id,
        "groups": sorted(services.hub.groups_for(connection_id)),
    }


@router.post("/connections/{connection_id}/accounts/{account_id}/status", status_code=202)
async def request_account_status(
    connection_id: str,
    account_id: str,
    services: ServiceRegistry = Depends(get_services),
    principal: Principal = Depends(get_principal),
):
    """Push the account's current status to this connection as AccountStatusReceived."""
    _owned_connection(services.hub, connection_id, principal)
    sent = await services.notifications.request_account_status(connection_id, account_id)
    return {"connection_id": connection_id, "account_id": account_id, "delivered": sent}
