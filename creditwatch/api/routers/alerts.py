"""
Alert Publishing Endpoint.

POST /api/v1/alerts — hand a newly created alert to the processing queue

Called by the risk evaluation side exactly once per alert. Processing is
asynchronous: a 202 only means the alert is durably queued.
"""

from fastapi import APIRouter, Depends

from creditwatch.alerting.schemas import Alert, PublishAlertResponse
from creditwatch.api.deps import get_principal, get_services
from creditwatch.auth.roles import Principal
from creditwatch.registry import ServiceRegistry

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.post("", status_code=202, response_model=PublishAlertResponse)
async def publish_alert(
    alert: Alert,
    services: ServiceRegistry = Depends(get_services),
    principal: Principal = Depends(get_principal),
):
    message_id = await services.publisher.publish_alert(alert)
    return PublishAlertResponse(message_id=message_id, alert_id=alert.id)
