"""
Prometheus Metrics Endpoint.

GET /metrics — Exposes pipeline metrics in Prometheus text format.
"""

from fastapi import APIRouter, Response

from creditwatch.metrics import get_metrics, get_metrics_content_type

router = APIRouter(tags=["observability"])


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Pipeline metrics in Prometheus text exposition format.",
)
async def prometheus_metrics():
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
