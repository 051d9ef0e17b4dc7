"""
CreditWatch — FastAPI Application.

Run: uvicorn creditwatch.main:app --host 0.0.0.0 --port 8080

Routes:
  - POST /api/v1/alerts                      ← risk evaluation publishes here
  - GET  /api/v1/events/stream?token=        ← live SSE notifications
  - POST/DELETE /api/v1/events/connections/{id}/accounts/{account_id}
  - GET  /api/v1/dead-letters, POST /api/v1/dead-letters/{id}/replay
  - GET  /health                             ← health check
  - GET  /metrics                            ← Prometheus metrics
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from creditwatch.api.routers.alerts import router as alerts_router
from creditwatch.api.routers.dead_letters import router as dead_letters_router
from creditwatch.api.routers.events import router as events_router
from creditwatch.api.routers.metrics import router as metrics_router
from creditwatch.metrics import set_service_info
from creditwatch.middleware.error_handler import ErrorHandlerMiddleware
from creditwatch.middleware.request_context import RequestContextMiddleware
from creditwatch.registry import ServiceRegistry, build_services

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    services: ServiceRegistry = app.state.services
    config = services.config
    logger.info("creditwatch_starting", version=config.app_version, environment=config.environment)
    set_service_info(config.app_version, config.environment)
    if config.run_workers:
        services.workers.start()
    yield
    await services.close()
    logger.info("creditwatch_shutdown")


def create_app(services: Optional[ServiceRegistry] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    services = services or build_services()
    config = services.config

    app = FastAPI(
        title=config.app_name,
        description=(
            "# CreditWatch — Credit-Risk Alert Pipeline\n\n"
            "- **Publish**: risk evaluation → alert queue\n"
            "- **Process**: queue → severity side effects → complete / retry / dead-letter\n"
            "- **Fan-out**: processed alerts → role and account groups → live SSE clients\n\n"
            "## Authentication\n"
            "`Authorization: Bearer <JWT>`; the SSE stream takes `?token=`.\n"
        ),
        version=config.app_version,
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness probe"},
            {"name": "alerts", "description": "Alert publishing"},
            {"name": "events", "description": "Server-Sent Events stream and account subscriptions"},
            {"name": "dead-letters", "description": "Dead-letter inspection and replay"},
            {"name": "observability", "description": "Prometheus metrics"},
        ],
    )
    app.state.services = services

    # ── Middleware (last added = outermost) ──────────────────────────
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(alerts_router)
    app.include_router(events_router)
    app.include_router(dead_letters_router)
    app.include_router(metrics_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe. Reports hub and worker state, does NOT touch the queue."""
        return {
            "status": "ok",
            "version": config.app_version,
            "service": "creditwatch",
            "live_connections": services.hub.connection_count,
            "workers_running": services.workers.running,
        }

    return app
