"""
Worker Entry Point — runs in a separate container.

Usage:
    python -m creditwatch.worker_main

This does NOT run a web server. It runs the queue worker pool until
SIGINT/SIGTERM, then lets in-flight batches finish before exiting.
Live fan-out from this process only reaches connections held by this
process, so API replicas normally run workers themselves (RUN_WORKERS=true)
and this entry point serves side-effect-only deployments.
"""

import asyncio
import signal

import structlog

from creditwatch.config import settings
from creditwatch.logging_config import configure_logging
from creditwatch.metrics import set_service_info
from creditwatch.registry import build_services

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the worker pool."""
    configure_logging()
    logger.info("worker_process_starting", version=settings.app_version, workers=settings.worker_count)
    set_service_info(settings.app_version, settings.environment)

    services = build_services(settings)
    services.workers.start()

    # Graceful shutdown handling
    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("worker_process_running", msg="Polling queue... Ctrl+C to stop.")

    # Block until shutdown signal
    await stop_event.wait()

    await services.close()
    logger.info("worker_process_shutdown_complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
