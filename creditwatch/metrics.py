"""
Prometheus Metrics.

Pipeline metrics for monitoring and alerting.

Metrics Categories:
1. Queue processing - messages by outcome, step latency
2. Real-time delivery - fan-out sends, live connections

All metrics follow Prometheus naming conventions:
- snake_case names
- Suffixes: _total (counters), _seconds (durations)
- Labels for dimensions
"""

import time
from contextlib import contextmanager
from typing import Iterator

import structlog
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

logger = structlog.get_logger(__name__)

# ============================================================================
# SERVICE INFO
# ============================================================================

SERVICE_INFO = Info(
    "creditwatch_service",
    "CreditWatch service information",
)

# ============================================================================
# QUEUE PROCESSING
# ============================================================================

ALERTS_PUBLISHED = Counter(
    "creditwatch_alerts_published_total",
    "Alerts handed to the queue by the producer API",
    ["severity"],
)

MESSAGES_PROCESSED = Counter(
    "creditwatch_messages_processed_total",
    "Queue messages resolved by the processor",
    ["outcome", "severity"],  # outcome: complete/retry/dead_letter
)

STEP_DURATION = Histogram(
    "creditwatch_processing_step_seconds",
    "Duration of each alert processing step",
    ["step", "severity", "status"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

QUEUE_SETTLE_ERRORS = Counter(
    "creditwatch_queue_settle_errors_total",
    "Failures applying an outcome to the queue",
    ["action"],
)

# ============================================================================
# REAL-TIME DELIVERY
# ============================================================================

FANOUT_SENDS = Counter(
    "creditwatch_fanout_sends_total",
    "Real-time sends to live connections",
    ["event", "status"],  # status: delivered/dropped
)

LIVE_CONNECTIONS = Gauge(
    "creditwatch_live_connections",
    "Connections currently registered with the notification hub",
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


@contextmanager
def track_step(step: str, severity: str = "unknown") -> Iterator[None]:
    """
    Measure-and-record wrapper around one processing step.

    Observes the duration with status ok/error and re-raises errors.
    """
    start = time.perf_counter()
    status = "ok"
    try:
        yield
    except BaseException:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start
        STEP_DURATION.labels(step=step, severity=severity, status=status).observe(duration)
        logger.debug(
            "processing_step_finished",
            step=step,
            severity=severity,
            status=status,
            duration_ms=round(duration * 1000, 2),
        )


def record_outcome(outcome: str, severity: str = "unknown") -> None:
    MESSAGES_PROCESSED.labels(outcome=outcome, severity=severity).inc()


def record_send(event: str, delivered: bool) -> None:
    FANOUT_SENDS.labels(event=event, status="delivered" if delivered else "dropped").inc()


def set_service_info(version: str, environment: str):
    """Set service info metric."""
    SERVICE_INFO.info({
        "version": version,
        "environment": environment,
        "service": "creditwatch",
    })


def get_metrics() -> bytes:
    """Get all metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get content type for metrics."""
    return CONTENT_TYPE_LATEST
