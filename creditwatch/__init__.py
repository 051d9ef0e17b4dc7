"""
CreditWatch — Loan-account credit risk alert pipeline.

Architecture:
    creditwatch/
    ├── alerting/        # Alert schemas, severity routing, processor, fan-out
    ├── queue/           # Durable queue transports (Redis Streams, in-memory)
    ├── realtime/        # Notification hub, live connections, channel events
    ├── auth/            # JWT principal decoding, roles
    ├── api/             # FastAPI routers (HTTP layer)
    └── middleware/      # Request context, error handling

Data Flow:
    Producer → Queue → AlertProcessor (side effects, complete/retry/dead-letter)
    → FanoutDispatcher → NotificationHub → connected clients

Version: 1.0.0
"""

__version__ = "1.0.0"
