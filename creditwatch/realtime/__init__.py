"""
Real-time delivery.

Components:
- hub: connection ↔ group membership and best-effort delivery
- connection: SSE-backed live connections
- notifications: channel events (CreditAlert, AccountStatusUpdate, ...)
"""
