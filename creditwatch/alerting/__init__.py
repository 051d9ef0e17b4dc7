"""
CreditWatch Alerting.

Components:
- schemas: Alert model, severity, processing outcomes
- routing: severity → role groups, account group naming
- actions: severity-tiered account side effects (idempotent)
- processor: queue message → Complete / Retry / DeadLetter
- fanout: processed alert → hub groups
"""
