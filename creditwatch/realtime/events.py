"""Real-time channel event names shared with the UI."""

from enum import StrEnum


class ChannelEvent(StrEnum):
    CONNECTED = "Connected"
    CREDIT_ALERT = "CreditAlert"
    ACCOUNT_STATUS_UPDATE = "AccountStatusUpdate"
    SYSTEM_NOTIFICATION = "SystemNotification"
    REPORT_READY = "ReportReady"
    ACCOUNT_STATUS_RECEIVED = "AccountStatusReceived"
