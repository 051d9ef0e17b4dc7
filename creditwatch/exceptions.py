"""
CreditWatch Exceptions.

Taxonomy for the alert pipeline:
- InvalidAlertMessage: permanent, never retried (dead-lettered immediately)
- SideEffectError: transient, retried until max attempts
- QueueTransportError: queue I/O failure (receive / settle)
- AuthenticationError: token could not be turned into a principal
"""

from typing import Any, Optional


class CreditWatchError(Exception):
    """Base exception for all CreditWatch errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidAlertMessage(CreditWatchError):
    """Queue payload could not be deserialized into an Alert."""


class SideEffectError(CreditWatchError):
    """A severity-tier side effect failed (downstream unavailable, etc.)."""

    def __init__(self, action: str, message: str, account_id: Optional[str] = None):
        super().__init__(
            f"{action} failed: {message}",
            details={"action": action, "account_id": account_id},
        )
        self.action = action
        self.account_id = account_id


class QueueTransportError(CreditWatchError):
    """Queue transport operation failed."""


class AuthenticationError(CreditWatchError):
    """Token missing, invalid or lacking required claims."""
