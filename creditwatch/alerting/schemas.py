"""
Credit Alert Schemas.

Defines the credit-risk alert record, its severity scale, and the
terminal outcome of processing one queued alert message.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntEnum, StrEnum
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)


# ── Enums ──────────────────────────────────────────────────────────────


class AlertSeverity(IntEnum):
    """Ordered severity scale — higher value = wider audience, heavier side effects."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: Any) -> "AlertSeverity":
        """Accept an enum member, its integer value, or its name in any case."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid severity: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls(int(text))
            try:
                return cls[text.upper()]
            except KeyError:
                raise ValueError(f"Unknown severity: {value!r}") from None
        raise ValueError(f"Invalid severity: {value!r}")


class OutcomeAction(StrEnum):
    COMPLETE = "complete"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


# ── Alert ──────────────────────────────────────────────────────────────


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class Alert(BaseModel):
    """
    A credit-risk alert raised by the upstream risk evaluation.

    Immutable once created. Accepts snake_case, camelCase and PascalCase
    keys so payloads from any producer serializer validate the same way.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    account_id: str = Field(
        min_length=1,
        validation_alias=_alias("account_id", "accountId", "loanAccountId"),
        serialization_alias="accountId",
    )
    related_document_id: Optional[str] = Field(
        default=None,
        validation_alias=_alias("related_document_id", "relatedDocumentId", "voucherId"),
        serialization_alias="relatedDocumentId",
    )
    severity: AlertSeverity
    alert_type: str = Field(
        default="",
        validation_alias=_alias("alert_type", "alertType"),
        serialization_alias="alertType",
    )
    description: str = ""
    previous_score: int = Field(
        default=0,
        validation_alias=_alias("previous_score", "previousScore", "previousCreditScore"),
        serialization_alias="previousScore",
    )
    current_score: int = Field(
        default=0,
        validation_alias=_alias("current_score", "currentScore", "currentCreditScore"),
        serialization_alias="currentScore",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        validation_alias=_alias("created_at", "createdAt"),
        serialization_alias="createdAt",
    )
    resolved: bool = Field(
        default=False,
        validation_alias=_alias("resolved", "isResolved"),
    )

    @model_validator(mode="before")
    @classmethod
    def _camel_case_keys(cls, data: Any) -> Any:
        # PascalCase (e.g. "LoanAccountId") -> camelCase
        if isinstance(data, dict):
            return {
                (k[:1].lower() + k[1:] if isinstance(k, str) and k[:1].isupper() else k): v
                for k, v in data.items()
            }
        return data

    @field_validator("id", "account_id", "related_document_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("identifier must not be a boolean")
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: Any) -> AlertSeverity:
        return AlertSeverity.parse(value)

    @field_serializer("severity")
    def _serialize_severity(self, severity: AlertSeverity) -> str:
        return severity.label

    @property
    def score_change(self) -> int:
        return self.current_score - self.previous_score

    def to_payload(self) -> dict[str, Any]:
        """Flat JSON-serializable payload pushed to live clients."""
        return self.model_dump(mode="json", by_alias=True)

    def to_message_body(self) -> str:
        """Queue message body."""
        return self.model_dump_json(by_alias=True)


class PublishAlertResponse(BaseModel):
    message_id: str
    alert_id: str
    status: str = "queued"


# ── Outcome ────────────────────────────────────────────────────────────


INVALID_MESSAGE_FORMAT = "InvalidMessageFormat"
PROCESSING_FAILED = "ProcessingFailed"


@dataclass(frozen=True)
class Outcome:
    """
    Resolution of one queued message.

    COMPLETE and DEAD_LETTER are terminal; RETRY hands the message back to
    the queue for redelivery.
    """

    action: OutcomeAction
    message_id: str
    reason: Optional[str] = None
    description: str = ""
    alert_id: Optional[str] = None

    @classmethod
    def complete(cls, message_id: str, alert_id: Optional[str] = None) -> "Outcome":
        return cls(OutcomeAction.COMPLETE, message_id, alert_id=alert_id)

    @classmethod
    def retry(
        cls, message_id: str, description: str = "", alert_id: Optional[str] = None
    ) -> "Outcome":
        return cls(OutcomeAction.RETRY, message_id, description=description, alert_id=alert_id)

    @classmethod
    def dead_letter(
        cls,
        message_id: str,
        reason: str,
        description: str = "",
        alert_id: Optional[str] = None,
    ) -> "Outcome":
        if not reason:
            raise ValueError("dead-letter outcome requires a reason")
        return cls(
            OutcomeAction.DEAD_LETTER,
            message_id,
            reason=reason,
            description=description,
            alert_id=alert_id,
        )

    @property
    def is_terminal(self) -> bool:
        return self.action is not OutcomeAction.RETRY
