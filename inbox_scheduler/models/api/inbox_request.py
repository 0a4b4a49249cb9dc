"""
Inbox webhook request and response models.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from inbox_scheduler.models.domain.exchange_domain import RawMessage


def normalize_message_id(value: str | None) -> str | None:
    """Strip angle brackets and lowercase a Message-ID header value."""
    if value is None:
        return None
    cleaned = value.strip().strip("<>").strip().lower()
    return cleaned or None


class InboundEmailRequest(BaseModel):
    """An inbound email as forwarded by the mail provider."""

    message_id: str = Field(..., min_length=1, description="Message-ID of the inbound email")
    sender: str = Field(..., min_length=3, description="Sender address")
    sender_name: str | None = Field(default=None, description="Sender display name")
    recipients: list[str] = Field(default_factory=list, description="To addresses")
    cc: list[str] = Field(default_factory=list, description="Cc addresses")
    subject: str = Field(default="", description="Subject line")
    body_plain: str = Field(default="", description="Plain-text body")
    body_html: str | None = Field(default=None, description="HTML body")
    in_reply_to: str | None = Field(default=None, description="In-Reply-To message id")
    timestamp: datetime | None = Field(default=None, description="Time the email was received")

    @field_validator("message_id")
    @classmethod
    def _require_message_id(cls, value: str) -> str:
        normalized = normalize_message_id(value)
        if not normalized:
            raise ValueError("message_id must not be empty")
        return normalized

    @field_validator("in_reply_to")
    @classmethod
    def _normalize_in_reply_to(cls, value: str | None) -> str | None:
        return normalize_message_id(value)

    @field_validator("timestamp")
    @classmethod
    def _require_timezone(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def to_raw_message(self) -> RawMessage:
        return RawMessage(
            message_id=self.message_id,
            sender=self.sender,
            recipients=list(self.recipients),
            raw_subject=self.subject,
            raw_body=self.body_plain,
            timestamp=self.timestamp or datetime.now(UTC),
            previous_message_id=self.in_reply_to,
            sender_name=self.sender_name,
            cc=list(self.cc),
            body_html=self.body_html,
        )


class InboundEmailResponse(BaseModel):
    status: str = "success"
    message: str = "Inbox webhook processed"
    sender: str
    action: str
