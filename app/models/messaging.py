"""Outbound message log for SMS and email deliveries."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, utc_now


class MessageChannel(str, Enum):
    """Communication channel for messages."""

    EMAIL = "email"
    SMS = "sms"


class MessageStatus(str, Enum):
    """Status of a sent message."""

    PENDING = "pending"  # Queued for sending
    SENT = "sent"  # Accepted by provider
    FAILED = "failed"  # Sending failed


class Message(Base, TimestampMixin):
    """Individual message sent to a patient.

    Message bodies for consent requests contain the consent link, so
    they are kept here rather than in application logs.
    """

    __tablename__ = "messages"

    patient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    consent_token_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("consent_tokens.id", ondelete="SET NULL"),
        nullable=True,
    )
    channel: Mapped[MessageChannel] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )
    recipient_address: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    subject: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    body: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    status: Mapped[MessageStatus] = mapped_column(
        String(30),
        default=MessageStatus.PENDING,
        nullable=False,
        index=True,
    )
    provider: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    provider_message_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    message_metadata: Mapped[dict | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    def update_status(self, new_status: MessageStatus, error: str | None = None) -> None:
        """Update message status with appropriate timestamps."""
        self.status = new_status
        if new_status == MessageStatus.SENT:
            self.sent_at = utc_now()
        elif new_status == MessageStatus.FAILED:
            self.error_message = error

    def __repr__(self) -> str:
        return f"<Message {self.id} {self.channel} status={self.status}>"
