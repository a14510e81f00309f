"""Consent token and consent ledger models.

Consent records are immutable - a new record is appended for every
transition (request sent, granted, declined, withdrawn) so the full
timeline per patient can be reconstructed.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, as_utc, utc_now


class ConsentMethod(str, Enum):
    """How a consent decision was captured."""

    VERBAL = "verbal"
    DIGITAL = "digital"


class ConsentStatus(str, Enum):
    """Status carried by a consent ledger entry."""

    GRANTED = "granted"
    DECLINED = "declined"
    SMS_REQUESTED = "sms_requested"
    WITHDRAWN = "withdrawn"


class ConsentScope(str, Enum):
    """Scope of a consent decision."""

    ONGOING = "ongoing"
    SESSION_ONLY = "session-only"
    DECLINED = "declined"


class ConsentRecordKind(str, Enum):
    """Variant tag of a consent ledger entry."""

    VERBAL_GRANTED = "verbal_granted"
    VERBAL_DECLINED = "verbal_declined"
    DIGITAL_GRANTED = "digital_granted"
    DIGITAL_DECLINED = "digital_declined"
    SMS_REQUESTED = "sms_requested"
    WITHDRAWN = "withdrawn"


class DeclineReason(str, Enum):
    """Machine-readable reason codes for a declined consent."""

    NO_RECORDING = "no_recording"
    NO_AI = "no_ai"
    PRIVACY_CONCERNS = "privacy_concerns"
    TRADITIONAL_METHOD = "traditional_method"
    NEEDS_TIME = "needs_time"
    LANGUAGE_BARRIER = "language_barrier"
    NOT_UNDERSTAND = "not_understand"
    OTHER = "other"


class RecordSource(str, Enum):
    """Origin of a ledger entry."""

    LIVE = "live"
    LEGACY_IMPORT = "legacy_import"


class ConsentToken(Base, TimestampMixin):
    """Single-use, time-limited credential for one consent decision.

    Once ``used`` is set the token is terminal. The flag and the decision
    columns are written by a single conditional update.
    """

    __tablename__ = "consent_tokens"

    token: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    # Binding context
    patient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    patient_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    patient_phone: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    patient_email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    clinician_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    clinician_name: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )
    clinic_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    session_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    jurisdiction: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    text_version: Mapped[str] = mapped_column(
        String(50),
        nullable=False,  # Text presented on the consent page
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    used: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Decision, set together with ``used``
    decision_scope: Mapped[ConsentScope | None] = mapped_column(
        String(20),
        nullable=True,
    )
    decision_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    decision_metadata: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the token validity window has passed."""
        return (now or utc_now()) > as_utc(self.expires_at)

    def __repr__(self) -> str:
        return f"<ConsentToken {self.id} used={self.used}>"


class ConsentRecord(Base, TimestampMixin):
    """Append-only consent ledger entry.

    ``kind`` determines which optional columns are populated; the
    ledger is read through the typed variants in ``app.schemas.consent``.
    """

    __tablename__ = "consent_records"

    kind: Mapped[ConsentRecordKind] = mapped_column(
        String(30),
        nullable=False,
    )
    patient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    professional_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )
    consent_method: Mapped[ConsentMethod] = mapped_column(
        String(20),
        nullable=False,
    )
    status: Mapped[ConsentStatus] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )
    scope: Mapped[ConsentScope | None] = mapped_column(
        String(20),
        nullable=True,
    )
    text_version: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    jurisdiction: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    consent_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    decline_reasons: Mapped[list | None] = mapped_column(
        JSON,
        nullable=True,
    )
    decline_notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    witness_statement: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    withdrawal_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    token_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("consent_tokens.id"),
        nullable=True,
    )

    # Provenance
    source: Mapped[RecordSource] = mapped_column(
        String(20),
        default=RecordSource.LIVE,
        nullable=False,
    )
    legacy_id: Mapped[str | None] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
    )
    ip_address: Mapped[str | None] = mapped_column(
        String(45),
        nullable=True,
    )
    user_agent: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<ConsentRecord {self.kind} patient={self.patient_id}>"
