"""Consent ledger variants and consent API schemas.

Ledger entries are a closed union discriminated by ``kind``: the variant
decides which fields exist. Status and portal payloads use camelCase on
the wire and accept snake_case on input.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.models.consent import ConsentMethod, DeclineReason, RecordSource
from app.models.messaging import MessageChannel


# =============================================================================
# Ledger variants
# =============================================================================


class _ConsentEntryBase(BaseModel):
    """Fields shared by every ledger entry."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str | None = None
    patient_id: str
    professional_id: str | None = None
    text_version: str
    jurisdiction: str
    consent_date: datetime
    source: RecordSource = RecordSource.LIVE
    legacy_id: str | None = None


class VerbalGranted(_ConsentEntryBase):
    """Patient agreed after the clinician read the consent text aloud."""

    kind: Literal["verbal_granted"] = "verbal_granted"
    consent_method: Literal["verbal"] = "verbal"
    status: Literal["granted"] = "granted"
    scope: Literal["ongoing"] = "ongoing"
    witness_statement: str | None = None


class VerbalDeclined(_ConsentEntryBase):
    """Patient declined after the consent text was read aloud."""

    kind: Literal["verbal_declined"] = "verbal_declined"
    consent_method: Literal["verbal"] = "verbal"
    status: Literal["declined"] = "declined"
    decline_reasons: list[DeclineReason] = Field(min_length=1)
    decline_notes: str | None = None
    witness_statement: str | None = None


class DigitalGranted(_ConsentEntryBase):
    """Patient agreed through a consent link."""

    kind: Literal["digital_granted"] = "digital_granted"
    consent_method: Literal["digital"] = "digital"
    status: Literal["granted"] = "granted"
    scope: Literal["ongoing", "session-only"] = "ongoing"
    token_id: str | None = None


class DigitalDeclined(_ConsentEntryBase):
    """Patient declined through a consent link."""

    kind: Literal["digital_declined"] = "digital_declined"
    consent_method: Literal["digital"] = "digital"
    status: Literal["declined"] = "declined"
    decline_reasons: list[DeclineReason] = Field(min_length=1)
    decline_notes: str | None = None
    token_id: str | None = None


class SmsRequested(_ConsentEntryBase):
    """A consent link was sent to the patient."""

    kind: Literal["sms_requested"] = "sms_requested"
    consent_method: Literal["digital"] = "digital"
    status: Literal["sms_requested"] = "sms_requested"
    token_id: str


class ConsentWithdrawn(_ConsentEntryBase):
    """Patient withdrew a previously granted consent."""

    kind: Literal["withdrawn"] = "withdrawn"
    consent_method: ConsentMethod = ConsentMethod.VERBAL
    status: Literal["withdrawn"] = "withdrawn"
    withdrawal_reason: str | None = None


ConsentEntry = Annotated[
    Union[
        VerbalGranted,
        VerbalDeclined,
        DigitalGranted,
        DigitalDeclined,
        SmsRequested,
        ConsentWithdrawn,
    ],
    Field(discriminator="kind"),
]

ENTRY_TYPES: dict[str, type[_ConsentEntryBase]] = {
    "verbal_granted": VerbalGranted,
    "verbal_declined": VerbalDeclined,
    "digital_granted": DigitalGranted,
    "digital_declined": DigitalDeclined,
    "sms_requested": SmsRequested,
    "withdrawn": ConsentWithdrawn,
}

DECISION_KINDS = frozenset(
    {
        "verbal_granted",
        "verbal_declined",
        "digital_granted",
        "digital_declined",
        "withdrawn",
    }
)


# =============================================================================
# Wire contract
# =============================================================================


class CamelModel(BaseModel):
    """Base for payloads exchanged with clinician and patient clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConsentStatusRequest(CamelModel):
    """Status check request. The caller identity comes from the bearer token."""

    patient_id: str = Field(min_length=1, max_length=36)


class ConsentStatusResponse(CamelModel):
    """Current consent state for a patient."""

    success: bool = True
    has_valid_consent: bool
    is_declined: bool = False
    status: Literal["granted", "declined", "withdrawn", "sms_requested", "none"]
    consent_method: ConsentMethod | None = None
    scope: str | None = None
    text_version: str | None = None
    granted_at: datetime | None = None
    decline_reasons: list[DeclineReason] | None = None


class ConsentDecisionRequest(CamelModel):
    """Decision submitted from the public consent page."""

    token: str = Field(min_length=16, max_length=64)
    decision: Literal["granted", "declined"]
    scope: Literal["ongoing", "session-only"] = "ongoing"
    decline_reasons: list[DeclineReason] | None = None
    decline_notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def require_decline_reasons(self) -> "ConsentDecisionRequest":
        """A decline must carry at least one reason code."""
        if self.decision == "declined" and not self.decline_reasons:
            raise ValueError("At least one decline reason is required")
        return self


class ConsentDecisionResponse(CamelModel):
    """Result of a recorded portal decision."""

    success: bool = True
    status: Literal["granted", "declined"]
    scope: str


class ConsentErrorResponse(CamelModel):
    """Typed error returned by the consent portal."""

    success: bool = False
    error: Literal[
        "TOKEN_EXPIRED",
        "INVALID_TOKEN",
        "CONSENT_ALREADY_RECORDED",
        "INTERNAL_ERROR",
    ]
    message: str


class PortalConsentView(CamelModel):
    """What the patient sees when opening a consent link."""

    patient_first_name: str
    clinic_name: str
    clinician_name: str | None
    jurisdiction: str
    text_version: str
    language: str
    title: str
    body: str
    expires_at: datetime


# =============================================================================
# Clinician requests
# =============================================================================


class ConsentTextRead(BaseModel):
    """Consent text to present or read aloud."""

    jurisdiction: str
    strict: bool
    text_version: str
    language: str
    title: str
    body: str


class ConsentRequestCreate(BaseModel):
    """Send a consent link to a patient."""

    patient_id: str
    channel: MessageChannel = MessageChannel.SMS
    session_id: str | None = Field(default=None, max_length=64)


class ConsentRequestResponse(BaseModel):
    """Issued consent request."""

    token_id: str
    patient_id: str
    expires_at: datetime
    channel: MessageChannel
    delivery_status: Literal["sent", "failed"]
    consent_url: str | None = None  # Only exposed in dev


class VerbalConsentCreate(BaseModel):
    """Verbal consent captured by the clinician."""

    patient_id: str
    text_read_aloud: bool
    decision: Literal["granted", "declined"]
    text_version: str | None = None
    decline_reasons: list[DeclineReason] | None = None
    decline_notes: str | None = Field(default=None, max_length=2000)
    witness_statement: str | None = Field(default=None, max_length=2000)


class WithdrawConsentCreate(BaseModel):
    """Withdrawal of a previously granted consent."""

    patient_id: str
    method: ConsentMethod = ConsentMethod.VERBAL
    reason: str | None = Field(default=None, max_length=2000)


class RecordingGateRead(BaseModel):
    """Whether recording may start for a patient."""

    patient_id: str
    allowed: bool
    status: str
