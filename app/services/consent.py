"""Consent lifecycle service.

Coordinates token issuance, link delivery, verbal capture, withdrawal and
status checks. Every transition appends to the consent ledger and writes
an audit event in the same transaction. Validity is always decided by
``app.consent.validator.is_valid``.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.consent.jurisdiction import JurisdictionPolicy, get_active_policy
from app.consent.texts import ConsentText
from app.consent.validator import is_valid, require_permitted_text, select_consent_text
from app.core.config import settings
from app.core.errors import ConsentError, VerbalConsentError
from app.db.base import utc_now
from app.fixtures.message_templates import render_consent_request
from app.models.audit_event import ActorType
from app.models.consent import ConsentMethod, ConsentStatus, ConsentToken, DeclineReason
from app.models.messaging import Message, MessageChannel, MessageStatus
from app.models.patient import Patient
from app.models.user import User
from app.schemas.consent import (
    ConsentEntry,
    ConsentStatusResponse,
    ConsentWithdrawn,
    SmsRequested,
    VerbalDeclined,
    VerbalGranted,
)
from app.services.audit import ConsentAuditAction, write_audit_event
from app.services.consent_records import ConsentRecordStore, to_entry
from app.services.consent_tokens import ConsentTokenService
from app.services.messaging import MessagingService

logger = logging.getLogger(__name__)


class MissingContactError(ConsentError):
    """Raised when the patient has no address for the requested channel."""

    pass


class NothingToWithdrawError(ConsentError):
    """Raised when withdrawing consent that is not currently granted."""

    pass


def build_consent_url(token: str) -> str:
    """Build the public consent link for a token."""
    return f"{settings.public_base_url.rstrip('/')}/consent/{token}"


class ConsentService:
    """High-level consent operations for clinicians."""

    def __init__(
        self,
        session: AsyncSession,
        policy: JurisdictionPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
        messaging: MessagingService | None = None,
    ) -> None:
        self.session = session
        self.policy = policy or get_active_policy()
        self.clock = clock
        self.records = ConsentRecordStore(session)
        self.tokens = ConsentTokenService(session, policy=self.policy, clock=clock)
        self.messaging = messaging or MessagingService(session)

    def current_text(self, preferred_language: str | None = None) -> ConsentText:
        """Return the consent text to present under the active jurisdiction."""
        return select_consent_text(
            self.policy,
            settings.consent_text_version,
            preferred_language=preferred_language,
        )

    # --- Reads ---

    async def check_status(self, patient_id: str) -> ConsentStatusResponse:
        """Report the patient's current consent state.

        The latest decision wins: a grant after a decline reverses it and
        a withdrawal revokes a grant.
        """
        latest = await self.records.latest_decision(patient_id)
        if latest is None:
            request = await self.records.latest_request(patient_id)
            return ConsentStatusResponse(
                has_valid_consent=False,
                status="sms_requested" if request else "none",
                consent_method=ConsentMethod.DIGITAL if request else None,
            )

        granted = latest.status == ConsentStatus.GRANTED
        declined = latest.status == ConsentStatus.DECLINED
        return ConsentStatusResponse(
            has_valid_consent=is_valid(latest, self.policy),
            is_declined=declined,
            status=latest.status,
            consent_method=latest.consent_method,
            scope=getattr(latest, "scope", None) if granted else None,
            text_version=latest.text_version,
            granted_at=latest.consent_date if granted else None,
            decline_reasons=getattr(latest, "decline_reasons", None) if declined else None,
        )

    async def recording_allowed(self, patient_id: str) -> bool:
        """Gate for starting an AI-assisted recording."""
        latest = await self.records.latest_decision(patient_id)
        return is_valid(latest, self.policy)

    async def history(self, patient_id: str) -> list[ConsentEntry]:
        """Full consent ledger for a patient, oldest first."""
        return await self.records.history(patient_id)

    # --- Digital consent request ---

    async def request_consent(
        self,
        patient: Patient,
        clinician: User,
        channel: MessageChannel = MessageChannel.SMS,
        session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[ConsentToken, Message]:
        """Issue a token and deliver the consent link to the patient.

        A failed delivery leaves the token issued; the returned message
        carries the failure and an ``sms_failed`` audit event is written.

        Raises:
            MissingContactError: If the patient has no address for the channel
        """
        recipient = patient.phone_e164 if channel == MessageChannel.SMS else patient.email
        if not recipient:
            raise MissingContactError(f"Patient has no {channel.value} contact")

        token = await self.tokens.issue(patient, clinician, session_id=session_id)
        consent_url = build_consent_url(token.token)
        language = self.policy.select_language(patient.preferred_language)
        subject, body = render_consent_request(
            channel,
            language,
            {
                "patient_first_name": patient.first_name,
                "clinician_name": clinician.full_name,
                "clinic_name": token.clinic_name,
                "consent_url": consent_url,
                "expires_on": token.expires_at.date().isoformat(),
            },
        )
        message = await self.messaging.send_message(
            patient_id=patient.id,
            channel=channel,
            recipient_address=recipient,
            subject=subject,
            body=body,
            consent_token_id=token.id,
            metadata={"type": "consent_request"},
        )

        sent = message.status == MessageStatus.SENT
        await self.records.append(
            SmsRequested(
                patient_id=patient.id,
                professional_id=clinician.id,
                text_version=token.text_version,
                jurisdiction=token.jurisdiction,
                consent_date=self.clock(),
                token_id=token.id,
            ),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await write_audit_event(
            session=self.session,
            actor_type=ActorType.STAFF,
            actor_id=clinician.id,
            actor_email=clinician.email,
            action=ConsentAuditAction.SMS_SENT if sent else ConsentAuditAction.SMS_FAILED,
            action_category="consent",
            entity_type="message",
            entity_id=message.id,
            patient_id=patient.id,
            metadata={
                "token_id": token.id,
                "channel": channel.value,
                "provider_message_id": message.provider_message_id,
                "error": message.error_message,
            },
            ip_address=ip_address,
            user_agent=user_agent,
            commit=False,
        )
        await self.session.commit()
        return token, message

    # --- Verbal consent ---

    async def record_verbal(
        self,
        patient: Patient,
        clinician: User,
        text_read_aloud: bool,
        decision: str,
        decline_reasons: list[DeclineReason] | None = None,
        decline_notes: str | None = None,
        witness_statement: str | None = None,
        text_version: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConsentEntry:
        """Record a verbal consent decision.

        Args:
            patient: Patient giving or refusing consent
            clinician: Clinician capturing the decision
            text_read_aloud: Clinician confirms the full text was read aloud
            decision: "granted" or "declined"
            decline_reasons: Reason codes, at least one when declined
            decline_notes: Optional free-text notes for a decline
            witness_statement: Optional witness statement
            text_version: Text that was read; defaults to the current text
            ip_address: Client IP address
            user_agent: Client user agent

        Returns:
            The ledger entry that was created

        Raises:
            VerbalConsentError: If the text was not read aloud, or a
                decline has no reason
            InvalidJurisdictionTextError: If the text is not permitted
        """
        if not text_read_aloud:
            raise VerbalConsentError(
                "The consent text must be read aloud before recording a decision"
            )
        if decision == "declined" and not decline_reasons:
            raise VerbalConsentError("At least one decline reason is required")

        if text_version:
            text = require_permitted_text(text_version, self.policy)
        else:
            text = self.current_text(patient.preferred_language)

        now = self.clock()
        await write_audit_event(
            session=self.session,
            actor_type=ActorType.STAFF,
            actor_id=clinician.id,
            actor_email=clinician.email,
            action=ConsentAuditAction.READ_ALOUD_CONFIRMED,
            action_category="consent",
            entity_type="patient",
            entity_id=patient.id,
            patient_id=patient.id,
            metadata={"text_version": text.text_version},
            ip_address=ip_address,
            user_agent=user_agent,
            commit=False,
        )

        if decision == "granted":
            entry: ConsentEntry = VerbalGranted(
                patient_id=patient.id,
                professional_id=clinician.id,
                text_version=text.text_version,
                jurisdiction=self.policy.code,
                consent_date=now,
                witness_statement=witness_statement,
            )
            action = ConsentAuditAction.CONSENT_VERIFIED
        else:
            entry = VerbalDeclined(
                patient_id=patient.id,
                professional_id=clinician.id,
                text_version=text.text_version,
                jurisdiction=self.policy.code,
                consent_date=now,
                decline_reasons=decline_reasons,
                decline_notes=decline_notes,
                witness_statement=witness_statement,
            )
            action = ConsentAuditAction.DECLINED

        record = await self.records.append(entry, ip_address=ip_address, user_agent=user_agent)
        await write_audit_event(
            session=self.session,
            actor_type=ActorType.STAFF,
            actor_id=clinician.id,
            actor_email=clinician.email,
            action=action,
            action_category="consent",
            entity_type="consent_record",
            entity_id=record.id,
            patient_id=patient.id,
            metadata={
                "method": "verbal",
                "text_version": text.text_version,
                "decline_reasons": [r.value for r in decline_reasons or []],
            },
            ip_address=ip_address,
            user_agent=user_agent,
            commit=False,
        )
        await self.session.commit()
        await self.session.refresh(record)

        logger.info(
            f"Verbal consent recorded: {decision}",
            extra={"patient_id": patient.id, "actor_id": clinician.id},
        )
        return to_entry(record)

    # --- Withdrawal ---

    async def withdraw(
        self,
        patient: Patient,
        clinician: User,
        method: ConsentMethod = ConsentMethod.VERBAL,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConsentEntry:
        """Withdraw the patient's current grant.

        Raises:
            NothingToWithdrawError: If consent is not currently granted
        """
        latest = await self.records.latest_decision(patient.id)
        if latest is None or latest.status != ConsentStatus.GRANTED:
            raise NothingToWithdrawError("Consent is not currently granted")

        record = await self.records.append(
            ConsentWithdrawn(
                patient_id=patient.id,
                professional_id=clinician.id,
                text_version=latest.text_version,
                jurisdiction=latest.jurisdiction,
                consent_date=self.clock(),
                consent_method=method,
                withdrawal_reason=reason,
            ),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await write_audit_event(
            session=self.session,
            actor_type=ActorType.STAFF,
            actor_id=clinician.id,
            actor_email=clinician.email,
            action=ConsentAuditAction.WITHDRAWN,
            action_category="consent",
            entity_type="consent_record",
            entity_id=record.id,
            patient_id=patient.id,
            metadata={"method": method.value, "withdrawn_record_id": latest.id},
            ip_address=ip_address,
            user_agent=user_agent,
            commit=False,
        )
        await self.session.commit()
        await self.session.refresh(record)
        return to_entry(record)
