"""Tests for the consent lifecycle service."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.consent.jurisdiction import get_jurisdiction_policy
from app.core.errors import InvalidJurisdictionTextError, VerbalConsentError
from app.models.audit_event import AuditEvent
from app.models.consent import ConsentRecord, DeclineReason
from app.models.messaging import Message, MessageChannel, MessageStatus
from app.models.patient import Patient
from app.models.user import User
from app.services.consent import (
    ConsentService,
    MissingContactError,
    NothingToWithdrawError,
    build_consent_url,
)
from app.services.consent_tokens import ConsentDecision
from app.services.messaging import MessageProvider, MessageProviderError, MessagingService


class StepClock:
    """Clock that advances one minute per reading."""

    def __init__(self) -> None:
        self.now = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


class FailingSMSProvider(MessageProvider):
    name = "failing_gateway"

    async def deliver(self, recipient: str, body: str, subject: str | None = None):
        raise MessageProviderError("gateway unavailable")


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def service(async_session: AsyncSession, clock: StepClock) -> ConsentService:
    return ConsentService(async_session, policy=get_jurisdiction_policy("CA-ON"), clock=clock)


async def _actions(session: AsyncSession, patient_id: str) -> list[str]:
    result = await session.execute(
        select(AuditEvent.action)
        .where(AuditEvent.patient_id == patient_id)
        .order_by(AuditEvent.created_at)
    )
    return list(result.scalars().all())


class TestCheckStatus:
    """Tests for ConsentService.check_status."""

    @pytest.mark.asyncio
    async def test_no_records(self, service: ConsentService, patient: Patient) -> None:
        status = await service.check_status(patient.id)

        assert status.has_valid_consent is False
        assert status.status == "none"
        assert status.consent_method is None

    @pytest.mark.asyncio
    async def test_verbal_grant_is_valid(
        self, service: ConsentService, patient: Patient, clinician: User
    ) -> None:
        await service.record_verbal(patient, clinician, text_read_aloud=True, decision="granted")

        status = await service.check_status(patient.id)

        assert status.has_valid_consent is True
        assert status.status == "granted"
        assert status.consent_method == "verbal"
        assert status.scope == "ongoing"
        assert status.granted_at is not None
        assert status.text_version == "1.0.0-en-CA"

    @pytest.mark.asyncio
    async def test_later_grant_reverses_decline(
        self, service: ConsentService, patient: Patient, clinician: User
    ) -> None:
        await service.record_verbal(
            patient,
            clinician,
            text_read_aloud=True,
            decision="declined",
            decline_reasons=[DeclineReason.NEEDS_TIME],
        )
        declined = await service.check_status(patient.id)
        assert declined.is_declined is True
        assert declined.decline_reasons == [DeclineReason.NEEDS_TIME]

        await service.record_verbal(patient, clinician, text_read_aloud=True, decision="granted")
        status = await service.check_status(patient.id)

        assert status.has_valid_consent is True
        assert status.is_declined is False
        assert len(await service.history(patient.id)) == 2

    @pytest.mark.asyncio
    async def test_session_only_grant_is_valid(
        self, service: ConsentService, pending_token
    ) -> None:
        await service.tokens.consume(
            pending_token.token, ConsentDecision(decision="granted", scope="session-only")
        )

        status = await service.check_status(pending_token.patient_id)

        assert status.has_valid_consent is True
        assert status.scope == "session-only"
        assert status.consent_method == "digital"

    @pytest.mark.asyncio
    async def test_grant_in_disallowed_language_is_not_valid(
        self,
        async_session: AsyncSession,
        service: ConsentService,
        patient: Patient,
        clinician: User,
    ) -> None:
        """An en-CA grant does not satisfy a French-only jurisdiction."""
        await service.record_verbal(
            patient,
            clinician,
            text_read_aloud=True,
            decision="granted",
            text_version="1.0.0-en-CA",
        )
        strict = ConsentService(async_session, policy=get_jurisdiction_policy("CA-QC"))

        status = await strict.check_status(patient.id)

        assert status.status == "granted"
        assert status.has_valid_consent is False
        assert await strict.recording_allowed(patient.id) is False
        assert await service.recording_allowed(patient.id) is True


class TestRequestConsent:
    """Tests for sending consent links."""

    @pytest.mark.asyncio
    async def test_sms_request_is_logged_and_audited(
        self,
        async_session: AsyncSession,
        service: ConsentService,
        patient: Patient,
        clinician: User,
    ) -> None:
        token, message = await service.request_consent(patient, clinician)

        assert message.status == MessageStatus.SENT
        assert message.recipient_address == "+14165550101"
        assert message.consent_token_id == token.id
        assert build_consent_url(token.token) in message.body
        assert "Alex" in message.body

        status = await service.check_status(patient.id)
        assert status.status == "sms_requested"
        assert status.has_valid_consent is False

        actions = await _actions(async_session, patient.id)
        assert "consent_token_issued" in actions
        assert "sms_sent" in actions

    @pytest.mark.asyncio
    async def test_request_does_not_hide_existing_grant(
        self, service: ConsentService, patient: Patient, clinician: User
    ) -> None:
        await service.record_verbal(patient, clinician, text_read_aloud=True, decision="granted")
        await service.request_consent(patient, clinician)

        status = await service.check_status(patient.id)

        assert status.status == "granted"
        assert status.has_valid_consent is True

    @pytest.mark.asyncio
    async def test_email_request_uses_french_template(
        self,
        async_session: AsyncSession,
        clock: StepClock,
        patient: Patient,
        clinician: User,
    ) -> None:
        patient.preferred_language = "fr-CA"
        await async_session.commit()
        service = ConsentService(async_session, policy=get_jurisdiction_policy("CA-ON"), clock=clock)

        token, message = await service.request_consent(
            patient, clinician, channel=MessageChannel.EMAIL
        )

        assert token.text_version == "1.0.0-fr-CA"
        assert message.recipient_address == "alex@example.com"
        assert message.subject is not None
        assert "Bonjour" in message.body

    @pytest.mark.asyncio
    async def test_missing_phone_raises(
        self,
        async_session: AsyncSession,
        service: ConsentService,
        patient: Patient,
        clinician: User,
    ) -> None:
        patient.phone_e164 = None
        await async_session.commit()

        with pytest.raises(MissingContactError):
            await service.request_consent(patient, clinician)

        assert (await async_session.execute(select(Message))).first() is None

    @pytest.mark.asyncio
    async def test_failed_delivery_is_audited(
        self,
        async_session: AsyncSession,
        clock: StepClock,
        patient: Patient,
        clinician: User,
    ) -> None:
        service = ConsentService(
            async_session,
            policy=get_jurisdiction_policy("CA-ON"),
            clock=clock,
            messaging=MessagingService(async_session, sms_provider=FailingSMSProvider()),
        )

        token, message = await service.request_consent(patient, clinician)

        assert message.status == MessageStatus.FAILED
        assert message.error_message == "gateway unavailable"
        assert token.used is False
        assert "sms_failed" in await _actions(async_session, patient.id)


class TestVerbalConsent:
    """Tests for ConsentService.record_verbal."""

    @pytest.mark.asyncio
    async def test_text_must_be_read_aloud(
        self,
        async_session: AsyncSession,
        service: ConsentService,
        patient: Patient,
        clinician: User,
    ) -> None:
        with pytest.raises(VerbalConsentError):
            await service.record_verbal(
                patient, clinician, text_read_aloud=False, decision="granted"
            )

        assert (await async_session.execute(select(ConsentRecord))).first() is None

    @pytest.mark.asyncio
    async def test_decline_requires_reason(
        self, service: ConsentService, patient: Patient, clinician: User
    ) -> None:
        with pytest.raises(VerbalConsentError):
            await service.record_verbal(
                patient, clinician, text_read_aloud=True, decision="declined"
            )

    @pytest.mark.asyncio
    async def test_text_not_permitted_in_jurisdiction(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
    ) -> None:
        service = ConsentService(async_session, policy=get_jurisdiction_policy("CA-QC"))

        with pytest.raises(InvalidJurisdictionTextError):
            await service.record_verbal(
                patient,
                clinician,
                text_read_aloud=True,
                decision="granted",
                text_version="1.0.0-en-CA",
            )

    @pytest.mark.asyncio
    async def test_verbal_grant_writes_audit_trail(
        self,
        async_session: AsyncSession,
        service: ConsentService,
        patient: Patient,
        clinician: User,
    ) -> None:
        entry = await service.record_verbal(
            patient,
            clinician,
            text_read_aloud=True,
            decision="granted",
            witness_statement="Witnessed by front desk",
        )

        assert entry.kind == "verbal_granted"
        assert entry.witness_statement == "Witnessed by front desk"
        assert entry.professional_id == clinician.id
        assert await _actions(async_session, patient.id) == [
            "consent_read_aloud_confirmed",
            "consent_verified",
        ]


class TestWithdraw:
    """Tests for ConsentService.withdraw."""

    @pytest.mark.asyncio
    async def test_withdrawal_revokes_grant(
        self, service: ConsentService, patient: Patient, clinician: User
    ) -> None:
        await service.record_verbal(patient, clinician, text_read_aloud=True, decision="granted")

        entry = await service.withdraw(patient, clinician, reason="Changed mind")

        assert entry.kind == "withdrawn"
        assert entry.withdrawal_reason == "Changed mind"
        status = await service.check_status(patient.id)
        assert status.status == "withdrawn"
        assert status.has_valid_consent is False
        assert await service.recording_allowed(patient.id) is False

    @pytest.mark.asyncio
    async def test_nothing_to_withdraw(
        self, service: ConsentService, patient: Patient, clinician: User
    ) -> None:
        with pytest.raises(NothingToWithdrawError):
            await service.withdraw(patient, clinician)

    @pytest.mark.asyncio
    async def test_cannot_withdraw_twice(
        self, service: ConsentService, patient: Patient, clinician: User
    ) -> None:
        await service.record_verbal(patient, clinician, text_read_aloud=True, decision="granted")
        await service.withdraw(patient, clinician)

        with pytest.raises(NothingToWithdrawError):
            await service.withdraw(patient, clinician)

    @pytest.mark.asyncio
    async def test_history_keeps_every_transition(
        self, service: ConsentService, patient: Patient, clinician: User
    ) -> None:
        await service.request_consent(patient, clinician)
        await service.record_verbal(patient, clinician, text_read_aloud=True, decision="granted")
        await service.withdraw(patient, clinician)

        history = await service.history(patient.id)

        assert [e.kind for e in history] == ["sms_requested", "verbal_granted", "withdrawn"]
