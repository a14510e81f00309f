"""Tests for consent token issuance and single-use consumption."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.consent.jurisdiction import get_jurisdiction_policy
from app.core.errors import TokenAlreadyUsedError, TokenExpiredError, TokenNotFoundError
from app.db.base import as_utc, utc_now
from app.models.audit_event import AuditEvent
from app.models.consent import ConsentRecord, ConsentToken, DeclineReason
from app.models.patient import Patient
from app.models.user import User
from app.services.consent_tokens import (
    ClinicianRequiredError,
    ConsentDecision,
    ConsentTokenService,
    TokenClinicianMismatchError,
)


async def _count(session: AsyncSession, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


class TestIssue:
    """Tests for ConsentTokenService.issue."""

    @pytest.mark.asyncio
    async def test_issue_binds_patient_clinician_and_window(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
    ) -> None:
        """A token carries its binding context and a seven day window."""
        service = ConsentTokenService(async_session)
        before = utc_now()

        token = await service.issue(patient, clinician, session_id="visit-42")

        assert token.patient_id == patient.id
        assert token.clinician_id == clinician.id
        assert token.patient_name == "Alex Tremblay"
        assert token.clinician_name == "Dana Roy"
        assert token.session_id == "visit-42"
        assert token.jurisdiction == "CA-ON"
        assert token.text_version == "1.0.0-en-CA"
        assert token.used is False
        assert len(token.token) >= 32
        window = as_utc(token.expires_at) - before
        assert timedelta(days=6, hours=23) < window <= timedelta(days=7, minutes=1)

    @pytest.mark.asyncio
    async def test_issue_in_strict_jurisdiction_uses_french_text(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
    ) -> None:
        service = ConsentTokenService(async_session, policy=get_jurisdiction_policy("CA-QC"))

        token = await service.issue(patient, clinician)

        assert token.jurisdiction == "CA-QC"
        assert token.text_version == "1.0.0-fr-CA"

    @pytest.mark.asyncio
    async def test_issue_writes_audit_event(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
    ) -> None:
        token = await ConsentTokenService(async_session).issue(patient, clinician)

        event = await async_session.scalar(
            select(AuditEvent).where(AuditEvent.action == "consent_token_issued")
        )
        assert event is not None
        assert event.entity_id == token.id
        assert event.patient_id == patient.id
        assert event.actor_id == clinician.id

    @pytest.mark.asyncio
    async def test_issue_requires_clinician(
        self,
        async_session: AsyncSession,
        patient: Patient,
    ) -> None:
        service = ConsentTokenService(async_session)

        with pytest.raises(ClinicianRequiredError):
            await service.issue(patient, None)

    @pytest.mark.asyncio
    async def test_issue_rejects_non_clinician_role(
        self,
        async_session: AsyncSession,
        patient: Patient,
        receptionist: User,
    ) -> None:
        service = ConsentTokenService(async_session)

        with pytest.raises(ClinicianRequiredError):
            await service.issue(patient, receptionist)

    @pytest.mark.asyncio
    async def test_issue_rejects_inactive_clinician(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
    ) -> None:
        clinician.is_active = False
        await async_session.commit()

        with pytest.raises(ClinicianRequiredError):
            await ConsentTokenService(async_session).issue(patient, clinician)

        assert await _count(async_session, ConsentToken) == 0


class TestConsume:
    """Tests for ConsentTokenService.consume."""

    @pytest.mark.asyncio
    async def test_token_records_exactly_one_decision(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
    ) -> None:
        """A second submission on the same token is rejected."""
        service = ConsentTokenService(async_session)
        token = await service.issue(patient, clinician)

        entry = await service.consume(token.token, ConsentDecision(decision="granted"))

        assert entry.kind == "digital_granted"
        assert entry.status == "granted"
        assert entry.token_id == token.id

        with pytest.raises(TokenAlreadyUsedError):
            await service.consume(
                token.token,
                ConsentDecision(decision="declined", decline_reasons=[DeclineReason.NO_AI]),
            )

        assert await _count(async_session, ConsentRecord) == 1

    @pytest.mark.asyncio
    async def test_consume_after_window_raises_expired(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
    ) -> None:
        token = await ConsentTokenService(async_session).issue(patient, clinician)
        later = ConsentTokenService(
            async_session, clock=lambda: utc_now() + timedelta(days=8)
        )

        with pytest.raises(TokenExpiredError) as exc_info:
            await later.consume(token.token, ConsentDecision(decision="granted"))

        assert exc_info.value.token_id == token.id
        assert await _count(async_session, ConsentRecord) == 0

    @pytest.mark.asyncio
    async def test_unknown_token_raises_not_found(self, async_session: AsyncSession) -> None:
        service = ConsentTokenService(async_session)

        with pytest.raises(TokenNotFoundError):
            await service.consume("x" * 43, ConsentDecision(decision="granted"))

    @pytest.mark.asyncio
    async def test_expired_takes_precedence_over_used(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
        make_consent_token,
    ) -> None:
        token = await make_consent_token(
            patient, clinician, expires_in=timedelta(minutes=-5), used=True
        )
        service = ConsentTokenService(async_session)

        with pytest.raises(TokenExpiredError):
            await service.consume(token.token, ConsentDecision(decision="granted"))

    @pytest.mark.asyncio
    async def test_decline_records_reasons_and_marks_token(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
    ) -> None:
        service = ConsentTokenService(async_session)

        entry = await service.consume(
            pending_token.token,
            ConsentDecision(
                decision="declined",
                decline_reasons=[DeclineReason.PRIVACY_CONCERNS, DeclineReason.OTHER],
                decline_notes="Would rather not",
                ip_address="203.0.113.5",
            ),
        )

        assert entry.kind == "digital_declined"
        assert entry.decline_reasons == [DeclineReason.PRIVACY_CONCERNS, DeclineReason.OTHER]
        assert entry.decline_notes == "Would rather not"

        token = await async_session.get(ConsentToken, pending_token.id, populate_existing=True)
        assert token.used is True
        assert token.used_at is not None
        assert token.decision_scope == "declined"
        assert token.decision_metadata["ip_address"] == "203.0.113.5"

    @pytest.mark.asyncio
    async def test_session_only_scope_is_recorded(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
    ) -> None:
        service = ConsentTokenService(async_session)

        entry = await service.consume(
            pending_token.token,
            ConsentDecision(decision="granted", scope="session-only"),
        )

        assert entry.scope == "session-only"

    @pytest.mark.asyncio
    async def test_consume_writes_decision_audit_event(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
    ) -> None:
        await ConsentTokenService(async_session).consume(
            pending_token.token, ConsentDecision(decision="granted")
        )

        event = await async_session.scalar(
            select(AuditEvent).where(AuditEvent.action == "consent_verified")
        )
        assert event is not None
        assert event.actor_type == "patient"
        assert event.event_metadata["token_id"] == pending_token.id

    @pytest.mark.asyncio
    async def test_stale_read_loses_conditional_update(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
    ) -> None:
        """A submission that read the token before another consumed it is rejected."""
        service = ConsentTokenService(async_session)
        await service.consume(pending_token.token, ConsentDecision(decision="granted"))

        stale = ConsentToken(
            id=pending_token.id,
            token=pending_token.token,
            patient_id=pending_token.patient_id,
            patient_name=pending_token.patient_name,
            clinician_id=pending_token.clinician_id,
            clinic_name=pending_token.clinic_name,
            jurisdiction=pending_token.jurisdiction,
            text_version=pending_token.text_version,
            expires_at=utc_now() + timedelta(days=1),
            used=False,
        )

        async def load_stale(token_value: str) -> ConsentToken:
            return stale

        with patch.object(service, "_load_token", side_effect=load_stale):
            with pytest.raises(TokenAlreadyUsedError):
                await service.consume(
                    pending_token.token,
                    ConsentDecision(decision="declined", decline_reasons=[DeclineReason.NO_AI]),
                )

        assert await _count(async_session, ConsentRecord) == 1

    @pytest.mark.asyncio
    async def test_invalid_decline_leaves_token_usable(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
    ) -> None:
        """A decline without reasons is rejected before the token is spent."""
        service = ConsentTokenService(async_session)

        with pytest.raises(ValidationError):
            await service.consume(pending_token.token, ConsentDecision(decision="declined"))
        await async_session.commit()

        token = await async_session.get(ConsentToken, pending_token.id, populate_existing=True)
        assert token.used is False
        assert token.decision_scope is None
        assert await _count(async_session, ConsentRecord) == 0

        entry = await service.consume(pending_token.token, ConsentDecision(decision="granted"))
        assert entry.kind == "digital_granted"

    @pytest.mark.asyncio
    async def test_failed_ledger_write_rolls_back_token(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
    ) -> None:
        service = ConsentTokenService(async_session)
        token_id, token_value = pending_token.id, pending_token.token

        with patch.object(service.records, "append", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                await service.consume(token_value, ConsentDecision(decision="granted"))

        token = await async_session.get(ConsentToken, token_id, populate_existing=True)
        assert token.used is False
        assert await _count(async_session, ConsentRecord) == 0


class TestGetUsable:
    """Tests for ConsentTokenService.get_usable."""

    @pytest.mark.asyncio
    async def test_returns_pending_token(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
    ) -> None:
        token = await ConsentTokenService(async_session).get_usable(pending_token.token)

        assert token.id == pending_token.id

    @pytest.mark.asyncio
    async def test_expired_token_is_rejected(
        self,
        async_session: AsyncSession,
        expired_token: ConsentToken,
    ) -> None:
        with pytest.raises(TokenExpiredError):
            await ConsentTokenService(async_session).get_usable(expired_token.token)


class TestAuthorize:
    """Tests for in-person authorization by the issuing clinician."""

    @pytest.mark.asyncio
    async def test_issuing_clinician_can_authorize(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
        clinician: User,
    ) -> None:
        entry = await ConsentTokenService(async_session).authorize(pending_token.id, clinician)

        assert entry.kind == "digital_granted"
        assert entry.professional_id == clinician.id

    @pytest.mark.asyncio
    async def test_other_clinician_cannot_authorize(
        self,
        async_session: AsyncSession,
        pending_token: ConsentToken,
        other_clinician: User,
    ) -> None:
        with pytest.raises(TokenClinicianMismatchError):
            await ConsentTokenService(async_session).authorize(pending_token.id, other_clinician)

        assert await _count(async_session, ConsentRecord) == 0

    @pytest.mark.asyncio
    async def test_authorize_unknown_token(
        self,
        async_session: AsyncSession,
        clinician: User,
    ) -> None:
        with pytest.raises(TokenNotFoundError):
            await ConsentTokenService(async_session).authorize("missing-id", clinician)

    @pytest.mark.asyncio
    async def test_authorize_used_token(
        self,
        async_session: AsyncSession,
        patient: Patient,
        clinician: User,
        make_consent_token,
    ) -> None:
        token = await make_consent_token(patient, clinician, used=True)

        with pytest.raises(TokenAlreadyUsedError):
            await ConsentTokenService(async_session).authorize(token.id, clinician)


def test_decision_scope_mapping() -> None:
    assert ConsentDecision(decision="declined").token_scope.value == "declined"
    assert ConsentDecision(decision="granted", scope="session-only").token_scope.value == (
        "session-only"
    )
