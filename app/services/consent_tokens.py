"""Consent token issuance and single-use consumption.

A token authorizes exactly one consent decision. Consumption flips the
``used`` flag with a conditional UPDATE (``WHERE used = false``) in the
same transaction that appends the ledger entry and its audit event, so
two concurrent submissions can never both succeed.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.consent.jurisdiction import (
    JurisdictionPolicy,
    get_active_policy,
    get_jurisdiction_policy,
)
from app.consent.validator import require_permitted_text, select_consent_text
from app.core.config import settings
from app.core.errors import (
    ConsentError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
)
from app.core.security import generate_consent_token
from app.db.base import utc_now
from app.models.audit_event import ActorType
from app.models.consent import ConsentScope, ConsentToken, DeclineReason
from app.models.patient import Patient
from app.models.user import User, UserRole
from app.schemas.consent import ConsentEntry, DigitalDeclined, DigitalGranted
from app.services.audit import ConsentAuditAction, write_audit_event
from app.services.consent_records import ConsentRecordStore, to_entry

logger = logging.getLogger(__name__)


class ClinicianRequiredError(ConsentError):
    """Raised when a token is issued without an active clinician."""

    pass


class TokenClinicianMismatchError(ConsentError):
    """Raised when a clinician acts on another clinician's token."""

    pass


@dataclass
class ConsentDecision:
    """A decision submitted against a consent token."""

    decision: Literal["granted", "declined"]
    scope: Literal["ongoing", "session-only"] = "ongoing"
    decline_reasons: list[DeclineReason] = field(default_factory=list)
    decline_notes: str | None = None
    actor_type: ActorType = ActorType.PATIENT
    actor_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def token_scope(self) -> ConsentScope:
        if self.decision == "declined":
            return ConsentScope.DECLINED
        return ConsentScope(self.scope)


class ConsentTokenService:
    """Issues and consumes consent tokens.

    Args:
        session: Database session
        policy: Jurisdiction policy; defaults to the configured jurisdiction
        clock: Returns the current UTC time
        ttl: Token validity window; defaults to ``consent_token_ttl_days``
    """

    def __init__(
        self,
        session: AsyncSession,
        policy: JurisdictionPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
        ttl: timedelta | None = None,
    ) -> None:
        self.session = session
        self.policy = policy or get_active_policy()
        self.clock = clock
        self.ttl = ttl or timedelta(days=settings.consent_token_ttl_days)
        self.records = ConsentRecordStore(session)

    async def issue(
        self,
        patient: Patient,
        clinician: User | None,
        clinic_name: str | None = None,
        session_id: str | None = None,
    ) -> ConsentToken:
        """Issue a consent token binding a patient, clinician and clinic.

        Args:
            patient: Patient the decision will belong to
            clinician: Authenticated clinician requesting consent
            clinic_name: Clinic display name (defaults to settings)
            session_id: Optional clinical session the request belongs to

        Returns:
            Persisted ConsentToken

        Raises:
            ClinicianRequiredError: If no active clinician is supplied
        """
        if clinician is None or not clinician.is_active or clinician.role != UserRole.CLINICIAN:
            raise ClinicianRequiredError("An authenticated clinician is required")

        text = select_consent_text(
            self.policy,
            settings.consent_text_version,
            preferred_language=patient.preferred_language,
        )
        now = self.clock()
        token = ConsentToken(
            token=generate_consent_token(),
            patient_id=patient.id,
            patient_name=patient.full_name,
            patient_phone=patient.phone_e164,
            patient_email=patient.email,
            clinician_id=clinician.id,
            clinician_name=clinician.full_name,
            clinic_name=clinic_name or settings.clinic_name,
            session_id=session_id,
            jurisdiction=self.policy.code,
            text_version=text.text_version,
            created_at=now,
            expires_at=now + self.ttl,
            used=False,
        )
        self.session.add(token)
        await self.session.flush()

        await write_audit_event(
            session=self.session,
            actor_type=ActorType.STAFF,
            actor_id=clinician.id,
            actor_email=clinician.email,
            action=ConsentAuditAction.TOKEN_ISSUED,
            action_category="consent",
            entity_type="consent_token",
            entity_id=token.id,
            patient_id=patient.id,
            metadata={
                "expires_at": token.expires_at.isoformat(),
                "jurisdiction": token.jurisdiction,
                "text_version": token.text_version,
                "session_id": session_id,
            },
            commit=False,
        )
        await self.session.commit()
        await self.session.refresh(token)

        logger.info(
            "Consent token issued",
            extra={"patient_id": patient.id, "token_id": token.id},
        )
        return token

    async def _load_token(self, token_value: str) -> ConsentToken | None:
        result = await self.session.execute(
            select(ConsentToken)
            .where(ConsentToken.token == token_value)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_usable(self, token_value: str) -> ConsentToken:
        """Load a token that can still record a decision.

        Raises:
            TokenNotFoundError: Unknown token
            TokenExpiredError: Validity window has passed
            TokenAlreadyUsedError: A decision was already recorded
        """
        token = await self._load_token(token_value)
        return self._check_usable(token)

    def _check_usable(self, token: ConsentToken | None) -> ConsentToken:
        if token is None:
            raise TokenNotFoundError()
        # Expiry wins over the used flag
        if token.is_expired(self.clock()):
            raise TokenExpiredError(token.id, token.patient_id)
        if token.used:
            raise TokenAlreadyUsedError(token.id, token.patient_id)
        return token

    async def consume(self, token_value: str, decision: ConsentDecision) -> ConsentEntry:
        """Record a decision against a token, exactly once.

        Args:
            token_value: Opaque token from the consent link
            decision: The patient's decision

        Returns:
            The ledger entry that was created

        Raises:
            TokenNotFoundError: Unknown token
            TokenExpiredError: Validity window has passed
            TokenAlreadyUsedError: A decision was already recorded
        """
        token = self._check_usable(await self._load_token(token_value))
        return await self._consume(token, decision)

    async def authorize(self, token_id: str, clinician: User) -> ConsentEntry:
        """Let the issuing clinician record an in-person grant on their token.

        Raises:
            TokenNotFoundError: Unknown token
            TokenClinicianMismatchError: Token was issued by someone else
            TokenExpiredError: Validity window has passed
            TokenAlreadyUsedError: A decision was already recorded
        """
        token = await self.session.get(ConsentToken, token_id, populate_existing=True)
        if token is not None and token.clinician_id != clinician.id:
            raise TokenClinicianMismatchError(token_id)
        token = self._check_usable(token)

        decision = ConsentDecision(
            decision="granted",
            scope="ongoing",
            actor_type=ActorType.STAFF,
            actor_id=clinician.id,
        )
        return await self._consume(token, decision)

    async def _consume(self, token: ConsentToken, decision: ConsentDecision) -> ConsentEntry:
        now = self.clock()
        require_permitted_text(token.text_version, get_jurisdiction_policy(token.jurisdiction))

        # Validate the ledger entry before the token is flipped
        if decision.decision == "granted":
            entry: ConsentEntry = DigitalGranted(
                patient_id=token.patient_id,
                professional_id=token.clinician_id,
                text_version=token.text_version,
                jurisdiction=token.jurisdiction,
                consent_date=now,
                scope=decision.scope,
                token_id=token.id,
            )
            action = ConsentAuditAction.CONSENT_VERIFIED
        else:
            entry = DigitalDeclined(
                patient_id=token.patient_id,
                professional_id=token.clinician_id,
                text_version=token.text_version,
                jurisdiction=token.jurisdiction,
                consent_date=now,
                decline_reasons=decision.decline_reasons,
                decline_notes=decision.decline_notes,
                token_id=token.id,
            )
            action = ConsentAuditAction.DECLINED

        decision_metadata = {
            "actor_type": decision.actor_type.value,
            "actor_id": decision.actor_id,
            "ip_address": decision.ip_address,
            "user_agent": decision.user_agent,
        }
        result = await self.session.execute(
            update(ConsentToken)
            .where(ConsentToken.id == token.id)
            .where(ConsentToken.used.is_(False))
            .values(
                used=True,
                used_at=now,
                decision_scope=decision.token_scope.value,
                decision_at=now,
                decision_metadata=decision_metadata,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Another submission won the race
            token_id, patient_id = token.id, token.patient_id
            await self.session.rollback()
            raise TokenAlreadyUsedError(token_id, patient_id)

        try:
            record = await self.records.append(
                entry,
                ip_address=decision.ip_address,
                user_agent=decision.user_agent,
            )
            await write_audit_event(
                session=self.session,
                actor_type=decision.actor_type,
                actor_id=decision.actor_id,
                action=action,
                action_category="consent",
                entity_type="consent_record",
                entity_id=record.id,
                patient_id=token.patient_id,
                metadata={
                    "token_id": token.id,
                    "method": "digital",
                    "scope": decision.token_scope.value,
                    "decline_reasons": [r.value for r in decision.decline_reasons],
                    "text_version": token.text_version,
                },
                ip_address=decision.ip_address,
                user_agent=decision.user_agent,
                commit=False,
            )
            await self.session.commit()
        except Exception:
            # The token flip must not outlive a failed ledger write
            await self.session.rollback()
            raise
        await self.session.refresh(record)

        logger.info(
            f"Consent token consumed: {decision.decision}",
            extra={"patient_id": token.patient_id, "token_id": token.id},
        )
        return to_entry(record)
