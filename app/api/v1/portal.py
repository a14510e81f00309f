"""Public consent portal endpoints.

These endpoints are reached from the link sent to the patient and are
authenticated by the consent token alone. Failures return a typed error
body (see ``ConsentErrorResponse``) so the page can tell the patient
what to do next.
"""

import logging

from fastapi import APIRouter

from app.api.deps import Client, DbSession
from app.consent.texts import consent_text_registry
from app.core.errors import ConsentTokenError
from app.models.audit_event import ActorType
from app.models.patient import Patient
from app.schemas.consent import (
    ConsentDecisionRequest,
    ConsentDecisionResponse,
    ConsentErrorResponse,
    PortalConsentView,
)
from app.services.audit import ConsentAuditAction, write_audit_event
from app.services.consent_tokens import ConsentDecision, ConsentTokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portal/consent", tags=["consent-portal"])

ERROR_RESPONSES = {
    404: {"model": ConsentErrorResponse, "description": "Invalid consent link"},
    409: {"model": ConsentErrorResponse, "description": "Decision already recorded"},
    410: {"model": ConsentErrorResponse, "description": "Consent link expired"},
    500: {"model": ConsentErrorResponse, "description": "Decision could not be recorded"},
}


@router.get(
    "/{token}",
    response_model=PortalConsentView,
    responses=ERROR_RESPONSES,
)
async def view_consent_request(token: str, session: DbSession) -> PortalConsentView:
    """Show the consent text bound to a pending token."""
    consent_token = await ConsentTokenService(session).get_usable(token)
    text = consent_text_registry.resolve(consent_token.text_version)
    if text is None:
        raise ConsentTokenError(consent_token.id, consent_token.patient_id)

    patient = await session.get(Patient, consent_token.patient_id)
    return PortalConsentView(
        patient_first_name=patient.first_name if patient else consent_token.patient_name,
        clinic_name=consent_token.clinic_name,
        clinician_name=consent_token.clinician_name,
        jurisdiction=consent_token.jurisdiction,
        text_version=consent_token.text_version,
        language=text.language,
        title=text.title,
        body=text.body,
        expires_at=consent_token.expires_at,
    )


@router.post(
    "/decision",
    response_model=ConsentDecisionResponse,
    responses=ERROR_RESPONSES,
)
async def submit_consent_decision(
    body: ConsentDecisionRequest,
    session: DbSession,
    client: Client,
) -> ConsentDecisionResponse:
    """Record the patient's decision. Each token accepts exactly one decision."""
    decision = ConsentDecision(
        decision=body.decision,
        scope=body.scope,
        decline_reasons=body.decline_reasons or [],
        decline_notes=body.decline_notes,
        actor_type=ActorType.PATIENT,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )

    try:
        entry = await ConsentTokenService(session).consume(body.token, decision)
    except ConsentTokenError as e:
        await write_audit_event(
            session=session,
            actor_type=ActorType.PATIENT,
            actor_id=None,
            action=ConsentAuditAction.TOKEN_REJECTED,
            action_category="consent",
            entity_type="consent_token",
            entity_id=e.token_id,
            patient_id=e.patient_id,
            metadata={"error": e.code, "decision": body.decision},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            request_id=client.request_id,
        )
        raise
    except Exception as e:
        logger.exception(f"Consent decision failed: {e}")
        await session.rollback()
        raise ConsentTokenError() from e

    return ConsentDecisionResponse(
        status=entry.status,
        scope=decision.token_scope.value,
    )
