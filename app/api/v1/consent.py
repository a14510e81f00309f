"""Clinician consent endpoints.

All endpoints authenticate the clinician from the bearer token and scope
the patient through the care team. Patient identity is never taken from
a patient session.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import (
    Client,
    CurrentUser,
    DbSession,
    load_authorized_patient,
    require_permissions,
)
from app.consent.jurisdiction import get_active_policy
from app.core.config import settings
from app.core.errors import InvalidJurisdictionTextError, VerbalConsentError
from app.models.consent import ConsentToken
from app.models.messaging import MessageStatus
from app.schemas.audit_event import AuditEventRead
from app.schemas.consent import (
    ConsentEntry,
    ConsentRequestCreate,
    ConsentRequestResponse,
    ConsentStatusRequest,
    ConsentStatusResponse,
    ConsentTextRead,
    RecordingGateRead,
    VerbalConsentCreate,
    WithdrawConsentCreate,
)
from app.services.audit import AuditService
from app.services.consent import (
    ConsentService,
    MissingContactError,
    NothingToWithdrawError,
    build_consent_url,
)
from app.services.consent_tokens import ClinicianRequiredError, TokenClinicianMismatchError
from app.services.rbac import Permission

router = APIRouter(prefix="/consent", tags=["consent"])


@router.post(
    "/status",
    response_model=ConsentStatusResponse,
    dependencies=[Depends(require_permissions(Permission.CONSENT_READ))],
)
async def get_consent_status(
    body: ConsentStatusRequest,
    user: CurrentUser,
    session: DbSession,
) -> ConsentStatusResponse:
    """Check whether a patient currently has valid consent.

    This is the endpoint polled by clinician clients while waiting for a
    patient to respond to a consent link.
    """
    patient = await load_authorized_patient(session, user, body.patient_id)
    return await ConsentService(session).check_status(patient.id)


@router.get(
    "/text",
    response_model=ConsentTextRead,
    dependencies=[Depends(require_permissions(Permission.CONSENT_READ))],
)
async def get_consent_text(
    user: CurrentUser,
    session: DbSession,
    language: str | None = None,
) -> ConsentTextRead:
    """Get the consent text to read aloud or present.

    In a strict jurisdiction the requested language is ignored.
    """
    policy = get_active_policy()
    text = ConsentService(session, policy=policy).current_text(language)
    return ConsentTextRead(
        jurisdiction=policy.code,
        strict=policy.strict,
        text_version=text.text_version,
        language=text.language,
        title=text.title,
        body=text.body,
    )


@router.post(
    "/requests",
    response_model=ConsentRequestResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.CONSENT_REQUEST))],
)
async def request_consent(
    body: ConsentRequestCreate,
    user: CurrentUser,
    session: DbSession,
    client: Client,
) -> ConsentRequestResponse:
    """Issue a consent token and send the consent link to the patient."""
    patient = await load_authorized_patient(session, user, body.patient_id)

    try:
        token, message = await ConsentService(session).request_consent(
            patient,
            user,
            channel=body.channel,
            session_id=body.session_id,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
    except ClinicianRequiredError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except MissingContactError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return ConsentRequestResponse(
        token_id=token.id,
        patient_id=patient.id,
        expires_at=token.expires_at,
        channel=body.channel,
        delivery_status="sent" if message.status == MessageStatus.SENT else "failed",
        consent_url=build_consent_url(token.token) if settings.is_dev else None,
    )


@router.post(
    "/verbal",
    response_model=ConsentEntry,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.CONSENT_RECORD))],
)
async def record_verbal_consent(
    body: VerbalConsentCreate,
    user: CurrentUser,
    session: DbSession,
    client: Client,
):
    """Record a verbal consent decision after reading the text aloud."""
    patient = await load_authorized_patient(session, user, body.patient_id)

    try:
        return await ConsentService(session).record_verbal(
            patient,
            user,
            text_read_aloud=body.text_read_aloud,
            decision=body.decision,
            decline_reasons=body.decline_reasons,
            decline_notes=body.decline_notes,
            witness_statement=body.witness_statement,
            text_version=body.text_version,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
    except (VerbalConsentError, InvalidJurisdictionTextError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.post(
    "/tokens/{token_id}/authorize",
    response_model=ConsentEntry,
    dependencies=[Depends(require_permissions(Permission.CONSENT_RECORD))],
)
async def authorize_consent_token(
    token_id: str,
    user: CurrentUser,
    session: DbSession,
):
    """Record an in-person grant against the clinician's own pending token.

    Token failures return the same typed errors as the patient portal.
    """
    token = await session.get(ConsentToken, token_id)
    if token is not None:
        await load_authorized_patient(session, user, token.patient_id)

    service = ConsentService(session)
    try:
        return await service.tokens.authorize(token_id, user)
    except TokenClinicianMismatchError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token was issued by another clinician",
        )


@router.post(
    "/withdraw",
    response_model=ConsentEntry,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.CONSENT_WITHDRAW))],
)
async def withdraw_consent(
    body: WithdrawConsentCreate,
    user: CurrentUser,
    session: DbSession,
    client: Client,
):
    """Withdraw a patient's current consent."""
    patient = await load_authorized_patient(session, user, body.patient_id)

    try:
        return await ConsentService(session).withdraw(
            patient,
            user,
            method=body.method,
            reason=body.reason,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
    except NothingToWithdrawError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get(
    "/patients/{patient_id}/history",
    response_model=list[ConsentEntry],
    dependencies=[Depends(require_permissions(Permission.CONSENT_READ))],
)
async def get_consent_history(
    patient_id: str,
    user: CurrentUser,
    session: DbSession,
):
    """Get the patient's full consent ledger, oldest first."""
    patient = await load_authorized_patient(session, user, patient_id)
    return await ConsentService(session).history(patient.id)


@router.get(
    "/patients/{patient_id}/audit",
    response_model=list[AuditEventRead],
    dependencies=[Depends(require_permissions(Permission.AUDIT_READ))],
)
async def get_consent_audit_trail(
    patient_id: str,
    user: CurrentUser,
    session: DbSession,
    limit: int = 500,
) -> list[AuditEventRead]:
    """Get the patient's audit timeline, oldest first."""
    patient = await load_authorized_patient(session, user, patient_id)
    events = await AuditService(session).get_patient_timeline(patient.id, limit=min(limit, 500))
    return [AuditEventRead.model_validate(e) for e in events]


@router.get(
    "/patients/{patient_id}/recording-gate",
    response_model=RecordingGateRead,
    dependencies=[Depends(require_permissions(Permission.CONSENT_READ))],
)
async def get_recording_gate(
    patient_id: str,
    user: CurrentUser,
    session: DbSession,
) -> RecordingGateRead:
    """Check whether an AI-assisted recording may start for the patient."""
    patient = await load_authorized_patient(session, user, patient_id)
    service = ConsentService(session)
    consent_status = await service.check_status(patient.id)
    return RecordingGateRead(
        patient_id=patient.id,
        allowed=await service.recording_allowed(patient.id),
        status=consent_status.status,
    )
