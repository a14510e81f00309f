"""Staff authentication endpoints."""

from fastapi import APIRouter, HTTPException, status

from app.api.deps import Client, DbSession
from app.core.config import settings
from app.models.audit_event import ActorType
from app.schemas.auth import StaffLoginRequest, TokenResponse
from app.services.audit import write_audit_event
from app.services.auth import AuthService, StaffAuthenticationError

router = APIRouter()


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Staff login",
    description="Authenticate a clinician or other staff member with email and password",
)
async def staff_login(
    credentials: StaffLoginRequest,
    session: DbSession,
    client: Client,
) -> TokenResponse:
    """Exchange staff credentials for the bearer token used while polling consent.

    Every refusal gets the same 401 body; the reason is only audited.
    """
    auth_service = AuthService(session)
    try:
        user = await auth_service.authenticate_staff(credentials.email, credentials.password)
    except StaffAuthenticationError as e:
        await write_audit_event(
            session=session,
            actor_type=ActorType.SYSTEM,
            actor_id=None,
            action="login_failed",
            action_category="auth",
            entity_type="user",
            entity_id=None,
            metadata={"email": credentials.email, "reason": e.reason.value},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            request_id=client.request_id,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    await write_audit_event(
        session=session,
        actor_type=ActorType.STAFF,
        actor_id=user.id,
        actor_email=user.email,
        action="login_success",
        action_category="auth",
        entity_type="user",
        entity_id=user.id,
        metadata={"role": user.role.value if hasattr(user.role, "value") else user.role},
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        request_id=client.request_id,
    )

    return TokenResponse(
        access_token=auth_service.create_staff_token(user),
        token_type="bearer",
        expires_in=settings.access_token_expire_minutes * 60,
    )
