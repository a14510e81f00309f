"""Request dependencies shared by the API routers."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import decode_access_token
from app.db.session import get_db
from app.middleware.rate_limit import get_client_ip as _client_ip
from app.models.patient import Patient
from app.models.user import User
from app.services.auth import AuthService
from app.services.care_team import (
    CareTeamService,
    PatientAccessDeniedError,
    PatientNotFoundError,
)
from app.services.rbac import Permission, RBACService

security = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


@dataclass(frozen=True)
class ClientContext:
    """Where a request came from, as recorded on audit events."""

    ip_address: str | None
    user_agent: str | None
    request_id: str | None


def get_client_ip(request: Request) -> str | None:
    """Client address, or None when the transport does not expose one."""
    ip_address = _client_ip(request)
    return None if ip_address == "unknown" else ip_address


def get_request_id(request: Request) -> str | None:
    """Extract request ID from headers."""
    return request.headers.get("X-Request-ID")


def get_client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=get_request_id(request),
    )


Client = Annotated[ClientContext, Depends(get_client_context)]


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict | None:
    """Decode the bearer token, if any. Invalid tokens decode to None."""
    if not credentials:
        return None
    return decode_access_token(credentials.credentials)


async def get_current_user(
    token: Annotated[dict | None, Depends(get_current_token)],
    session: DbSession,
) -> User:
    """Resolve the authenticated staff member.

    Only staff access tokens are accepted; a token minted for any other
    actor type is refused with 403 so it can never act for a clinician.

    Raises:
        HTTPException: 401 without a usable token, 403 for non-staff or
            disabled accounts
    """
    if not token or token.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if token.get("actor_type") != "staff":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff authentication required",
        )

    user = await AuthService(session).get_staff_by_id(token["sub"])
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_permissions(*permissions: Permission):
    """Build a dependency that requires all of the given permissions.

    Usage:
        @router.post("/verbal", dependencies=[Depends(require_permissions(Permission.CONSENT_RECORD))])
    """

    async def permission_checker(user: CurrentUser) -> User:
        if not RBACService.has_all_permissions(user.role, list(permissions)):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return permission_checker


async def load_authorized_patient(session: AsyncSession, user: User, patient_id: str) -> Patient:
    """Load a patient through the user's care-team relationship.

    Raises:
        HTTPException: 404 for unknown or inactive patients, 403 when the
            user is not on the care team
    """
    try:
        return await CareTeamService(session).get_patient_for(user, patient_id)
    except PatientNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    except PatientAccessDeniedError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not on this patient's care team",
        )
