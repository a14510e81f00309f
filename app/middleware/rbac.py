"""RBAC Middleware for enforcing permissions on staff endpoints.

Endpoint dependencies enforce the same permissions; this layer rejects
unauthorized requests before a database session is opened.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.security import decode_access_token
from app.models.user import UserRole
from app.services.rbac import ROLE_PERMISSIONS, Permission

logger = logging.getLogger(__name__)


# Endpoint to required permissions mapping (any listed permission grants access)
ENDPOINT_PERMISSIONS: dict[tuple[str, str], list[Permission]] = {
    # Consent lifecycle
    ("POST", "/api/v1/consent/status"): [Permission.CONSENT_READ],
    ("GET", "/api/v1/consent/text"): [Permission.CONSENT_READ],
    ("POST", "/api/v1/consent/requests"): [Permission.CONSENT_REQUEST],
    ("POST", "/api/v1/consent/verbal"): [Permission.CONSENT_RECORD],
    ("POST", "/api/v1/consent/tokens/{token_id}/authorize"): [Permission.CONSENT_RECORD],
    ("POST", "/api/v1/consent/withdraw"): [Permission.CONSENT_WITHDRAW],
    ("GET", "/api/v1/consent/patients/{patient_id}/history"): [Permission.CONSENT_READ],
    ("GET", "/api/v1/consent/patients/{patient_id}/audit"): [Permission.AUDIT_READ],
    ("GET", "/api/v1/consent/patients/{patient_id}/recording-gate"): [Permission.CONSENT_READ],
    # Audit endpoints (admin only)
    ("GET", "/api/v1/audit/events"): [Permission.ADMIN_ALL],
    ("GET", "/api/v1/audit/events/{event_id}"): [Permission.ADMIN_ALL],
    # Patient management
    ("POST", "/api/v1/patients"): [Permission.PATIENTS_WRITE],
    ("GET", "/api/v1/patients/{patient_id}"): [Permission.PATIENTS_READ],
    ("POST", "/api/v1/patients/{patient_id}/care-team"): [Permission.CARE_TEAM_WRITE],
}

# Public endpoints that don't require authentication
PUBLIC_ENDPOINTS = {
    "/",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/v1/health",
    "/api/v1/health/ready",
    "/api/v1/auth/staff/login",
}

# Consent portal: authenticated by the consent token itself
PUBLIC_PREFIXES = ("/api/v1/portal/",)


def get_required_permissions(method: str, path: str) -> list[Permission] | None:
    """Get required permissions for an endpoint.

    Returns None if endpoint is public or not mapped.
    """
    key = (method, path)
    if key in ENDPOINT_PERMISSIONS:
        return ENDPOINT_PERMISSIONS[key]

    path_parts = path.rstrip("/").split("/")
    for (ep_method, ep_path), perms in ENDPOINT_PERMISSIONS.items():
        if ep_method != method:
            continue

        ep_parts = ep_path.split("/")
        if len(ep_parts) != len(path_parts):
            continue

        match = True
        for ep_part, path_part in zip(ep_parts, path_parts, strict=False):
            if ep_part.startswith("{") and ep_part.endswith("}"):
                continue  # Parameter placeholder matches anything
            if ep_part != path_part:
                match = False
                break

        if match:
            return perms

    return None


def _error(detail: str, status_code: int) -> Response:
    return Response(
        content=f'{{"detail":"{detail}"}}',
        status_code=status_code,
        media_type="application/json",
    )


class RBACMiddleware(BaseHTTPMiddleware):
    """Middleware for enforcing RBAC on staff endpoints."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        """Process request and enforce RBAC."""
        path = request.url.path
        method = request.method

        if path in PUBLIC_ENDPOINTS or path.startswith(PUBLIC_PREFIXES):
            return await call_next(request)

        required_perms = get_required_permissions(method, path)

        if required_perms is None:
            # No permission mapping - let endpoint handle auth
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return _error("Not authenticated", 401)

        payload = decode_access_token(auth_header.split(" ", 1)[1])
        if not payload:
            return _error("Invalid or expired token", 401)

        # Patient sessions can never reach clinician endpoints
        if payload.get("actor_type") != "staff":
            return _error("Staff authentication required", 403)

        role_str = payload.get("role")
        try:
            user_role = UserRole(role_str)
        except ValueError:
            return _error("Invalid role", 403)

        role_permissions = ROLE_PERMISSIONS.get(user_role, set())
        if not any(perm in role_permissions for perm in required_perms):
            logger.warning(
                f"Permission denied: role={role_str} "
                f"required={[p.value for p in required_perms]}",
                extra={"user_id": payload.get("sub")},
            )
            return _error("Insufficient permissions", 403)

        return await call_next(request)
