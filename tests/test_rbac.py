"""Tests for RBAC (Role-Based Access Control)."""

import httpx
import pytest

from app.core.security import create_access_token
from app.middleware.rbac import get_required_permissions
from app.models.patient import Patient
from app.models.user import User, UserRole
from app.services.rbac import Permission, RBACService


def _readonly_headers() -> dict[str, str]:
    token = create_access_token(
        subject="readonly-user-id",
        additional_claims={
            "role": UserRole.READONLY.value,
            "actor_type": "staff",
            "email": "readonly@test.local",
        },
    )
    return {"Authorization": f"Bearer {token}"}


class TestRBACService:
    """Tests for RBACService class."""

    def test_admin_has_administrative_permissions(self) -> None:
        """Admins manage care teams and audit but do not capture consent."""
        permissions = RBACService.get_permissions(UserRole.ADMIN)

        assert Permission.ADMIN_ALL in permissions
        assert Permission.AUDIT_READ in permissions
        assert Permission.CARE_TEAM_WRITE in permissions
        assert Permission.CONSENT_RECORD not in permissions
        assert Permission.CONSENT_REQUEST not in permissions

    def test_clinician_has_consent_permissions(self) -> None:
        permissions = RBACService.get_permissions(UserRole.CLINICIAN)

        assert Permission.CONSENT_READ in permissions
        assert Permission.CONSENT_REQUEST in permissions
        assert Permission.CONSENT_RECORD in permissions
        assert Permission.CONSENT_WITHDRAW in permissions
        assert Permission.ADMIN_ALL not in permissions
        assert Permission.CARE_TEAM_WRITE not in permissions

    def test_receptionist_reads_but_never_captures(self) -> None:
        permissions = RBACService.get_permissions(UserRole.RECEPTIONIST)

        assert Permission.CONSENT_READ in permissions
        assert Permission.CONSENT_RECORD not in permissions
        assert Permission.CONSENT_REQUEST not in permissions

    def test_readonly_has_limited_permissions(self) -> None:
        permissions = RBACService.get_permissions(UserRole.READONLY)

        assert permissions == {Permission.PATIENTS_READ, Permission.CONSENT_READ}

    def test_role_strings_are_accepted(self) -> None:
        """Roles read back from the database are plain strings."""
        assert RBACService.has_permission("clinician", Permission.CONSENT_RECORD) is True
        assert RBACService.get_permissions("not-a-role") == set()

    def test_has_any_permission_with_one_matching(self) -> None:
        result = RBACService.has_any_permission(
            UserRole.CLINICIAN,
            [Permission.ADMIN_ALL, Permission.CONSENT_READ],
        )
        assert result is True

    def test_has_all_permissions_requires_every_permission(self) -> None:
        result = RBACService.has_all_permissions(
            UserRole.CLINICIAN,
            [Permission.AUDIT_READ, Permission.ADMIN_ALL],
        )
        assert result is False


class TestEndpointPermissionMapping:
    """Tests for the middleware's path matching."""

    def test_exact_path(self) -> None:
        assert get_required_permissions("POST", "/api/v1/consent/status") == [
            Permission.CONSENT_READ
        ]

    def test_placeholder_path(self) -> None:
        perms = get_required_permissions("GET", "/api/v1/consent/patients/abc-123/history")

        assert perms == [Permission.CONSENT_READ]

    def test_method_must_match(self) -> None:
        assert get_required_permissions("DELETE", "/api/v1/consent/status") is None

    def test_unmapped_path(self) -> None:
        assert get_required_permissions("GET", "/api/v1/unknown") is None


class TestRBACEndpoints:
    """Tests for RBAC enforcement on API endpoints."""

    @pytest.mark.asyncio
    async def test_readonly_user_cannot_record_verbal_consent(
        self, client: httpx.AsyncClient, patient: Patient
    ) -> None:
        response = await client.post(
            "/api/v1/consent/verbal",
            json={"patient_id": patient.id, "text_read_aloud": True, "decision": "granted"},
            headers=_readonly_headers(),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_can_access_audit_logs(
        self, client: httpx.AsyncClient, admin_user: User, staff_headers
    ) -> None:
        response = await client.get("/api/v1/audit/events", headers=staff_headers(admin_user))

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_clinician_cannot_list_all_audit_events(
        self, client: httpx.AsyncClient, clinician: User, staff_headers
    ) -> None:
        response = await client.get("/api/v1/audit/events", headers=staff_headers(clinician))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_readonly_cannot_access_audit_logs(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/audit/events", headers=_readonly_headers())

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unauthenticated_request_returns_401(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/consent/patients/abc/history")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token_returns_401(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/api/v1/consent/patients/abc/history",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_patient_token_cannot_access_staff_endpoints(
        self, client: httpx.AsyncClient
    ) -> None:
        token = create_access_token(
            subject="patient-1",
            additional_claims={"actor_type": "patient"},
        )

        response = await client.get(
            "/api/v1/consent/patients/patient-1/recording-gate",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_portal_is_public(self, client: httpx.AsyncClient) -> None:
        """The portal is authenticated by the consent token, not a bearer token."""
        response = await client.get("/api/v1/portal/consent/unknown-token-value")

        assert response.status_code == 404
        assert response.json()["error"] == "INVALID_TOKEN"
