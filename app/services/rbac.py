"""Role-Based Access Control (RBAC) service.

Implements least-privilege access to consent data. Permissions gate what
a role may do; the care-team relationship separately gates which
patients a user may do it for.
"""

from enum import Enum

from app.models.user import UserRole


class Permission(str, Enum):
    """Available permissions in the system."""

    # Patient management
    PATIENTS_READ = "patients:read"
    PATIENTS_WRITE = "patients:write"
    CARE_TEAM_WRITE = "care_team:write"  # Admin-only: link staff to patients

    # Consent lifecycle
    CONSENT_READ = "consent:read"
    CONSENT_REQUEST = "consent:request"  # Issue consent tokens / send links
    CONSENT_RECORD = "consent:record"  # Record verbal consent, authorize tokens
    CONSENT_WITHDRAW = "consent:withdraw"

    # Audit access
    AUDIT_READ = "audit:read"

    # System administration
    ADMIN_ALL = "admin:all"


# Role to permissions mapping
ROLE_PERMISSIONS: dict[UserRole, set[Permission]] = {
    UserRole.ADMIN: {
        Permission.PATIENTS_READ,
        Permission.PATIENTS_WRITE,
        Permission.CARE_TEAM_WRITE,
        Permission.CONSENT_READ,
        Permission.AUDIT_READ,
        Permission.ADMIN_ALL,
    },
    UserRole.CLINICIAN: {
        Permission.PATIENTS_READ,
        Permission.PATIENTS_WRITE,
        Permission.CONSENT_READ,
        Permission.CONSENT_REQUEST,
        Permission.CONSENT_RECORD,
        Permission.CONSENT_WITHDRAW,
        Permission.AUDIT_READ,
    },
    UserRole.RECEPTIONIST: {
        # NOTE: Receptionists can see consent state but never capture it
        Permission.PATIENTS_READ,
        Permission.PATIENTS_WRITE,
        Permission.CONSENT_READ,
    },
    UserRole.READONLY: {
        Permission.PATIENTS_READ,
        Permission.CONSENT_READ,
    },
}


def _permissions_for(role: UserRole | str) -> set[Permission]:
    # Roles read back from the database are plain strings
    try:
        return ROLE_PERMISSIONS.get(UserRole(role), set())
    except ValueError:
        return set()


class RBACService:
    """Service for checking role-based permissions."""

    @staticmethod
    def get_permissions(role: UserRole) -> set[Permission]:
        """Get all permissions for a role."""
        return _permissions_for(role)

    @staticmethod
    def has_permission(role: UserRole, permission: Permission) -> bool:
        """Check if a role has a specific permission.

        Args:
            role: User role to check
            permission: Permission to verify

        Returns:
            True if role has permission
        """
        permissions = _permissions_for(role)
        return permission in permissions

    @staticmethod
    def has_any_permission(role: UserRole, permissions: list[Permission]) -> bool:
        """Check if a role has any of the specified permissions."""
        role_permissions = _permissions_for(role)
        return any(p in role_permissions for p in permissions)

    @staticmethod
    def has_all_permissions(role: UserRole, permissions: list[Permission]) -> bool:
        """Check if a role has all specified permissions.

        Args:
            role: User role to check
            permissions: List of permissions (all must match)

        Returns:
            True if role has all permissions
        """
        role_permissions = _permissions_for(role)
        return all(p in role_permissions for p in permissions)
