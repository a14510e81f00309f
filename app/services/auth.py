"""Staff authentication."""

from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import create_access_token, hash_password, verify_password
from app.models.user import User

# Verified against when the email is unknown so both paths cost one bcrypt check
_DUMMY_HASH = hash_password("consent-service-unknown-user")


class LoginFailure(str, Enum):
    """Why a login attempt was refused. Recorded on the audit event only."""

    UNKNOWN_EMAIL = "unknown_email"
    INACTIVE = "inactive"
    BAD_PASSWORD = "bad_password"


class StaffAuthenticationError(Exception):
    """Raised when staff credentials are refused."""

    def __init__(self, reason: LoginFailure) -> None:
        super().__init__(reason.value)
        self.reason = reason


class AuthService:
    """Authenticates staff and mints their bearer tokens."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def authenticate_staff(self, email: str, password: str) -> User:
        """Check staff credentials.

        Args:
            email: Staff email address, matched case-insensitively
            password: Plain text password

        Returns:
            The authenticated user

        Raises:
            StaffAuthenticationError: With the refusal reason
        """
        user = await self.session.scalar(select(User).where(User.email == email.lower()))

        if user is None:
            verify_password(password, _DUMMY_HASH)
            raise StaffAuthenticationError(LoginFailure.UNKNOWN_EMAIL)
        if not verify_password(password, user.hashed_password):
            raise StaffAuthenticationError(LoginFailure.BAD_PASSWORD)
        if not user.is_active:
            raise StaffAuthenticationError(LoginFailure.INACTIVE)
        return user

    def create_staff_token(self, user: User) -> str:
        """Mint the bearer token clinicians present to the consent endpoints."""
        return create_access_token(
            subject=user.id,
            additional_claims={
                "role": user.role.value if hasattr(user.role, "value") else user.role,
                "actor_type": "staff",
                "email": user.email,
            },
        )

    async def get_staff_by_id(self, user_id: str) -> User | None:
        return await self.session.get(User, user_id)
