"""Startup checks and development bootstrap for the consent database."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.consent.jurisdiction import JurisdictionPolicy, get_active_policy
from app.consent.texts import ConsentTextRegistry, consent_text_registry
from app.core.config import settings
from app.core.security import hash_password
from app.db.base import Base
from app.db.session import engine
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)


class ConsentConfigurationError(RuntimeError):
    """Raised when the configured jurisdiction cannot be served."""


def check_consent_configuration(
    policy: JurisdictionPolicy | None = None,
    version: str | None = None,
    registry: ConsentTextRegistry = consent_text_registry,
) -> JurisdictionPolicy:
    """Verify a published text exists for every language the jurisdiction allows.

    Raises:
        UnknownJurisdictionError: If the jurisdiction code is not configured
        ConsentConfigurationError: If a permitted language has no text
    """
    policy = policy or get_active_policy()
    version = version or settings.consent_text_version

    missing = sorted(
        language
        for language in policy.allowed_languages
        if registry.get(version, language) is None
    )
    if missing:
        raise ConsentConfigurationError(
            f"No consent text {version} for {', '.join(missing)} in {policy.code}"
        )
    return policy


async def create_tables() -> None:
    """Create all tables without migrations. Development only."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def ensure_admin(
    session: AsyncSession,
    email: str | None,
    password: str | None,
) -> User | None:
    """Create the first admin account if no admin exists yet.

    Returns:
        The created admin, or None if one existed or no credentials are set
    """
    existing = await session.scalar(select(User.id).where(User.role == UserRole.ADMIN).limit(1))
    if existing:
        return None
    if not email or not password:
        logger.warning("No admin account exists and INITIAL_ADMIN_EMAIL/PASSWORD are not set")
        return None

    admin = User(
        email=email.lower(),
        hashed_password=hash_password(password),
        role=UserRole.ADMIN,
        first_name="System",
        last_name="Admin",
        is_active=True,
    )
    session.add(admin)
    await session.commit()
    await session.refresh(admin)
    logger.info("Created initial admin account", extra={"user_id": admin.id})
    return admin


async def init_db(session: AsyncSession) -> None:
    """Bootstrap a development database."""
    await create_tables()
    await ensure_admin(session, settings.initial_admin_email, settings.initial_admin_password)
    logger.info("Database initialization complete")
