"""Tests for startup checks and admin bootstrap."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.consent.jurisdiction import UnknownJurisdictionError, get_jurisdiction_policy
from app.consent.texts import ConsentText, ConsentTextRegistry
from app.db.init_db import ConsentConfigurationError, check_consent_configuration, ensure_admin
from app.models.user import User, UserRole


class TestConsentConfigurationCheck:
    """Tests for check_consent_configuration."""

    def test_published_texts_cover_every_jurisdiction(self) -> None:
        for code in ("CA-QC", "CA-ON", "CA-BC", "CA-AB"):
            policy = check_consent_configuration(get_jurisdiction_policy(code), "1.0.0")
            assert policy.code == code

    def test_missing_language_fails(self) -> None:
        registry = ConsentTextRegistry(
            [ConsentText(version="2.0.0", language="en-CA", title="t", body="b")]
        )

        with pytest.raises(ConsentConfigurationError, match="fr-CA"):
            check_consent_configuration(get_jurisdiction_policy("CA-ON"), "2.0.0", registry)

    def test_strict_jurisdiction_needs_only_its_language(self) -> None:
        registry = ConsentTextRegistry(
            [ConsentText(version="2.0.0", language="fr-CA", title="t", body="b")]
        )

        policy = check_consent_configuration(get_jurisdiction_policy("CA-QC"), "2.0.0", registry)

        assert policy.strict is True

    def test_unknown_jurisdiction_fails(self) -> None:
        with pytest.raises(UnknownJurisdictionError):
            get_jurisdiction_policy("US-CA")


class TestEnsureAdmin:
    """Tests for ensure_admin."""

    @pytest.mark.asyncio
    async def test_creates_admin_when_none_exists(self, async_session: AsyncSession) -> None:
        admin = await ensure_admin(async_session, "Ops@Clinic.local", "s3cret-pass")

        assert admin is not None
        assert admin.email == "ops@clinic.local"
        assert admin.role == UserRole.ADMIN

    @pytest.mark.asyncio
    async def test_skips_when_admin_exists(
        self, async_session: AsyncSession, admin_user: User
    ) -> None:
        created = await ensure_admin(async_session, "ops@clinic.local", "s3cret-pass")

        assert created is None
        count = await async_session.scalar(select(func.count()).select_from(User))
        assert count == 1

    @pytest.mark.asyncio
    async def test_skips_without_credentials(self, async_session: AsyncSession) -> None:
        assert await ensure_admin(async_session, None, None) is None
