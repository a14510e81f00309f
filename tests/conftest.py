"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("ENV", "test")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("CONSENT_JURISDICTION", "CA-ON")

from collections.abc import AsyncGenerator  # noqa: E402
from datetime import timedelta  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import StaticPool  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.core.security import create_access_token, generate_consent_token, hash_password  # noqa: E402
from app.db.base import Base, utc_now  # noqa: E402
from app.db.session import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.consent import ConsentToken  # noqa: E402
from app.models.patient import CareTeamMember, Patient  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402


# Use SQLite for testing (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture(scope="function")
async def client(async_session: AsyncSession) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create an HTTP client bound to the app with the test session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


async def _create_user(
    session: AsyncSession,
    email: str,
    role: UserRole,
    first_name: str,
    last_name: str,
) -> User:
    user = User(
        email=email,
        hashed_password=hash_password("testpassword123"),
        role=role,
        first_name=first_name,
        last_name=last_name,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
async def clinician(async_session: AsyncSession) -> User:
    """Create a clinician on the test patient's care team."""
    return await _create_user(
        async_session, "clinician@clinic.local", UserRole.CLINICIAN, "Dana", "Roy"
    )


@pytest.fixture
async def other_clinician(async_session: AsyncSession) -> User:
    """Create a clinician who is not on the test patient's care team."""
    return await _create_user(
        async_session, "other@clinic.local", UserRole.CLINICIAN, "Sam", "Lee"
    )


@pytest.fixture
async def receptionist(async_session: AsyncSession) -> User:
    """Create a receptionist."""
    return await _create_user(
        async_session, "reception@clinic.local", UserRole.RECEPTIONIST, "Robin", "Front"
    )


@pytest.fixture
async def admin_user(async_session: AsyncSession) -> User:
    """Create an admin."""
    return await _create_user(
        async_session, "admin@clinic.local", UserRole.ADMIN, "Admin", "User"
    )


@pytest.fixture
async def patient(async_session: AsyncSession, clinician: User) -> Patient:
    """Create a patient with the clinician on its care team."""
    patient = Patient(
        first_name="Alex",
        last_name="Tremblay",
        email="alex@example.com",
        phone_e164="+14165550101",
        preferred_language="en-CA",
        is_active=True,
    )
    async_session.add(patient)
    await async_session.commit()
    await async_session.refresh(patient)

    async_session.add(CareTeamMember(patient_id=patient.id, user_id=clinician.id))
    await async_session.commit()
    return patient


async def create_consent_token(
    session: AsyncSession,
    patient: Patient,
    clinician: User,
    expires_in: timedelta = timedelta(days=7),
    used: bool = False,
    text_version: str = "1.0.0-en-CA",
    jurisdiction: str = "CA-ON",
) -> ConsentToken:
    """Insert a consent token directly, bypassing issuance."""
    now = utc_now()
    token = ConsentToken(
        token=generate_consent_token(),
        patient_id=patient.id,
        patient_name=patient.full_name,
        patient_phone=patient.phone_e164,
        clinician_id=clinician.id,
        clinician_name=clinician.full_name,
        clinic_name="Test Clinic",
        jurisdiction=jurisdiction,
        text_version=text_version,
        expires_at=now + expires_in,
        used=used,
        used_at=now if used else None,
    )
    session.add(token)
    await session.commit()
    await session.refresh(token)
    return token


@pytest.fixture
async def pending_token(async_session: AsyncSession, patient: Patient, clinician: User) -> ConsentToken:
    """A valid, unused consent token."""
    return await create_consent_token(async_session, patient, clinician)


@pytest.fixture
async def expired_token(async_session: AsyncSession, patient: Patient, clinician: User) -> ConsentToken:
    """A consent token whose window has passed."""
    return await create_consent_token(
        async_session, patient, clinician, expires_in=timedelta(minutes=-1)
    )


def create_test_token(user: User) -> str:
    """Create a staff bearer token for a user."""
    return create_access_token(
        subject=user.id,
        additional_claims={
            "role": user.role.value if hasattr(user.role, "value") else user.role,
            "actor_type": "staff",
            "email": user.email,
        },
    )


def auth_headers(user: User) -> dict[str, str]:
    """Authorization headers for a staff user."""
    return {"Authorization": f"Bearer {create_test_token(user)}"}


@pytest.fixture
def staff_headers():
    """Build staff authorization headers for a user."""
    return auth_headers


@pytest.fixture
def make_consent_token(async_session: AsyncSession):
    """Factory inserting consent tokens with custom expiry or state."""

    async def _make(patient: Patient, clinician: User, **kwargs) -> ConsentToken:
        return await create_consent_token(async_session, patient, clinician, **kwargs)

    return _make
