"""Seed a development database with staff, patients and care-team links.

Run after ``alembic upgrade head``:

    python scripts/seed_dev_data.py

Accounts that already exist are left untouched. Generated passwords are
printed once.
"""

import asyncio
import secrets

from sqlalchemy import select

from app.core.security import hash_password
from app.db.session import AsyncSessionLocal
from app.models.patient import Patient
from app.models.user import User, UserRole
from app.services.care_team import CareTeamService

DEV_ACCOUNTS = [
    {"email": "admin@dev.clinic.local", "name": "Dev Admin", "role": UserRole.ADMIN},
    {"email": "clinician@dev.clinic.local", "name": "Dr Dev Clinician", "role": UserRole.CLINICIAN},
    {"email": "reception@dev.clinic.local", "name": "Dev Reception", "role": UserRole.RECEPTIONIST},
]

DEV_PATIENTS = [
    {
        "email": "patient.en@dev.clinic.local",
        "first_name": "Alex",
        "last_name": "Tremblay",
        "phone_e164": "+14165550101",
        "preferred_language": "en-CA",
    },
    {
        "email": "patient.fr@dev.clinic.local",
        "first_name": "Camille",
        "last_name": "Gagnon",
        "phone_e164": "+15145550102",
        "preferred_language": "fr-CA",
    },
]


def generate_temp_password() -> str:
    """Generate a temporary password for dev accounts."""
    return f"Dev{secrets.token_urlsafe(8)}!"


async def seed() -> list[dict]:
    """Create dev accounts and patients. Returns newly created accounts."""
    created: list[dict] = []

    async with AsyncSessionLocal() as session:
        users: dict[UserRole, User] = {}
        for account in DEV_ACCOUNTS:
            user = await session.scalar(select(User).where(User.email == account["email"]))
            if user is None:
                first_name, _, last_name = account["name"].partition(" ")
                password = generate_temp_password()
                user = User(
                    email=account["email"],
                    first_name=first_name,
                    last_name=last_name,
                    role=account["role"],
                    hashed_password=hash_password(password),
                    is_active=True,
                )
                session.add(user)
                created.append({"email": account["email"], "password": password})
            users[account["role"]] = user
        await session.commit()

        care_team = CareTeamService(session)
        for data in DEV_PATIENTS:
            patient = await session.scalar(select(Patient).where(Patient.email == data["email"]))
            if patient is None:
                patient = Patient(is_active=True, **data)
                session.add(patient)
                await session.commit()
            for role in (UserRole.CLINICIAN, UserRole.RECEPTIONIST):
                await care_team.add_member(patient.id, users[role].id)

    return created


def main() -> None:
    created = asyncio.run(seed())
    print("=" * 60)
    print("DEV ACCOUNTS")
    print("=" * 60)
    if not created:
        print("All accounts already exist.")
    for account in created:
        print(f"{account['email']}  password: {account['password']}")


if __name__ == "__main__":
    main()
