"""Care-team relationships that scope access to patient consent data."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.patient import CareTeamMember, Patient
from app.models.user import User


class PatientNotFoundError(Exception):
    """Raised when a patient does not exist or is inactive."""

    pass


class PatientAccessDeniedError(Exception):
    """Raised when a user is outside the patient's care team."""

    pass


class CareTeamService:
    """Checks and maintains staff-patient relationships."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def is_member(self, user_id: str, patient_id: str) -> bool:
        """Check whether a user belongs to a patient's care team."""
        result = await self.session.execute(
            select(CareTeamMember.id)
            .where(CareTeamMember.patient_id == patient_id)
            .where(CareTeamMember.user_id == user_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_patient_for(self, user: User, patient_id: str) -> Patient:
        """Load a patient the user is authorized to act on.

        Raises:
            PatientNotFoundError: If the patient does not exist
            PatientAccessDeniedError: If the user is not on the care team
        """
        patient = await self.session.get(Patient, patient_id)
        if patient is None or not patient.is_active:
            raise PatientNotFoundError(patient_id)
        if not await self.is_member(user.id, patient_id):
            raise PatientAccessDeniedError(patient_id)
        return patient

    async def add_member(self, patient_id: str, user_id: str) -> CareTeamMember:
        """Link a user to a patient. Existing links are returned unchanged."""
        result = await self.session.execute(
            select(CareTeamMember)
            .where(CareTeamMember.patient_id == patient_id)
            .where(CareTeamMember.user_id == user_id)
        )
        member = result.scalar_one_or_none()
        if member is not None:
            return member

        member = CareTeamMember(patient_id=patient_id, user_id=user_id)
        self.session.add(member)
        await self.session.commit()
        await self.session.refresh(member)
        return member
