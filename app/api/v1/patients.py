"""Patient registration and care-team endpoints for staff.

Access to a patient is scoped by the care team: staff who register a
patient join its care team, and admins link further staff members.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import (
    Client,
    CurrentUser,
    DbSession,
    load_authorized_patient,
    require_permissions,
)
from app.models.audit_event import ActorType
from app.models.patient import Patient
from app.models.user import User
from app.schemas.patient import (
    CareTeamMemberCreate,
    CareTeamMemberRead,
    PatientCreate,
    PatientRead,
)
from app.services.audit import write_audit_event
from app.services.care_team import CareTeamService
from app.services.rbac import Permission, RBACService

router = APIRouter(prefix="/patients", tags=["patients"])


@router.post(
    "",
    response_model=PatientRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.PATIENTS_WRITE))],
)
async def create_patient(
    body: PatientCreate,
    user: CurrentUser,
    session: DbSession,
    client: Client,
) -> Patient:
    """Register a patient. The creating staff member joins the care team."""
    patient = Patient(**body.model_dump())
    session.add(patient)
    await session.commit()
    await session.refresh(patient)

    await CareTeamService(session).add_member(patient.id, user.id)

    await write_audit_event(
        session=session,
        actor_type=ActorType.STAFF,
        actor_id=user.id,
        actor_email=user.email,
        action="patient_created",
        action_category="patients",
        entity_type="patient",
        entity_id=patient.id,
        patient_id=patient.id,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )
    return patient


@router.get(
    "/{patient_id}",
    response_model=PatientRead,
    dependencies=[Depends(require_permissions(Permission.PATIENTS_READ))],
)
async def get_patient(
    patient_id: str,
    user: CurrentUser,
    session: DbSession,
) -> Patient:
    """Get a patient. Non-admin staff must be on the care team."""
    if RBACService.has_permission(user.role, Permission.ADMIN_ALL):
        patient = await session.get(Patient, patient_id)
        if patient is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
        return patient

    return await load_authorized_patient(session, user, patient_id)


@router.post(
    "/{patient_id}/care-team",
    response_model=CareTeamMemberRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.CARE_TEAM_WRITE))],
)
async def add_care_team_member(
    patient_id: str,
    body: CareTeamMemberCreate,
    user: CurrentUser,
    session: DbSession,
    client: Client,
) -> CareTeamMemberRead:
    """Link a staff member to a patient's care team."""
    patient = await session.get(Patient, patient_id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    member_user = await session.get(User, body.user_id)
    if member_user is None or not member_user.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    member = await CareTeamService(session).add_member(patient_id, body.user_id)

    await write_audit_event(
        session=session,
        actor_type=ActorType.STAFF,
        actor_id=user.id,
        actor_email=user.email,
        action="care_team_member_added",
        action_category="patients",
        entity_type="care_team_member",
        entity_id=member.id,
        patient_id=patient_id,
        metadata={"user_id": body.user_id},
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )
    return CareTeamMemberRead.model_validate(member)
