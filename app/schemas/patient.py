"""Pydantic schemas for patients and their care team."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.auth import LenientEmail


class PatientCreate(BaseModel):
    """Schema for registering a patient."""

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: LenientEmail | None = None
    phone_e164: str | None = Field(
        default=None,
        pattern=r"^\+[1-9]\d{6,14}$",
        description="Phone in E.164 format (+1...)",
    )
    preferred_language: str | None = Field(default=None, max_length=10)


class PatientRead(BaseModel):
    """Schema for reading a patient."""

    id: str
    first_name: str
    last_name: str
    email: str | None
    phone_e164: str | None
    preferred_language: str | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CareTeamMemberCreate(BaseModel):
    """Link a staff member to a patient."""

    user_id: str


class CareTeamMemberRead(BaseModel):
    """Care-team link."""

    id: str
    patient_id: str
    user_id: str
    created_at: datetime

    model_config = {"from_attributes": True}
