"""Pydantic schemas for request/response validation."""

from app.schemas.audit_event import AuditEventFilter, AuditEventRead
from app.schemas.auth import StaffLoginRequest, TokenResponse
from app.schemas.consent import (
    ConsentDecisionRequest,
    ConsentDecisionResponse,
    ConsentEntry,
    ConsentErrorResponse,
    ConsentStatusRequest,
    ConsentStatusResponse,
)
from app.schemas.patient import PatientCreate, PatientRead

__all__ = [
    "StaffLoginRequest",
    "TokenResponse",
    "AuditEventFilter",
    "AuditEventRead",
    "ConsentDecisionRequest",
    "ConsentDecisionResponse",
    "ConsentEntry",
    "ConsentErrorResponse",
    "ConsentStatusRequest",
    "ConsentStatusResponse",
    "PatientCreate",
    "PatientRead",
]
