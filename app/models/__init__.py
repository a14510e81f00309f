"""Database models for the consent service."""

from app.models.audit_event import ActorType, AuditEvent
from app.models.consent import (
    ConsentMethod,
    ConsentRecord,
    ConsentRecordKind,
    ConsentScope,
    ConsentStatus,
    ConsentToken,
    DeclineReason,
    RecordSource,
)
from app.models.messaging import Message, MessageChannel, MessageStatus
from app.models.patient import CareTeamMember, Patient
from app.models.user import User, UserRole

__all__ = [
    "ActorType",
    "AuditEvent",
    "CareTeamMember",
    "ConsentMethod",
    "ConsentRecord",
    "ConsentRecordKind",
    "ConsentScope",
    "ConsentStatus",
    "ConsentToken",
    "DeclineReason",
    "Message",
    "MessageChannel",
    "MessageStatus",
    "Patient",
    "RecordSource",
    "User",
    "UserRole",
]
