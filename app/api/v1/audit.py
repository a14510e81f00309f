"""Audit event endpoints.

IMPORTANT: This module intentionally provides READ-ONLY access to audit events.
No endpoints exist for creating, updating, or deleting audit events through the API.
Audit events are created internally via the write_audit_event() service function.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import CurrentUser, DbSession, require_permissions
from app.schemas.audit_event import AuditEventFilter, AuditEventRead
from app.services.audit import AuditService
from app.services.rbac import Permission

router = APIRouter()


@router.get(
    "/events",
    response_model=list[AuditEventRead],
    status_code=status.HTTP_200_OK,
    summary="List audit events",
    description="Query audit events with optional filters (append-only, no modification endpoints)",
    dependencies=[Depends(require_permissions(Permission.AUDIT_READ, Permission.ADMIN_ALL))],
)
async def list_audit_events(
    session: DbSession,
    user: CurrentUser,
    entity_id: str | None = None,
    entity_type: str | None = None,
    actor_id: str | None = None,
    patient_id: str | None = None,
    action: str | None = None,
    action_category: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditEventRead]:
    """Query audit events across all patients.

    Restricted to admins; clinicians read a single patient's trail
    through the consent endpoints, scoped by care team.

    Args:
        session: Database session
        user: Current authenticated user
        entity_id: Filter by entity ID
        entity_type: Filter by entity type
        actor_id: Filter by actor ID
        patient_id: Filter by patient ID
        action: Filter by action
        action_category: Filter by action category
        limit: Maximum results (default 100, max 500)
        offset: Results to skip

    Returns:
        List of audit events matching filters
    """
    filters = AuditEventFilter(
        entity_id=entity_id,
        entity_type=entity_type,
        actor_id=actor_id,
        patient_id=patient_id,
        action=action,
        action_category=action_category,
        limit=min(limit, 500),  # Cap at 500
        offset=offset,
    )

    events = await AuditService(session).get_events(filters)
    return [AuditEventRead.model_validate(e) for e in events]


@router.get(
    "/events/{event_id}",
    response_model=AuditEventRead,
    status_code=status.HTTP_200_OK,
    summary="Get audit event",
    dependencies=[Depends(require_permissions(Permission.AUDIT_READ, Permission.ADMIN_ALL))],
)
async def get_audit_event(
    event_id: str,
    session: DbSession,
    user: CurrentUser,
) -> AuditEventRead:
    """Get a single audit event by ID."""
    event = await AuditService(session).get_event_by_id(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit event not found")
    return AuditEventRead.model_validate(event)


# NOTE: No POST, PUT, PATCH, or DELETE endpoints are provided.
# Audit events are append-only and created only through internal
# service calls, never through the API.
