"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from app.api.v1 import audit, auth_staff, consent, health, patients, portal

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Authentication
api_router.include_router(
    auth_staff.router,
    prefix="/auth/staff",
    tags=["auth-staff"],
)

# Patients and care teams
api_router.include_router(patients.router)

# Clinician consent workflow
api_router.include_router(consent.router)

# Public consent portal (token-authenticated)
api_router.include_router(portal.router)

# Audit
api_router.include_router(
    audit.router,
    prefix="/audit",
    tags=["audit"],
)
