"""
API v1 router setup
Organized into: public (booking link), client (JWT) and dashboard (JWT + master profile)
"""
from fastapi import APIRouter

from masterbook.api.v1.public import masters
from masterbook.api.v1.client import bookings as client_bookings
from masterbook.api.v1.dashboard import (
    availability,
    bookings as dashboard_bookings,
    calendar,
    clients,
    profile,
    services,
    settings,
)

api_v1_router = APIRouter()

# ============================================================================
# PUBLIC ROUTES (booking creation needs a JWT, everything else is open)
# ============================================================================
api_v1_router.include_router(
    masters.router,
    prefix="/public",
    tags=["Public"]
)

# ============================================================================
# CLIENT ROUTES (JWT authentication required)
# ============================================================================
api_v1_router.include_router(
    client_bookings.router,
    prefix="/client",
    tags=["Client"]
)

# ============================================================================
# DASHBOARD ROUTES (JWT authentication + master profile required)
# ============================================================================
for module in (profile, services, availability, dashboard_bookings, clients, settings, calendar):
    api_v1_router.include_router(
        module.router,
        prefix="/dashboard",
        tags=["Dashboard"]
    )


@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """API information and the authentication each route group expects"""
    return {
        "version": "1.0",
        "authentication": {
            "public": "No authentication required (booking needs a JWT)",
            "client": "JWT Bearer token required",
            "dashboard": "JWT Bearer token + master profile required",
        }
    }
