"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from app.api.v1 import audit, bookings, dispensations, health

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Session bookings and capacity
api_router.include_router(
    bookings.router,
    tags=["bookings"],
)

# Medication dispensing
api_router.include_router(
    dispensations.router,
    tags=["dispensations"],
)

# Activity log (read-only)
api_router.include_router(
    audit.router,
    prefix="/audit",
    tags=["audit"],
)
