"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from app.api.v1.endpoints import registrations

api_router = APIRouter()

# Include all routers
api_router.include_router(registrations.router, prefix="/events", tags=["registrations"])
