"""
Pydantic schemas for request and response validation
"""

from app.schemas.registration import (
    RegistrationResponse,
    CancellationResponse,
    AttendeeResponse,
    EventSummaryResponse
)
from app.schemas.response import (
    ErrorDetail,
    ErrorResponse,
    HealthResponse
)

__all__ = [
    "RegistrationResponse",
    "CancellationResponse",
    "AttendeeResponse",
    "EventSummaryResponse",
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse"
]
