from app.domain.models import (
    ACTIVE_STATUSES,
    CancellationResult,
    EventSnapshot,
    EventSummary,
    Registration,
    RegistrationResult,
    RegistrationStatus,
)

__all__ = [
    "ACTIVE_STATUSES",
    "CancellationResult",
    "EventSnapshot",
    "EventSummary",
    "Registration",
    "RegistrationResult",
    "RegistrationStatus",
]
