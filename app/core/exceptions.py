"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class EventHubException(Exception):
    """Base exception for EventHub application"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(EventHubException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class AuthorizationError(EventHubException):
    """Authorization related errors"""

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(EventHubException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None, code: str = "NOT_FOUND"):
        message = f"{resource} not found"
        details = {}
        if identifier:
            message = f"{resource} with id {identifier} not found"
            details = {"id": str(identifier)}
        super().__init__(
            message=message,
            code=code,
            status_code=404,
            details=details
        )


class EventNotFoundError(NotFoundError):
    """Event does not exist"""

    def __init__(self, event_id: Any):
        super().__init__("Event", event_id, code="EVENT_NOT_FOUND")
        self.event_id = event_id


class RegistrationNotFoundError(NotFoundError):
    """No active registration for the (event, user) pair"""

    def __init__(self, event_id: Any, user_id: Any):
        EventHubException.__init__(
            self,
            message="No active registration found for this event",
            code="REGISTRATION_NOT_FOUND",
            status_code=404,
            details={"event_id": str(event_id), "user_id": str(user_id)}
        )


class ValidationError(EventHubException):
    """Validation errors"""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=400,
            details=details
        )


class DeadlinePassedError(ValidationError):
    """Registration deadline is in the past"""

    def __init__(self, event_id: Any, deadline: Any):
        super().__init__(
            message="Registration deadline has passed",
            code="DEADLINE_PASSED",
            details={"event_id": str(event_id), "registration_deadline": str(deadline)}
        )


class ConflictError(EventHubException):
    """Resource conflict errors"""

    def __init__(self, message: str, code: str = "CONFLICT", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=409,
            details=details
        )


class DuplicateRegistrationError(ConflictError):
    """User already holds an active registration for the event"""

    def __init__(self, event_id: Any, user_id: Any, registration_id: Any = None):
        details = {"event_id": str(event_id), "user_id": str(user_id)}
        if registration_id:
            details["registration_id"] = str(registration_id)
        super().__init__(
            message="Already registered for this event",
            code="DUPLICATE_REGISTRATION",
            details=details
        )


class ConcurrencyConflictError(ConflictError):
    """Write conflict persisted after the internal retry"""

    def __init__(self, message: str = "Registration was modified by another request, please retry"):
        super().__init__(
            message=message,
            code="CONCURRENCY_CONFLICT"
        )


class InvalidTransitionError(EventHubException):
    """Illegal registration status transition"""

    def __init__(self, current: Any, target: Any):
        super().__init__(
            message=f"Cannot transition registration from {current} to {target}",
            code="INVALID_TRANSITION",
            status_code=500,
            details={"from": str(current), "to": str(target)}
        )


class ExternalServiceError(EventHubException):
    """External service error"""

    def __init__(self, service: str, message: str = None, code: str = "EXTERNAL_SERVICE_ERROR"):
        super().__init__(
            message=message or f"External service {service} is unavailable",
            code=code,
            status_code=503,
            details={"service": service}
        )


class TicketIssuanceError(ExternalServiceError):
    """Ticket could not be produced; the enclosing registration is rolled back"""

    def __init__(self, registration_id: Any):
        super().__init__(
            service="ticket_issuer",
            message="Ticket could not be issued",
            code="TICKET_ISSUANCE_FAILED"
        )
        self.details["registration_id"] = str(registration_id)


class WriteConflictError(Exception):
    """
    Transient unit-of-work failure (serialization failure, deadlock,
    lock timeout, unique-index race). Raised by stores, retried by services.
    """
