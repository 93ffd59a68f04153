from fastapi import HTTPException, status


class TimeTrackingError(Exception):
    """Base class for errors that cross the service edge with a message for the user."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self):
        return self.message


class ValidationError(TimeTrackingError):
    """Malformed or missing identifiers. Never retried."""
    status_code = 400
    code = "validation_error"


class AuthorizationError(TimeTrackingError):
    """Project does not belong to the caller's company."""
    status_code = 403
    code = "authorization_error"


class ConflictError(TimeTrackingError):
    """The requested transition is not allowed from the entry's current state."""
    status_code = 400
    code = "conflict"


class NotFoundError(TimeTrackingError):
    """No open session for the user, project and day."""
    status_code = 404
    code = "not_found"


class NetworkError(TimeTrackingError):
    """Transport failure or server-side outage seen by the client. Retryable."""
    status_code = 503
    code = "network_error"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (ValidationError, AuthorizationError, ConflictError, NotFoundError, NetworkError)
}


def get_user_exception():
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    return credentials_exception


def get_company_exception():
    return ValidationError("Company ID is required for time tracking.")
