"""
Service-wide exception hierarchy.

Services raise these types; the app factory registers one Flask error
handler per type so every blueprint gets the same HTTP status codes and
JSON error shape.

Usage:
    from precast.core.exceptions import NotFoundError, PermissionDeniedError

    raise NotFoundError(resource="Activity", resource_id=42)
    raise PermissionDeniedError("User 7 cannot update activity 42")
"""


class PrecastError(Exception):
    """Base class. ``status_code`` and ``code`` drive the HTTP mapping."""

    status_code = 500
    code = "ERR_INTERNAL"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class UnauthorizedSessionError(PrecastError):
    """Missing, unknown or expired session token. Maps to HTTP 401."""

    status_code = 401
    code = "ERR_UNAUTHORIZED_SESSION"


class PermissionDeniedError(PrecastError):
    """Caller is authenticated but not eligible for the operation. Maps to HTTP 403."""

    status_code = 403
    code = "ERR_FORBIDDEN"


class NotFoundError(PrecastError):
    """Raised when a requested resource does not exist within the given scope.

    Args:
        resource: Human-readable model/entity name (e.g. "Activity", "ProjectStage").
        resource_id: The PK that was looked up. Included in logs and in the message.
    """

    status_code = 404
    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(PrecastError):
    """Input was well-formed JSON but violated a business rule. Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    status_code = 400
    code = "ERR_VALIDATION_INVALID"


class ConflictingStateError(PrecastError):
    """Write attempted on a terminal (completed) activity. Maps to HTTP 409."""

    status_code = 409
    code = "ERR_CONFLICT_STATE"


class ConfigurationError(PrecastError):
    """Stage topology is inconsistent (empty path, unknown or duplicate stage ids).

    Server-side invariant violation, maps to HTTP 500.
    """

    status_code = 500
    code = "ERR_CONFIGURATION"


class TransientError(PrecastError):
    """Deadlock, timeout or dropped connection. Callers may retry. Maps to HTTP 503."""

    status_code = 503
    code = "ERR_TRANSIENT"
