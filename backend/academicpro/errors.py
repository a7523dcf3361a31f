"""Service-layer exceptions.

Services raise these instead of `HTTPException` so they stay usable
outside a request. Each class carries the HTTP status the API maps it
to; the message is shown to the caller as-is.
"""


class ServiceError(ValueError):
    status_code = 400


class BadInputError(ServiceError):
    """Missing or invalid field, or a request that breaks a group rule."""
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    """The entity exists but the caller lacks the required relationship."""
    status_code = 403


class ConflictError(ServiceError):
    """Uniqueness violation: email, course code, group name or member."""
    status_code = 409


class StaleWriteError(ConflictError):
    """A conditional group update matched no row at the expected version."""
