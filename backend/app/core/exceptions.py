"""
Unified base exception classes for all services.

Each service extends ServiceError with its own base (e.g. ZoneServiceError)
so that callers can catch a whole family or branch on ``code`` without
matching message strings.
"""


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    code = "service_error"

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class UpstreamUnavailable(ServiceError):
    """A store call timed out or lost its connection: the system could not decide."""

    code = "upstream_unavailable"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Upstream unavailable during '{operation}'", 503)


class ImmutableFieldError(ServiceError):
    """Attempt to change a field that is frozen after creation."""

    code = "immutable_field"

    def __init__(self, entity: str, field: str):
        self.entity = entity
        self.field = field
        super().__init__(f"{entity}.{field} cannot be changed after creation", 400)
