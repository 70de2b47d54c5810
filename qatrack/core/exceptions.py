"""
Application-wide exception hierarchy.

Services raise these; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from qatrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Bug", resource_id=42)
    raise ValidationError("title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "TestCase").
        resource_id: The PK that was looked up.
        message: Optional user-facing text replacing the generated one.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        if message is None:
            message = f"{resource}"
            if resource_id is not None:
                message += f" id={resource_id}"
            message += " not found"
        super().__init__(message)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a duplicate or a stale write (optimistic-lock mismatch).

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value=None, message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class PermissionDeniedError(Exception):
    """Raised when the caller lacks the role required for an operation.

    Maps to HTTP 403.
    """

    def __init__(self, message: str = "You do not have permission to perform this action") -> None:
        super().__init__(message)
