"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from app.models.api import RejectionKind


class FormsError(Exception):
    """Base exception for all form backend errors."""

    pass


class FormNotFoundError(FormsError):
    """Raised when a submission targets an unknown form."""

    def __init__(self, form_id: int) -> None:
        self.form_id = form_id
        super().__init__(f"Form not found: {form_id}")


class SubmissionRejectedError(FormsError):
    """Raised when the admission pipeline rejects a submission."""

    def __init__(self, kind: RejectionKind, detail: str | None = None) -> None:
        self.kind = kind
        self.detail = detail
        message = f"Submission rejected: {kind.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class CorruptSchemaError(FormsError):
    """Raised when a stored field schema is not a well-formed field list."""

    def __init__(self, version_id: int, reason: str) -> None:
        self.version_id = version_id
        self.reason = reason
        super().__init__(f"Form version {version_id} has a corrupted schema: {reason}")


class DuplicateFieldIdsError(FormsError):
    """Raised when a schema edit declares the same field id twice."""

    def __init__(self, field_ids: list[str]) -> None:
        self.field_ids = field_ids
        super().__init__(f"Duplicate field ids: {', '.join(field_ids)}")


class ResourceNotFoundError(FormsError):
    """Raised when a tenant-owned resource doesn't exist."""

    def __init__(self, resource: str, resource_id: int | str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class OwnershipError(FormsError):
    """Raised when a user touches a resource owned by another user."""

    def __init__(self, resource: str, resource_id: int | str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"Not allowed to access {resource} {resource_id}")


class AuthenticationError(FormsError):
    """Raised when a dashboard session token is missing, unknown or expired."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class RequestTooLargeError(FormsError):
    """Raised when a submission body exceeds the configured size limit."""

    def __init__(self, limit_bytes: int) -> None:
        self.limit_bytes = limit_bytes
        super().__init__(f"Request body exceeds {limit_bytes} bytes")


class WriteVerificationError(FormsError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class ConcurrencyError(FormsError):
    """Raised when a concurrent modification survives the retry."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")

