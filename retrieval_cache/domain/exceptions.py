"""Domain exceptions for the retrieval cache.

Only ValidationException and its subclasses ever reach callers: they mark
misuse (bad scope, bad TTL, unscoped pattern). Backend, deserialization
and revalidation errors are raised and handled inside the cache layer so
that a cache outage never turns into a failed request.
"""

from typing import Any


class RetrievalCacheException(Exception):
    """Base exception for all retrieval cache errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. field, key). Never holds payloads.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(RetrievalCacheException):
    """Raised when caller input fails validation (format or range)."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        error_code: str = "VALIDATION_ERROR",
    ) -> None:
        """Initialize with message and optional field name.

        Args:
            message: Description of the validation failure.
            field: Optional field or argument that failed validation.
            error_code: Machine-readable code (subclasses override).
        """
        details = {"field": field} if field else {}
        super().__init__(message, error_code, details)


class InvalidScopeError(ValidationException):
    """Raised when a tenant scope is missing or malformed."""

    def __init__(self, message: str, field: str | None = "scope") -> None:
        super().__init__(message, field, "INVALID_SCOPE")


class InvalidTTLError(ValidationException):
    """Raised when a TTL or grace period is out of range."""

    def __init__(self, value: Any, field: str = "ttl_seconds") -> None:
        super().__init__(
            f"Invalid {field}: {value!r}",
            field,
            "INVALID_TTL",
        )
        self.details["value"] = value


class BackendUnavailableError(RetrievalCacheException):
    """Cache backend unreachable or timed out. Never escapes CacheStore."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            f"Cache backend unavailable during {operation}: {reason}",
            "BACKEND_UNAVAILABLE",
            {"operation": operation, "reason": reason},
        )


class DeserializationError(RetrievalCacheException):
    """Stored value could not be decoded as a current-version envelope.

    Only the key is recorded; the raw payload may contain tenant data.
    """

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(
            f"Could not deserialize cache entry: {key}",
            "DESERIALIZATION_ERROR",
            {"key": key, "reason": reason},
        )


class RevalidationError(RetrievalCacheException):
    """A caller-supplied revalidate function failed during a background refresh."""

    def __init__(self, key: str, scope_id: str | None, reason: str) -> None:
        super().__init__(
            f"Background revalidation failed for key: {key}",
            "REVALIDATION_ERROR",
            {"key": key, "scope_id": scope_id, "reason": reason},
        )
