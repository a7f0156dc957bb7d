"""
Custom exception classes and error handling.

Two layers:
- API exceptions (HTTPException subclasses) give consistent error responses.
- Domain exceptions are raised by services and translated by routers, so the
  companion engine never depends on FastAPI.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


class ConflictError(APIException):
    """Resource conflict (e.g., duplicate entry)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )


class ServiceUnavailableError(APIException):
    """A required dependency (database, text generation) is unavailable."""

    def __init__(self, detail: str = "Service temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="SERVICE_UNAVAILABLE"
        )


# --- Domain exceptions ---

class DomainValidationError(ValueError):
    """Malformed domain input rejected at the creation boundary."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class RecordNotFoundError(LookupError):
    """Row is missing or not owned by the requesting user."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class DuplicateRecordError(ValueError):
    """A uniqueness rule (e.g. one milestone per type per user) would be violated."""


class StaleStageError(RuntimeError):
    """A phase commit lost its compare-and-set against the conversation version."""


class TextGenerationError(RuntimeError):
    """The text-generation service failed or is not configured."""


class TextGenerationTimeout(TextGenerationError):
    """The text-generation call exceeded EXTERNAL_API_TIMEOUT."""


class ExtractionDecodeError(TextGenerationError):
    """A structured-extraction response did not match its schema."""


def to_http_error(exc: Exception) -> APIException:
    """Translate a domain exception into the matching API exception."""
    if isinstance(exc, DomainValidationError):
        return ValidationError(str(exc), field=exc.field)
    if isinstance(exc, RecordNotFoundError):
        return NotFoundError(exc.resource, str(exc.identifier))
    if isinstance(exc, DuplicateRecordError):
        return ConflictError(str(exc))
    if isinstance(exc, StaleStageError):
        return ConflictError(str(exc))
    if isinstance(exc, TextGenerationError):
        return ServiceUnavailableError(str(exc))
    raise exc
