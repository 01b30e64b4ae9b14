"""Custom exceptions for the application."""

from typing import Any, Dict, Optional


class BaseServiceException(Exception):
    """Base exception for all service-related errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(BaseServiceException):
    """Raised when job or request input is unusable."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else {},
        )


class NotFoundError(BaseServiceException):
    """Raised when a resource is not found."""

    status_code = 404

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            message=f"{resource} with identifier '{identifier}' not found",
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier},
        )


class ExternalServiceError(BaseServiceException):
    """Raised when an external service call fails."""

    status_code = 502

    def __init__(self, service: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(
            message=f"External service '{service}' error: {message}",
            error_code="EXTERNAL_SERVICE_ERROR",
            details={"service": service, "status_code": status_code},
        )


class MalformedResponseError(ExternalServiceError):
    """Raised when an external service answers without the expected structure."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(service=service, message=message)
        self.error_code = "MALFORMED_RESPONSE"


class StreamingError(BaseServiceException):
    """Raised when the source file cannot be read to the end."""

    def __init__(self, path: str, message: str, row_index: Optional[int] = None) -> None:
        super().__init__(
            message=f"Failed reading '{path}' near row {row_index}: {message}"
            if row_index is not None
            else f"Failed reading '{path}': {message}",
            error_code="STREAMING_ERROR",
            details={"path": path, "row_index": row_index},
        )


class JobCancelledError(BaseServiceException):
    """Raised at a checkpoint once a job has been asked to stop."""

    status_code = 409

    def __init__(self, job_id: str) -> None:
        super().__init__(
            message=f"Job '{job_id}' was cancelled",
            error_code="JOB_CANCELLED",
            details={"job_id": job_id},
        )
