# src/cdn_log_etl/exceptions.py

"""
Shared custom exceptions for the CDN log ETL service.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- CdnLogEtlError (base)
  - RetryableError (a later run may succeed)
    - EmptyWindowError
    - EmptySourceError
    - S3ThrottlingError
    - S3TimeoutError
    - ExportError
  - NonRetryableError (needs operator attention)
    - ValidationError
      - InvalidRequestPathError
      - InvalidObjectNameError
    - S3AccessDeniedError
    - S3ObjectNotFoundError
    - S3OperationError
    - CheckpointForbiddenError
    - ApiResponseError
    - InvariantViolationError
    - ConfigurationError
  - FileProcessingError (per-file, never leaves the worker pool)
"""

from typing import Any, Dict, Optional


class CdnLogEtlError(Exception):
    """Base exception for all CDN log ETL errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(CdnLogEtlError):
    """Base class for errors that a subsequent run can recover from."""

    pass


class NonRetryableError(CdnLogEtlError):
    """Base class for errors that will not go away by running again."""

    pass


# === Window / Source Conditions ===


class EmptyWindowError(RetryableError):
    """Raised when no log objects exist yet for an hour window."""

    def __init__(self, source_id: str, start_hour: Any, **kwargs):
        message = f"No log objects found for source {source_id} at {start_hour}"
        context = {"source_id": source_id, "start_hour": str(start_hour)}
        super().__init__(message, error_code="EMPTY_WINDOW", context=context, **kwargs)


class EmptySourceError(RetryableError):
    """Raised when a source prefix holds no log objects at all."""

    def __init__(self, source_id: str, **kwargs):
        message = f"No log objects found under source {source_id}"
        context = {"source_id": source_id}
        super().__init__(message, error_code="EMPTY_SOURCE", context=context, **kwargs)


# === S3-Related Errors ===


class S3Error(CdnLogEtlError):
    """Base class for S3-related errors."""

    pass


class S3ObjectNotFoundError(S3Error, NonRetryableError):
    """Raised when a requested S3 object does not exist."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"S3 object not found: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="S3_OBJECT_NOT_FOUND", context=context, **kwargs
        )


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access is denied to an S3 bucket or object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="S3_ACCESS_DENIED", context=context, **kwargs
        )


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation throttled: {operation}"
        context = {"operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations time out."""

    def __init__(self, operation: str, timeout_seconds: float, **kwargs):
        message = f"S3 operation timed out after {timeout_seconds}s: {operation}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"operation": operation, "timeout_seconds": timeout_seconds})
        super().__init__(message, error_code="S3_TIMEOUT", context=context, **kwargs)


class S3OperationError(S3Error, NonRetryableError):
    """Raised when an S3 call fails for any other reason."""

    def __init__(self, operation: str, key: str, reason: str, **kwargs):
        message = f"S3 {operation} failed for '{key}': {reason}"
        context = {"operation": operation, "key": key, "reason": reason}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_OPERATION_FAILED", context=context, **kwargs)


# === Validation Errors ===


class ValidationError(NonRetryableError):
    """Base class for validation errors."""

    pass


class InvalidRequestPathError(ValidationError):
    """Raised when a request path cannot be attributed to an entity."""

    def __init__(self, path: str, reason: str, **kwargs):
        message = f"Invalid request path '{path}': {reason}"
        context = {"path": path, "reason": reason}
        super().__init__(
            message, error_code="INVALID_REQUEST_PATH", context=context, **kwargs
        )


class InvalidObjectNameError(ValidationError):
    """Raised when no timestamp can be parsed out of a log object name."""

    def __init__(self, object_name: str, **kwargs):
        message = f"Invalid log object name: {object_name}"
        context = {"object_name": object_name}
        super().__init__(
            message, error_code="INVALID_OBJECT_NAME", context=context, **kwargs
        )


# === API Errors ===


class ApiError(CdnLogEtlError):
    """Base class for Livepeer API errors."""

    pass


class CheckpointForbiddenError(ApiError, NonRetryableError):
    """Raised when the API rejects our credentials (HTTP 403)."""

    def __init__(self, region: str, **kwargs):
        message = f"Forbidden to read checkpoint for region {region}; check the API key"
        context = {"region": region}
        super().__init__(message, error_code="FORBIDDEN", context=context, **kwargs)


class ApiResponseError(ApiError, NonRetryableError):
    """Raised when the API answers with an unexpected status or body."""

    def __init__(self, url: str, status_code: Optional[int], body: str = "", **kwargs):
        message = f"Unexpected API response from {url}: status={status_code}"
        context = {"url": url, "status_code": status_code, "body": body[:512]}
        super().__init__(
            message, error_code="API_RESPONSE_ERROR", context=context, **kwargs
        )


class ExportError(ApiError, RetryableError):
    """Raised when aggregated data could not be delivered to the API."""

    def __init__(self, region: str, date: int, reason: str, **kwargs):
        message = f"Failed to export data for region {region} hour {date}: {reason}"
        context = {"region": region, "date": date, "reason": reason}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="EXPORT_FAILED", context=context, **kwargs)


# === Processing Errors ===


class FileProcessingError(CdnLogEtlError):
    """Raised when a single log object cannot be fetched or decoded."""

    def __init__(self, key: str, reason: str, **kwargs):
        message = f"Failed to process log object {key}: {reason}"
        context = {"key": key, "reason": reason}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="FILE_PROCESSING_FAILED", context=context, **kwargs
        )


class InvariantViolationError(NonRetryableError):
    """Raised when internal state breaks an invariant that should always hold."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="INVARIANT_VIOLATION", **kwargs)


# === Configuration Errors ===


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, CdnLogEtlError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "error_message": str(error),
            "retryable": False,
        }
