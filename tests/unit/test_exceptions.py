# tests/unit/test_exceptions.py

from cdn_log_etl.exceptions import (
    ApiError,
    ApiResponseError,
    CdnLogEtlError,
    CheckpointForbiddenError,
    ConfigurationError,
    EmptySourceError,
    EmptyWindowError,
    ExportError,
    FileProcessingError,
    InvalidObjectNameError,
    InvalidRequestPathError,
    InvariantViolationError,
    NonRetryableError,
    RetryableError,
    S3AccessDeniedError,
    S3Error,
    S3ObjectNotFoundError,
    S3OperationError,
    S3ThrottlingError,
    S3TimeoutError,
    ValidationError,
    get_error_context,
    is_retryable_error,
)


class TestCdnLogEtlError:
    """Test the base CdnLogEtlError class."""

    def test_basic_initialization(self):
        """Test basic error initialization."""
        error = CdnLogEtlError("Test message")
        assert str(error) == "Test message"
        assert error.message == "Test message"
        assert error.error_code == "CdnLogEtlError"
        assert error.context == {}
        assert error.correlation_id is None

    def test_context_is_copied(self):
        context = {"key": "value"}
        error = CdnLogEtlError("Test message", context=context)
        context["key"] = "changed"
        assert error.context == {"key": "value"}

    def test_to_dict(self):
        """Test conversion to dictionary."""
        error = CdnLogEtlError(
            "Test message",
            error_code="TEST_CODE",
            context={"key": "value"},
            correlation_id="test-123",
        )
        assert error.to_dict() == {
            "error_type": "CdnLogEtlError",
            "error_code": "TEST_CODE",
            "error_message": "Test message",
            "context": {"key": "value"},
            "correlation_id": "test-123",
            "retryable": False,
        }


class TestWindowConditions:
    def test_empty_window_error(self):
        error = EmptyWindowError("k3c3y8z2", "2021-11-17T16:00:00+00:00")
        assert error.error_code == "EMPTY_WINDOW"
        assert error.context["source_id"] == "k3c3y8z2"
        assert isinstance(error, RetryableError)

    def test_empty_source_error(self):
        error = EmptySourceError("k3c3y8z2")
        assert error.error_code == "EMPTY_SOURCE"
        assert "k3c3y8z2" in str(error)
        assert isinstance(error, RetryableError)


class TestS3Errors:
    """Test S3-related error classes."""

    def test_s3_object_not_found_error(self):
        error = S3ObjectNotFoundError("test-bucket", "test-key")
        assert "s3://test-bucket/test-key" in str(error)
        assert error.error_code == "S3_OBJECT_NOT_FOUND"
        assert isinstance(error, NonRetryableError)
        assert isinstance(error, S3Error)

    def test_s3_access_denied_error_merges_context(self):
        error = S3AccessDeniedError(
            "test-bucket", "test-key", context={"aws_error_code": "AccessDenied"}
        )
        assert error.error_code == "S3_ACCESS_DENIED"
        assert error.context == {
            "bucket": "test-bucket",
            "key": "test-key",
            "aws_error_code": "AccessDenied",
        }

    def test_s3_throttling_error(self):
        error = S3ThrottlingError("GetObject")
        assert "throttled" in str(error)
        assert error.error_code == "S3_THROTTLING"
        assert isinstance(error, RetryableError)

    def test_s3_timeout_error(self):
        error = S3TimeoutError("GetObject", 30.0)
        assert "30.0s" in str(error)
        assert error.error_code == "S3_TIMEOUT"
        assert error.context["timeout_seconds"] == 30.0
        assert isinstance(error, RetryableError)

    def test_s3_operation_error(self):
        error = S3OperationError("ListObjectsV2", "src/cds/", "InternalError")
        assert error.error_code == "S3_OPERATION_FAILED"
        assert error.context["operation"] == "ListObjectsV2"
        assert isinstance(error, NonRetryableError)
        assert isinstance(error, S3Error)


class TestValidationErrors:
    def test_invalid_request_path_error(self):
        error = InvalidRequestPathError("/wp-admin", "unknown prefix")
        assert error.error_code == "INVALID_REQUEST_PATH"
        assert error.context == {"path": "/wp-admin", "reason": "unknown prefix"}
        assert isinstance(error, ValidationError)

    def test_invalid_object_name_error(self):
        error = InvalidObjectNameError("readme.txt")
        assert error.error_code == "INVALID_OBJECT_NAME"
        assert isinstance(error, ValidationError)
        assert isinstance(error, NonRetryableError)


class TestApiErrors:
    def test_checkpoint_forbidden_error(self):
        error = CheckpointForbiddenError("fra-prod")
        assert error.error_code == "FORBIDDEN"
        assert error.context["region"] == "fra-prod"
        assert isinstance(error, ApiError)
        assert not is_retryable_error(error)

    def test_api_response_error_truncates_body(self):
        error = ApiResponseError("https://api/x", 500, "x" * 2000)
        assert error.context["status_code"] == 500
        assert len(error.context["body"]) == 512

    def test_export_error_is_retryable(self):
        error = ExportError("fra-prod", 1637164800, "timeout", context={"status_code": 502})
        assert error.error_code == "EXPORT_FAILED"
        assert error.context["date"] == 1637164800
        assert error.context["status_code"] == 502
        assert is_retryable_error(error)


class TestOtherErrors:
    def test_file_processing_error(self):
        error = FileProcessingError("a.log.gz", "bad gzip", context={"cause": "BadGzipFile"})
        assert error.error_code == "FILE_PROCESSING_FAILED"
        assert error.context == {"key": "a.log.gz", "reason": "bad gzip", "cause": "BadGzipFile"}
        assert not is_retryable_error(error)

    def test_invariant_violation_error(self):
        error = InvariantViolationError("unknown entity kind")
        assert error.error_code == "INVARIANT_VIOLATION"
        assert isinstance(error, NonRetryableError)

    def test_configuration_error(self):
        error = ConfigurationError("bad config")
        assert error.error_code == "CONFIGURATION_ERROR"
        assert isinstance(error, NonRetryableError)


class TestUtilityFunctions:
    def test_is_retryable_error(self):
        assert is_retryable_error(S3ThrottlingError("GetObject"))
        assert not is_retryable_error(ConfigurationError("x"))
        assert not is_retryable_error(ValueError("x"))

    def test_get_error_context_for_custom_error(self):
        error = S3TimeoutError("GetObject", 5)
        context = get_error_context(error)
        assert context["error_type"] == "S3TimeoutError"
        assert context["retryable"] is True

    def test_get_error_context_for_standard_error(self):
        assert get_error_context(ValueError("boom")) == {
            "error_type": "ValueError",
            "error_message": "boom",
            "retryable": False,
        }
