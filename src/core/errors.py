"""Error taxonomy and classification utilities for task operations."""

from enum import Enum

from pydantic import BaseModel


class AuthenticationRequiredError(Exception):
    """Raised when a task operation is attempted without an authenticated user."""


class TaskValidationError(ValueError):
    """Raised when task input is rejected before it reaches storage."""


class DatabaseError(RuntimeError):
    """Raised when a query or mutation against the store fails."""


class RecordNotFoundError(DatabaseError):
    """Raised when a record does not exist (or is not visible to the caller)."""


class StatusCountError(DatabaseError):
    """Raised when any of the per-status count queries fails.

    The counts are reported together or not at all.
    """

    def __init__(self, message: str, failures: list[BaseException] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or []


class NotificationDeliveryError(Exception):
    """Raised when an outbound Slack notification cannot be delivered.

    Never propagated to the caller of the originating task mutation.
    """


class StaleRequestDiscardedError(Exception):
    """Internal signal that a superseded refresh finished and its result was ignored."""


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes returned to API callers."""

    ERR_AUTHENTICATION_REQUIRED = "ERR_AUTHENTICATION_REQUIRED"
    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_STATUS_COUNT_FAILED = "ERR_STATUS_COUNT_FAILED"
    ERR_STORE = "ERR_STORE"
    ERR_NOTIFICATION_FAILED = "ERR_NOTIFICATION_FAILED"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with the HTTP status it maps to."""

    code: str
    message: str
    status_code: int
    severity: ErrorSeverity


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an exception raised by a task operation.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, user-facing message, HTTP status and severity
    """
    if isinstance(exception, AuthenticationRequiredError):
        return ErrorResponse(
            code=ErrorCode.ERR_AUTHENTICATION_REQUIRED,
            message="Authentication required.",
            status_code=401,
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, TaskValidationError):
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            message=str(exception),
            status_code=400,
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, RecordNotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_FOUND,
            message="Task not found.",
            status_code=404,
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, StatusCountError):
        return ErrorResponse(
            code=ErrorCode.ERR_STATUS_COUNT_FAILED,
            message=str(exception),
            status_code=400,
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, DatabaseError):
        return ErrorResponse(
            code=ErrorCode.ERR_STORE,
            message=str(exception),
            status_code=400,
            severity=ErrorSeverity.HIGH,
        )

    if isinstance(exception, NotificationDeliveryError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOTIFICATION_FAILED,
            message=str(exception),
            status_code=500,
            severity=ErrorSeverity.MEDIUM,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message=str(exception) or "An unexpected error occurred.",
        status_code=500,
        severity=ErrorSeverity.CRITICAL,
    )
