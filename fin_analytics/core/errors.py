"""
Error Handling Utilities
Engine exceptions, sanitized error messages and consistent error responses.
"""

import logging
from enum import Enum
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Error codes for frontend handling."""

    # Lookup errors
    NOT_FOUND = "not_found"

    # Input errors
    INVALID_RANGE = "invalid_range"
    VALIDATION_ERROR = "validation_error"

    # Data and calculation errors
    INSUFFICIENT_DATA = "insufficient_data"
    CALCULATION_FAILED = "calculation_failed"

    # General errors
    INTERNAL_ERROR = "internal_error"


# User-friendly error messages
ERROR_MESSAGES = {
    ErrorCode.NOT_FOUND: "No active plan was found for the requested period.",
    ErrorCode.INVALID_RANGE: "The requested date range is invalid. The start date must not be after the end date.",
    ErrorCode.VALIDATION_ERROR: "Invalid request. Please check your input and try again.",
    ErrorCode.INSUFFICIENT_DATA: "Insufficient data to calculate this metric.",
    ErrorCode.CALCULATION_FAILED: "Unable to calculate financial metrics. Please try again later.",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again later.",
}


class AnalyticsError(Exception):
    """Base exception for analytics engine errors."""

    error_code: ErrorCode = ErrorCode.CALCULATION_FAILED

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class NotFoundError(AnalyticsError):
    """Raised when no plan exists for the requested fiscal year or id."""

    error_code = ErrorCode.NOT_FOUND

    def __init__(
        self,
        message: str,
        plan_kind: Optional[str] = None,
        fiscal_year: Optional[int] = None,
    ):
        self.plan_kind = plan_kind
        self.fiscal_year = fiscal_year
        super().__init__(message)


class InvalidRangeError(AnalyticsError):
    """Raised when a date range is malformed or inverted."""

    error_code = ErrorCode.INVALID_RANGE

    def __init__(self, message: str, start=None, end=None):
        self.start = start
        self.end = end
        super().__init__(message)


def sanitize_error_message(
    exception: Exception,
    error_code: ErrorCode,
    log_details: bool = True,
) -> str:
    """
    Sanitize error message for user-facing responses.

    Logs full exception details internally but returns user-friendly message.
    Engine errors carry messages written for callers and are passed through.

    Args:
        exception: The exception that occurred
        error_code: Error code for categorization
        log_details: Whether to log full exception details

    Returns:
        User-friendly error message
    """
    if isinstance(exception, AnalyticsError):
        if log_details:
            logger.info("Error [%s]: %s", error_code.value, exception.message)
        return exception.message

    if log_details:
        logger.error(
            "Error [%s]: %s",
            error_code.value,
            str(exception),
            exc_info=exception,
        )

    return ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCode.INTERNAL_ERROR])


def get_error_code_for_exception(exception: Exception) -> tuple[ErrorCode, int]:
    """
    Map exception types to error codes and HTTP status codes.

    Args:
        exception: The exception that occurred

    Returns:
        Tuple of (error_code, http_status_code)
    """
    if isinstance(exception, NotFoundError):
        return ErrorCode.NOT_FOUND, status.HTTP_404_NOT_FOUND

    if isinstance(exception, InvalidRangeError):
        return ErrorCode.INVALID_RANGE, status.HTTP_400_BAD_REQUEST

    if isinstance(exception, AnalyticsError):
        return exception.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exception, ValueError):
        return ErrorCode.VALIDATION_ERROR, status.HTTP_400_BAD_REQUEST

    if isinstance(exception, KeyError):
        return ErrorCode.INSUFFICIENT_DATA, status.HTTP_400_BAD_REQUEST

    # Default to internal error
    return ErrorCode.INTERNAL_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR


async def global_exception_handler(_request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for FastAPI.

    Catches all unhandled exceptions and returns sanitized error responses.
    Excludes HTTPException (intentional responses) and ValidationError (FastAPI validation).
    """
    # Don't handle HTTPException - those are intentional responses
    if isinstance(exc, HTTPException):
        raise exc

    # Don't handle RequestValidationError - FastAPI handles this
    if isinstance(exc, RequestValidationError):
        raise exc

    error_code, http_status = get_error_code_for_exception(exc)
    message = sanitize_error_message(exc, error_code)

    return JSONResponse(
        status_code=http_status,
        content={
            "error_code": error_code.value,
            "message": message,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Attach the engine's exception handlers to a host FastAPI application.

    Usage:
        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(AnalyticsError, global_exception_handler)
    app.add_exception_handler(ValueError, global_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)


def create_error_response(
    error_code: ErrorCode,
    message: Optional[str] = None,
    http_status: Optional[int] = None,
) -> HTTPException:
    """
    Create a standardized HTTPException with error code.

    Args:
        error_code: Error code enum
        message: Optional custom message (uses default if not provided)
        http_status: Optional HTTP status code (uses default if not provided)

    Returns:
        HTTPException with standardized format
    """
    if message is None:
        message = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCode.INTERNAL_ERROR])

    if http_status is None:
        # Default status codes by error type
        if error_code == ErrorCode.NOT_FOUND:
            http_status = status.HTTP_404_NOT_FOUND
        elif error_code in [ErrorCode.INVALID_RANGE, ErrorCode.VALIDATION_ERROR, ErrorCode.INSUFFICIENT_DATA]:
            http_status = status.HTTP_400_BAD_REQUEST
        else:
            http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    return HTTPException(
        status_code=http_status,
        detail={
            "error_code": error_code.value,
            "message": message,
        },
    )
