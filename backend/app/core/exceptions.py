"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class PersistenceError(AppException):
    """Raised by repositories when a write to the trip store fails."""

    def __init__(self, message: str = "Failed to persist changes", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERSISTENCE",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class TripNotEligibleError(AppException):
    """Raised when a trip cannot be auto-assigned (already has a driver or wrong status)."""

    def __init__(self, trip_id: int, trip_status: str):
        super().__init__(
            message=f"Trip {trip_id} is not eligible for assignment (status: {trip_status})",
            error_code="ERR_TRIP_NOT_ELIGIBLE",
            status_code=status.HTTP_409_CONFLICT,
            details={"trip_id": trip_id, "status": trip_status}
        )


class NoBatchToUndoError(AppException):
    """Raised when undo is requested but no auto-schedule batch is tracked."""

    def __init__(self):
        super().__init__(
            message="There is no auto-schedule batch to undo",
            error_code="ERR_NOT_FOUND_UNDO",
            status_code=status.HTTP_404_NOT_FOUND
        )


class UndoPersistenceError(AppException):
    """Raised when reverting a batch fails. The batch stays undoable."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=f"Error undoing schedule: {message}",
            error_code="ERR_UNDO_FAILED",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class NotificationError(Exception):
    """Raised by the notification service. Never surfaced to API callers."""


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "exception_type": type(exc).__name__}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
