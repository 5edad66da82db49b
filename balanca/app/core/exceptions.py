"""
Custom exceptions and error handlers for consistent error responses.

Provides the ledger error taxonomy with stable error codes and the
global exception handlers that render them.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("balanca")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(AppException):
    """Raised when a referenced owner, expense or transaction does not exist."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ForbiddenError(AppException):
    """Raised when the actor lacks the required membership or ownership."""

    def __init__(self, message: str = "Access denied", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="FORBIDDEN",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class InvalidAmountError(AppException):
    """Raised for non-positive or non-integer amounts."""

    def __init__(self, amount: Any, field: str = "amount"):
        super().__init__(
            message=f"{field} must be a positive integer in the smallest currency unit",
            error_code="INVALID_AMOUNT",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"field": field, "value": repr(amount)}
        )


class InsufficientBalanceError(AppException):
    """Raised when a debit exceeds the owner's current balance."""

    def __init__(self, owner_type: str, owner_id: int, balance: int, amount: int):
        super().__init__(
            message=f"Insufficient {owner_type.lower()} balance",
            error_code="INSUFFICIENT_BALANCE",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "owner_type": owner_type,
                "owner_id": owner_id,
                "balance": balance,
                "amount": amount
            }
        )


class InvalidStateError(AppException):
    """Raised when an operation is not valid for the entity's current status."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="INVALID_STATE",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class ConsistencyFailureError(AppException):
    """Raised when an atomic unit could not commit. Storage detail is logged, not returned."""

    def __init__(self, operation: str):
        super().__init__(
            message=f"Could not complete {operation}; no changes were applied",
            error_code="CONSISTENCY_FAILURE",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"operation": operation}
        )


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
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        500: "INTERNAL_SERVER_ERROR"
    }

    error_code = error_code_map.get(exc.status_code, "UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "VALIDATION_ERROR",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry exception instances that JSONResponse cannot encode
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "exception_type": type(exc).__name__}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "INTERNAL_SERVER_ERROR",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
