"""
API Error Handling Module
=========================

Standardized error response format across all API endpoints.

This module provides:
- ErrorResponse Pydantic model for consistent error responses
- The mapping from domain errors (ucm.errors) to HTTP status codes
- Exception handlers for FastAPI integration

Status codes:
- 404: NOT_FOUND
- 409: DUPLICATE_IDENTIFIER, REFERENCED_ENTITY_IN_USE, CYCLE_DETECTED,
       TOKEN_COLLISION
- 422: DANGLING_TARGET, SELF_REFERENCE, INVARIANT_VIOLATION, VALIDATION_ERROR
- 507: CAPACITY_EXCEEDED
- 500: STORAGE_IO_ERROR, CONFIGURATION_ERROR, INTERNAL_ERROR
"""

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ucm.errors import (
    CapacityExceededError,
    ConfigurationError,
    CycleDetectedError,
    DanglingTargetError,
    DuplicateIdentifierError,
    InvariantViolationError,
    NotFoundError,
    ReferencedEntityInUseError,
    SelfReferenceError,
    StorageIOError,
    TokenCollisionError,
    UcmError,
)

_logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Schema
# =============================================================================


class ErrorResponse(BaseModel):
    """
    Standardized API error response format.

    Example:
        {
            "error_code": "NOT_FOUND",
            "message": "Use case 'UC-SEC-009' not found",
            "details": {"kind": "use_case", "id": "UC-SEC-009"}
        }
    """

    error_code: str = Field(
        ...,
        description="Machine-readable error code for programmatic handling",
        examples=["NOT_FOUND", "CYCLE_DETECTED", "VALIDATION_ERROR"]
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    details: dict[str, Any] | None = Field(
        default=None,
        description="Optional additional error details (ids, cycle path, field errors)"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error_code": "NOT_FOUND",
                "message": "Use case 'UC-SEC-009' not found",
                "details": {"kind": "use_case", "id": "UC-SEC-009"}
            }
        }
    )


class ErrorCode:
    """Error codes produced by the API layer itself."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"


# Most specific class first: the first isinstance match wins
STATUS_BY_ERROR: list[tuple[type[UcmError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateIdentifierError, status.HTTP_409_CONFLICT),
    (ReferencedEntityInUseError, status.HTTP_409_CONFLICT),
    (CycleDetectedError, status.HTTP_409_CONFLICT),
    (TokenCollisionError, status.HTTP_409_CONFLICT),
    (DanglingTargetError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SelfReferenceError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvariantViolationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (CapacityExceededError, status.HTTP_507_INSUFFICIENT_STORAGE),
    (StorageIOError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_code_for(exc: UcmError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# =============================================================================
# Exception Handlers
# =============================================================================


def create_error_response(
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None
) -> dict[str, Any]:
    """
    Create a standardized error response dictionary.

    This helper function ensures all error responses follow the same format.
    """
    response = {
        "error_code": error_code,
        "message": message
    }
    if details:
        response["details"] = details
    return response


async def ucm_error_handler(request: Request, exc: UcmError) -> JSONResponse:
    """
    Handler for domain errors.

    Storage failures are logged with their cause but reported generically.
    """
    code = status_code_for(exc)
    if isinstance(exc, StorageIOError):
        _logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=code,
            content=create_error_response(
                error_code=exc.error_code,
                message="A storage error occurred",
                details=exc.details,
            )
        )
    return JSONResponse(
        status_code=code,
        content=create_error_response(exc.error_code, exc.message, exc.details),
    )


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Handler for Pydantic validation errors.

    Converts FastAPI/Pydantic validation errors to standardized format.
    Extracts field information from validation error locations.
    """
    errors = []
    for error in exc.errors():
        loc = error.get("loc", [])
        # Skip 'body' prefix if present
        field_parts = [str(p) for p in loc if p != "body"]
        field = ".".join(field_parts) if field_parts else "unknown"

        errors.append({
            "field": field,
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error")
        })

    if len(errors) == 1:
        message = f"Validation error on field '{errors[0]['field']}': {errors[0]['message']}"
    else:
        message = f"Validation failed with {len(errors)} errors"

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=create_error_response(
            error_code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details={"errors": errors}
        )
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """
    Handler for standard HTTPException.

    Converts FastAPI HTTPException to standardized format while
    preserving the original status code.
    """
    status_to_code = {
        400: ErrorCode.BAD_REQUEST,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
    }
    error_code = status_to_code.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = str(exc.detail) if exc.detail else "An error occurred"

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(error_code=error_code, message=message)
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handler for unhandled exceptions.

    The actual error is logged but not exposed to clients.
    """
    _logger.exception("Unhandled exception: %s", exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            error_code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred"
        )
    )


def register_exception_handlers(app) -> None:
    """
    Register all exception handlers with the FastAPI app.

    Example:
        from server.exceptions import register_exception_handlers

        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(UcmError, ucm_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
