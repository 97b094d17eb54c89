"""
Global error handling middleware.

WHAT: Translate exceptions to appropriate HTTP responses
WHY: Consistent error responses with proper status codes
HOW: FastAPI exception handlers for the business exception taxonomy
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from ..utils.exceptions import (
    BusinessException,
    ValidationException,
    ConflictException,
    DependencyException,
    NoCompletedNegotiationsException,
    QuoteNotFoundException,
    NegotiationNotFoundException,
    DecisionNotFoundException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _error_body(code: str, message: str, details=None) -> dict:
    return {
        "error": code,
        "message": message,
        "details": details,
        "timestamp": datetime.now().isoformat()
    }


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request body or parameters failed validation
    WHY: Same error shape as business ValidationException
    HOW: Return 422 with cleaned, JSON-serializable field errors
    """
    logger.warning(f"Validation error: {exc.errors()}")

    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        # ctx may hold exception instances
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v
                for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("VALIDATION_ERROR", "Request validation failed", cleaned_errors)
    )


async def business_exception_handler(request: Request, exc: BusinessException):
    """
    Handle BusinessException subclasses.

    WHAT: Domain error raised by services or store
    WHY: Callers distinguish validation, conflict and dependency failures
    HOW: Map the exception type to a status code
    """
    status_code = status.HTTP_400_BAD_REQUEST

    if isinstance(exc, (QuoteNotFoundException, NegotiationNotFoundException,
                        DecisionNotFoundException)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (ConflictException, NoCompletedNegotiationsException)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationException):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, DependencyException):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    if status_code >= 500:
        logger.error(f"Business exception: {exc.code} - {exc.message}")
    else:
        logger.warning(f"Business exception: {exc.code} - {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details)
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)

    logger.info("Exception handlers registered")
