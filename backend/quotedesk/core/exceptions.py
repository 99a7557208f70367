"""
Application exceptions and the global exception handlers for the FastAPI app.
Services raise the typed exceptions below; handlers serialize them into the
JSON error envelope used by every endpoint.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Any, Optional


logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""
    def __init__(self, message: str, status_code: int = 500, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class ValidationError(AppException):
    """Caller supplied something the current state does not allow. Never retried."""
    def __init__(self, message: str, details: Any = None, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(message, status_code=status_code, details=details)


class QuotationLockedError(ValidationError):
    """Quotation is edit-locked while a discount approval is pending."""
    def __init__(self, quotation_id: Any, approval_id: Any = None):
        super().__init__(
            "Quotation is locked pending discount approval",
            details={"quotation_id": str(quotation_id), "pending_approval_id": str(approval_id) if approval_id else None},
            status_code=status.HTTP_409_CONFLICT,
        )
        self.quotation_id = quotation_id
        self.approval_id = approval_id


class NotFoundError(AppException):
    """Internal resource lookup failed."""
    def __init__(self, resource_type: str, identifier: Any):
        super().__init__(
            f"{resource_type} '{identifier}' not found",
            status_code=status.HTTP_404_NOT_FOUND,
        )
        self.resource_type = resource_type
        self.identifier = identifier


class PermissionDeniedError(AppException):
    """Actor is not allowed to perform the action."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class ConflictError(AppException):
    """Concurrent writers collided and the internal retry policy gave up."""
    def __init__(self, message: str, details: Optional[dict] = None):
        payload = {"retryable": True}
        payload.update(details or {})
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=payload)


class ExternalDependencyError(AppException):
    """Renderer or notifier failed or timed out."""

    RENDER = "render"
    NOTIFY = "notify"

    def __init__(self, stage: str, message: str, cause: Optional[str] = None):
        super().__init__(
            message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"stage": stage, "cause": cause},
        )
        self.stage = stage


class SecurityError(AppException):
    """
    Client-portal denial. The public message is deliberately generic; the
    specific reason is kept on the exception for server-side logging only.
    """

    LINK_MESSAGE = "This link is invalid or has expired."
    OTP_MESSAGE = "The code is incorrect or has expired."
    SESSION_MESSAGE = "Verification is required to view this quotation."

    def __init__(self, public_message: str, reason: str, status_code: int = status.HTTP_404_NOT_FOUND):
        super().__init__(public_message, status_code=status_code)
        self.reason = reason

    @classmethod
    def invalid_link(cls, reason: str) -> "SecurityError":
        return cls(cls.LINK_MESSAGE, reason, status.HTTP_404_NOT_FOUND)

    @classmethod
    def invalid_otp(cls, reason: str) -> "SecurityError":
        return cls(cls.OTP_MESSAGE, reason, status.HTTP_401_UNAUTHORIZED)

    @classmethod
    def session_required(cls, reason: str) -> "SecurityError":
        return cls(cls.SESSION_MESSAGE, reason, status.HTTP_401_UNAUTHORIZED)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle custom application exceptions."""
    if isinstance(exc, SecurityError):
        logger.warning(
            "Portal access denied",
            extra={"path": request.url.path, "reason": exc.reason},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"message": exc.message}},
        )

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application exception: {exc.message}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
            "details": exc.details,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "details": exc.details,
                "path": request.url.path,
            }
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        f"HTTP exception: {exc.detail}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "status_code": exc.status_code,
                "path": request.url.path,
            }
        },
    )


def _serialize_validation_errors(errors: list) -> list:
    """Convert validation errors to JSON-serializable format."""
    serialized = []
    for error in errors:
        serialized_error = {}
        for key, value in error.items():
            if key == "ctx" and isinstance(value, dict):
                serialized_error[key] = {
                    ctx_key: str(ctx_value) if isinstance(ctx_value, Exception) else ctx_value
                    for ctx_key, ctx_value in value.items()
                }
            elif isinstance(value, Exception):
                serialized_error[key] = str(value)
            else:
                serialized_error[key] = value
        serialized.append(serialized_error)
    return serialized


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors."""
    serialized_errors = _serialize_validation_errors(exc.errors())

    logger.warning(
        "Request validation error",
        extra={
            "path": request.url.path,
            "errors": serialized_errors,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "details": serialized_errors,
                "path": request.url.path,
            }
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(
        f"Unhandled exception: {type(exc).__name__}",
        extra={
            "path": request.url.path,
            "exception_type": type(exc).__name__,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "path": request.url.path,
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
