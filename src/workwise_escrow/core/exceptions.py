"""Service error types and exception handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from workwise_escrow.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """
    Domain error carrying an error code, message, HTTP status and details.

    Every rejected operation in the service raises this (or a subclass);
    routers never build error responses by hand.
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error!r}, {self.message!r}, {self.status_code})"


class InvalidTransition(ServiceError):
    """The project is not in a status that allows the requested transition."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("INVALID_TRANSITION", message, 409, details)


class InsufficientEscrowBalance(ServiceError):
    """The client's escrow balance cannot cover the agreed amount."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("INSUFFICIENT_ESCROW_BALANCE", message, 402, details)


class CancellationNotAllowed(ServiceError):
    """Payment was already released; the project can no longer be cancelled."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("CANCELLATION_NOT_ALLOWED", message, 409, details)


class LedgerIntegrityError(ServiceError):
    """A money movement would break the escrow conservation rules. Never clamped."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("LEDGER_INTEGRITY_VIOLATION", message, 500, details)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    if exc.status_code >= 500:
        logger.error(
            "Service error",
            extra={
                "error_code": exc.error,
                "status_code": exc.status_code,
                "path": str(request.url.path),
            },
        )
    else:
        logger.warning(
            "Service error",
            extra={
                "error_code": exc.error,
                "status_code": exc.status_code,
                "path": str(request.url.path),
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, "details": exc.details},
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from the router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
