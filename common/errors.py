"""Domain exceptions and the handlers that turn them into JSON responses."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from circuitbreaker import CircuitBreakerError
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base class for client-correctable failures raised by the booking engine."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, **extra: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_content(self) -> Dict[str, Any]:
        return {"detail": self.detail, **self.extra}


class ValidationFailed(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class RuleViolation(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDenied(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class InsufficientInventory(BookingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, shortages: List[Dict[str, Any]]) -> None:
        names = ", ".join(
            f"{item['name']} (requested {item['requested']}, available {item['available_units']})"
            for item in shortages
        )
        super().__init__(f"Not enough availability for the selected dates: {names}", insufficient=shortages)
        self.shortages = shortages


class InvalidTransition(BookingError):
    status_code = status.HTTP_409_CONFLICT


class PackageInUse(BookingError):
    status_code = status.HTTP_409_CONFLICT


class PriceMismatch(BookingError):
    status_code = status.HTTP_409_CONFLICT


class PaymentAlreadyVerified(BookingError):
    status_code = status.HTTP_409_CONFLICT


class PaymentSignatureMismatch(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class HoldReleased(BookingError):
    status_code = status.HTTP_409_CONFLICT


class PaymentGatewayError(BookingError):
    status_code = status.HTTP_502_BAD_GATEWAY


def _error_response(status_code: int, content: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def setup_exception_handlers(app: FastAPI) -> None:
    """Register JSON handlers for domain errors, unmatched routes and unexpected failures."""

    settings = get_settings()

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return _error_response(exc.status_code, exc.to_content())

    @app.exception_handler(CircuitBreakerError)
    async def circuit_open_handler(request: Request, exc: CircuitBreakerError) -> JSONResponse:
        logger.error("Payment gateway circuit open: %s", exc)
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            {"detail": "Payment service temporarily unavailable. Please try again shortly."},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Starlette raises a bare 404 for paths no route matched.
        detail = exc.detail
        if exc.status_code == status.HTTP_404_NOT_FOUND and detail == "Not Found":
            detail = "Route not found"
        return _error_response(exc.status_code, {"detail": detail}, getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content: Dict[str, Any] = {"detail": "Internal server error"}
        if settings.debug:
            content["error"] = str(exc)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, content)
