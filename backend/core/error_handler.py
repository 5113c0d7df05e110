# backend/core/error_handler.py
from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.exceptions import (
    LedgerUnavailable,
    NotificationNotFound,
    NotPending,
    OfferNotFound,
    PartialTransferFailure,
    PersistenceError,
    TradeOfferException,
    Unauthorized,
    ValidationError,
)
from core.logger import get_logger

logger = get_logger(__name__)


def _status_for(exc: TradeOfferException) -> int:
    if isinstance(exc, (OfferNotFound, NotificationNotFound)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, NotPending):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, Unauthorized):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, (PartialTransferFailure, PersistenceError)):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, LedgerUnavailable):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_400_BAD_REQUEST


async def trade_offer_exception_handler(request: Request, exc: TradeOfferException):
    """Render a domain exception as {error, message, details, timestamp}."""
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"Trade offer error: {exc.code} - {exc.message}")
    else:
        logger.warning(f"Trade offer error: {exc.code} - {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Request payload failed pydantic validation."""
    logger.warning(f"Validation error: {exc.errors()}")

    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: v if isinstance(v, (str, int, float, bool, type(None))) else str(v)
                for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": cleaned_errors,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def register_exception_handlers(app):
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(TradeOfferException, trade_offer_exception_handler)
