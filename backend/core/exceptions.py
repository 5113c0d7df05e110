# backend/core/exceptions.py
"""
Domain exceptions for the trade offer protocol.

Every exception carries a machine-readable ``code`` and optional ``details``
so the error handlers can render a consistent JSON body.
"""
from typing import Any, Optional
from uuid import UUID


class TradeOfferException(Exception):
    """Base class for all trade offer errors."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class ValidationError(TradeOfferException):
    """Offer payload broke a business rule (empty lines, zero quantity, self-trade)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field} if field else None,
        )


class OfferNotFound(TradeOfferException):

    def __init__(self, transaction_key: UUID):
        super().__init__(
            message=f"Offer not found: {transaction_key}",
            code="OFFER_NOT_FOUND",
            details={"transaction_key": str(transaction_key)},
        )


class NotificationNotFound(TradeOfferException):

    def __init__(self, notification_id: UUID):
        super().__init__(
            message=f"Notification not found: {notification_id}",
            code="NOTIFICATION_NOT_FOUND",
            details={"notification_id": str(notification_id)},
        )


class NotPending(TradeOfferException):
    """The offer already reached a terminal status; a second response is refused."""

    def __init__(self, transaction_key: UUID, current_status: str):
        super().__init__(
            message=f"Offer {transaction_key} was already responded to (status: {current_status})",
            code="NOT_PENDING",
            details={"transaction_key": str(transaction_key), "current_status": current_status},
        )


class Unauthorized(TradeOfferException):

    def __init__(self, user_id: Optional[str], reason: str):
        super().__init__(
            message=reason,
            code="UNAUTHORIZED",
            details={"user_id": user_id},
        )


class LedgerUnavailable(TradeOfferException):
    """A ledger call failed at the transport level; it may or may not have applied."""

    def __init__(self, user_id: str, card_id: str, operation: str):
        super().__init__(
            message=f"Ledger {operation} failed for user {user_id}, card {card_id}",
            code="LEDGER_UNAVAILABLE",
            details={"user_id": user_id, "card_id": card_id, "operation": operation},
        )


class PartialTransferFailure(TradeOfferException):
    """
    The transfer pass stopped part way through.

    Some units have moved and some have not. The settlement log records exactly
    which, and replaying the accept resumes from there.
    """

    def __init__(self, transaction_key: UUID, progress: dict[str, dict[str, int]]):
        super().__init__(
            message=f"Transfer for offer {transaction_key} stopped part way; replay required",
            code="PARTIAL_TRANSFER_FAILURE",
            details={"transaction_key": str(transaction_key), "progress": progress},
        )


class PersistenceError(TradeOfferException):
    """A write the protocol depends on did not land."""

    def __init__(self, message: str, transaction_key: Optional[UUID] = None):
        super().__init__(
            message=message,
            code="PERSISTENCE_ERROR",
            details={"transaction_key": str(transaction_key)} if transaction_key else None,
        )
