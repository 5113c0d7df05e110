# backend/services/notification_view.py
"""
Read side for notifications.

Each stored notification becomes one display row with text chosen by the
owner's role and the offer's status. Rows describing the same transaction
for the same owner collapse to the most recently updated one.
"""
from typing import Optional
from uuid import UUID

from core.exceptions import NotificationNotFound, Unauthorized
from core.logger import get_logger
from models.notification import (
    DisplayName,
    DisplayNotification,
    Notification,
    NotificationAction,
    NotificationFilters,
    NotificationRole,
)
from models.offer import OfferRecord, OfferStatus
from services.directory import DirectoryLookup
from services.offer_repository import OfferRepository

logger = get_logger(__name__)


def _who(name: DisplayName) -> str:
    return f"{name.name} (@{name.handle})"


def render_text(note: Notification, offer: OfferRecord, counterpart: DisplayName) -> tuple[str, str]:
    """Return (title, subtitle) for a notification row."""
    who = _who(counterpart)
    counterparty = note.role is NotificationRole.COUNTERPARTY

    if note.status is OfferStatus.PENDING:
        if counterparty:
            return f"You received an offer from {who}", f"Amount: ${offer.asking_amount:.2f}"
        return f"Waiting for a response from {who}", "Status: Waiting for response"

    if note.auto_rejected:
        if counterparty:
            title = f"The offer from {who} was rejected automatically: you no longer had enough copies"
        else:
            title = f"Your offer to {who} was rejected automatically: they no longer had enough copies"
        return title, "Status: Rejected (insufficient stock)"

    verb = "accepted" if note.status is OfferStatus.ACCEPTED else "rejected"
    if counterparty:
        title = f"You {verb} the offer from {who}"
    else:
        title = f"Your offer was {verb} by {who}"
    return title, f"Status: {verb.capitalize()}"


def latest_per_transaction(notifications: list[Notification]) -> list[Notification]:
    """Keep only the latest-updated notification per (owner, transaction)."""
    latest: dict[tuple[str, UUID], Notification] = {}
    for note in notifications:
        key = (note.owner_id, note.transaction_key)
        prev = latest.get(key)
        if prev is None or note.updated_at > prev.updated_at:
            latest[key] = note
    return list(latest.values())


class NotificationView:

    def __init__(self, repository: OfferRepository, directory: DirectoryLookup):
        self._repository = repository
        self._directory = directory

    def list_for_user(self, user_id: str, filters: Optional[NotificationFilters] = None) -> list[DisplayNotification]:
        filters = filters or NotificationFilters()

        notes = latest_per_transaction(self._repository.list_notifications_for_owner(user_id))
        if filters.status is not None:
            notes = [n for n in notes if n.status is filters.status]
        if filters.unread_only:
            notes = [n for n in notes if not n.is_read]

        offers = self._repository.get_offers({n.transaction_key for n in notes})
        names: dict[str, DisplayName] = {}
        needle = (filters.q or "").strip().lower()

        rows = []
        for note in notes:
            offer = offers.get(note.transaction_key)
            if offer is None:
                logger.warning(f"Notification {note.notification_id} has no offer {note.transaction_key}")
                continue

            counterpart_id = offer.counterparty_id if note.role is NotificationRole.PROPOSER else offer.proposer_id
            if counterpart_id not in names:
                names[counterpart_id] = self._directory.get_display_name(counterpart_id)
            counterpart = names[counterpart_id]

            if needle and needle not in counterpart.name.lower() and needle not in counterpart.handle.lower():
                continue

            rows.append(self._display(note, offer, counterpart))

        rows.sort(key=lambda r: r.updated_at, reverse=True)
        return rows

    def mark_read(self, notification_id: UUID, acting_user_id: str) -> Notification:
        note = self._repository.get_notification(notification_id)
        if note is None:
            raise NotificationNotFound(notification_id)
        if note.owner_id != acting_user_id:
            raise Unauthorized(acting_user_id, "Only the owner can mark a notification as read")
        if note.is_read:
            return note

        updated = self._repository.mark_read(notification_id)
        if updated is None:
            raise NotificationNotFound(notification_id)
        return updated

    @staticmethod
    def _display(note: Notification, offer: OfferRecord, counterpart: DisplayName) -> DisplayNotification:
        title, subtitle = render_text(note, offer, counterpart)
        judge = note.role is NotificationRole.COUNTERPARTY and note.status is OfferStatus.PENDING

        return DisplayNotification(
            notification_id=note.notification_id,
            transaction_key=note.transaction_key,
            role=note.role,
            status=note.status,
            is_read=note.is_read,
            auto_rejected=note.auto_rejected,
            action=NotificationAction.JUDGE if judge else NotificationAction.VIEW,
            title=title,
            subtitle=subtitle,
            counterpart_id=counterpart.user_id,
            counterpart_name=counterpart.name,
            counterpart_handle=counterpart.handle,
            asking_amount=offer.asking_amount,
            lines=offer.lines,
            created_at=note.created_at,
            updated_at=note.updated_at,
        )
