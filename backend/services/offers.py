# backend/services/offers.py
"""
Offer creation and lookup.

Creating an offer writes the immutable OfferRecord and its two Pending
notifications. Nothing is taken from anyone's library at this point: the
counterparty keeps full use of the requested cards until they respond.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from core.config import settings
from core.exceptions import OfferNotFound, Unauthorized, ValidationError
from core.logger import get_logger
from models.notification import Notification, NotificationRole
from models.offer import (
    ItemLine,
    OfferRecord,
    OfferResponse,
    OfferStatus,
    PriceMode,
)
from services.offer_repository import OfferRepository
from services.pricing import lines_total, to_cents

logger = get_logger(__name__)


def validate_offer(
    proposer_id: str,
    counterparty_id: str,
    lines: list[ItemLine],
    asking_amount: Optional[Decimal],
    price_mode: PriceMode,
    max_lines: int,
    max_quantity: int = settings.MAX_LINE_QUANTITY,
) -> None:
    if not proposer_id:
        raise Unauthorized(None, "A proposer is required to create an offer")
    if proposer_id == counterparty_id:
        raise ValidationError("Cannot trade with yourself", field="counterparty_id")
    if not lines:
        raise ValidationError("An offer needs at least one card", field="lines")
    if len(lines) > max_lines:
        raise ValidationError(f"An offer can hold at most {max_lines} cards", field="lines")

    seen = set()
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError(f"Quantity for card {line.card_id} must be at least 1", field="lines")
        if line.quantity > max_quantity:
            raise ValidationError(
                f"Quantity for card {line.card_id} cannot exceed {max_quantity}", field="lines"
            )
        if line.card_id in seen:
            raise ValidationError(f"Card {line.card_id} appears more than once", field="lines")
        seen.add(line.card_id)

    if asking_amount is None and price_mode is PriceMode.MANUAL:
        raise ValidationError("A manual offer needs an asking amount", field="asking_amount")
    if asking_amount is not None and asking_amount < 0:
        raise ValidationError("Asking amount cannot be negative", field="asking_amount")


class OfferService:

    def __init__(
        self,
        repository: OfferRepository,
        max_lines: int = settings.MAX_OFFER_LINES,
        max_quantity: int = settings.MAX_LINE_QUANTITY,
    ):
        self._repository = repository
        self._max_lines = max_lines
        self._max_quantity = max_quantity

    def create_offer(
        self,
        proposer_id: str,
        counterparty_id: str,
        lines: list[ItemLine],
        asking_amount: Optional[Decimal] = None,
        price_mode: PriceMode = PriceMode.MANUAL,
        message: Optional[str] = None,
    ) -> OfferRecord:
        """
        Create an offer and its notification pair.

        Raises ValidationError before anything is written when the lines are
        empty, any quantity is zero or above the per-line cap, or the
        proposer names themselves.
        """
        validate_offer(
            proposer_id, counterparty_id, lines, asking_amount, price_mode, self._max_lines, self._max_quantity
        )

        if asking_amount is None:
            asking_amount = lines_total(lines)

        now = datetime.now(timezone.utc)
        offer = OfferRecord(
            transaction_key=uuid4(),
            proposer_id=proposer_id,
            counterparty_id=counterparty_id,
            lines=lines,
            asking_amount=to_cents(asking_amount),
            price_mode=price_mode,
            message=message,
            created_at=now,
        )

        pair = [
            Notification(
                notification_id=uuid4(),
                owner_id=proposer_id,
                transaction_key=offer.transaction_key,
                role=NotificationRole.PROPOSER,
                created_at=now,
                updated_at=now,
            ),
            Notification(
                notification_id=uuid4(),
                owner_id=counterparty_id,
                transaction_key=offer.transaction_key,
                role=NotificationRole.COUNTERPARTY,
                created_at=now,
                updated_at=now,
            ),
        ]

        self._repository.create_offer(offer, pair)
        logger.info(
            f"Offer {offer.transaction_key} created: {proposer_id} -> {counterparty_id}, "
            f"{len(lines)} line(s), amount {offer.asking_amount}"
        )
        return offer

    def get_offer(self, transaction_key: UUID, acting_user_id: str) -> OfferResponse:
        offer = self._repository.get_offer(transaction_key)
        if offer is None:
            raise OfferNotFound(transaction_key)
        if acting_user_id not in (offer.proposer_id, offer.counterparty_id):
            raise Unauthorized(acting_user_id, "Only participants can view this offer")

        return self._with_status(offer, self._repository.get_notifications(transaction_key))

    def list_offers(self, user_id: str) -> list[OfferResponse]:
        """Offer history for a user, newest first, as proposer or counterparty."""
        offers = self._repository.list_offers_for_user(user_id)
        by_key = {}
        for note in self._repository.list_notifications_for_owner(user_id):
            by_key.setdefault(note.transaction_key, []).append(note)

        return [self._with_status(offer, by_key.get(offer.transaction_key, [])) for offer in offers]

    @staticmethod
    def _with_status(offer: OfferRecord, notifications: list[Notification]) -> OfferResponse:
        # A terminal sibling wins over a stale pending one
        terminal = next((n for n in notifications if n.status.is_terminal), None)
        status = terminal.status if terminal else OfferStatus.PENDING

        return OfferResponse(
            **offer.model_dump(),
            status=status,
            auto_rejected=bool(terminal and terminal.auto_rejected),
        )
