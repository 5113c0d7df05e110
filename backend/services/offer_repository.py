# backend/services/offer_repository.py
"""
Storage for offers, their notification pairs and settlement logs.

Tables: ``offer``, ``offer_line``, ``notification`` and ``offer_settlement``.
A notification pair is always written and transitioned with a single
statement keyed by ``transaction_key`` so the two rows never diverge.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from supabase import Client

from core.exceptions import PersistenceError
from core.logger import get_logger
from models.notification import Notification
from models.offer import (
    ItemLine,
    OfferRecord,
    OfferStatus,
    SettlementRecord,
    SettlementState,
)

logger = get_logger(__name__)


class OfferRepository(ABC):

    @abstractmethod
    def create_offer(self, offer: OfferRecord, notifications: list[Notification]) -> None:
        """Persist an offer together with its notification pair. Both or neither."""

    @abstractmethod
    def get_offer(self, transaction_key: UUID) -> Optional[OfferRecord]:
        ...

    @abstractmethod
    def get_offers(self, transaction_keys: Iterable[UUID]) -> dict[UUID, OfferRecord]:
        ...

    @abstractmethod
    def list_offers_for_user(self, user_id: str) -> list[OfferRecord]:
        ...

    @abstractmethod
    def get_notifications(self, transaction_key: UUID) -> list[Notification]:
        ...

    @abstractmethod
    def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        ...

    @abstractmethod
    def list_notifications_for_owner(self, owner_id: str) -> list[Notification]:
        ...

    @abstractmethod
    def transition(
        self,
        transaction_key: UUID,
        status: OfferStatus,
        now: datetime,
        auto_rejected: bool = False,
    ) -> int:
        """
        Move both notifications of a transaction out of Pending.

        Only rows still Pending are touched. Returns the number of rows
        changed; zero means another responder got there first.
        """

    @abstractmethod
    def mark_read(self, notification_id: UUID) -> Optional[Notification]:
        ...

    @abstractmethod
    def get_settlement(self, transaction_key: UUID) -> Optional[SettlementRecord]:
        ...

    @abstractmethod
    def save_settlement(self, settlement: SettlementRecord) -> None:
        ...

    @abstractmethod
    def list_settlements(self, state: SettlementState) -> list[SettlementRecord]:
        ...


def _offer_from_rows(row: dict, line_rows: list[dict]) -> OfferRecord:
    return OfferRecord(
        transaction_key=row["transaction_key"],
        proposer_id=row["proposer_id"],
        counterparty_id=row["counterparty_id"],
        asking_amount=Decimal(str(row["asking_amount"])).quantize(Decimal("0.01")),
        price_mode=row.get("price_mode") or "manual",
        message=row.get("message"),
        created_at=row["created_at"],
        lines=[
            ItemLine(
                card_id=line["card_id"],
                quantity=line["quantity"],
                unit_price_hint=Decimal(str(line.get("unit_price_hint") or 0)),
                card_name=line.get("card_name"),
                card_image_url=line.get("card_image_url"),
            )
            for line in sorted(line_rows, key=lambda r: r.get("line_number", 0))
        ],
    )


class SupabaseOfferRepository(OfferRepository):

    def __init__(self, client: Client):
        self._client = client

    # ============== Offers ==============

    def create_offer(self, offer: OfferRecord, notifications: list[Notification]) -> None:
        key = str(offer.transaction_key)
        offer_data = offer.model_dump(mode="json", exclude={"lines"})

        result = self._client.table("offer").insert(offer_data).execute()
        if not result.data:
            raise PersistenceError("Failed to create offer", offer.transaction_key)

        try:
            line_data = [
                {"transaction_key": key, "line_number": i, **line.model_dump(mode="json")}
                for i, line in enumerate(offer.lines)
            ]
            lines_result = self._client.table("offer_line").insert(line_data).execute()

            notification_data = [n.model_dump(mode="json") for n in notifications]
            pair_result = self._client.table("notification").insert(notification_data).execute()

            if not lines_result.data or len(pair_result.data or []) != len(notifications):
                raise PersistenceError("Failed to create notification pair", offer.transaction_key)
        except Exception as exc:
            logger.error(f"Rolling back offer {key} after a failed write: {exc}")
            # offer_line and notification rows cascade from offer
            self._client.table("offer").delete().eq("transaction_key", key).execute()
            if isinstance(exc, PersistenceError):
                raise
            raise PersistenceError(f"Failed to store offer lines: {exc}", offer.transaction_key) from exc

    def get_offer(self, transaction_key: UUID) -> Optional[OfferRecord]:
        return self.get_offers([transaction_key]).get(transaction_key)

    def get_offers(self, transaction_keys: Iterable[UUID]) -> dict[UUID, OfferRecord]:
        keys = [str(k) for k in transaction_keys]
        if not keys:
            return {}

        offers_result = self._client.table("offer").select("*").in_("transaction_key", keys).execute()
        return self._with_lines(offers_result.data or [])

    def list_offers_for_user(self, user_id: str) -> list[OfferRecord]:
        result = self._client.table("offer").select("*").or_(
            f"proposer_id.eq.{user_id},counterparty_id.eq.{user_id}"
        ).order("created_at", desc=True).execute()

        offers = self._with_lines(result.data or [])
        return sorted(offers.values(), key=lambda o: o.created_at, reverse=True)

    def _with_lines(self, offer_rows: list[dict]) -> dict[UUID, OfferRecord]:
        if not offer_rows:
            return {}

        keys = [row["transaction_key"] for row in offer_rows]
        lines_result = self._client.table("offer_line").select("*").in_("transaction_key", keys).execute()

        lines_by_key: dict[str, list[dict]] = {}
        for line in lines_result.data or []:
            lines_by_key.setdefault(line["transaction_key"], []).append(line)

        offers = {}
        for row in offer_rows:
            offer = _offer_from_rows(row, lines_by_key.get(row["transaction_key"], []))
            offers[offer.transaction_key] = offer
        return offers

    # ============== Notifications ==============

    def get_notifications(self, transaction_key: UUID) -> list[Notification]:
        result = self._client.table("notification").select("*").eq(
            "transaction_key", str(transaction_key)
        ).execute()

        return [Notification.model_validate(row) for row in result.data or []]

    def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        result = self._client.table("notification").select("*").eq(
            "notification_id", str(notification_id)
        ).execute()

        if not result.data:
            return None
        return Notification.model_validate(result.data[0])

    def list_notifications_for_owner(self, owner_id: str) -> list[Notification]:
        result = self._client.table("notification").select("*").eq(
            "owner_id", owner_id
        ).order("updated_at", desc=True).execute()

        return [Notification.model_validate(row) for row in result.data or []]

    def transition(
        self,
        transaction_key: UUID,
        status: OfferStatus,
        now: datetime,
        auto_rejected: bool = False,
    ) -> int:
        result = self._client.table("notification").update({
            "status": status.value,
            "auto_rejected": auto_rejected,
            "updated_at": now.isoformat(),
        }).eq("transaction_key", str(transaction_key)).eq(
            "status", OfferStatus.PENDING.value
        ).execute()

        return len(result.data or [])

    def mark_read(self, notification_id: UUID) -> Optional[Notification]:
        # updated_at is left alone; it orders the lifecycle, not reads
        result = self._client.table("notification").update({
            "is_read": True,
        }).eq("notification_id", str(notification_id)).execute()

        if not result.data:
            return None
        return Notification.model_validate(result.data[0])

    # ============== Settlements ==============

    def get_settlement(self, transaction_key: UUID) -> Optional[SettlementRecord]:
        result = self._client.table("offer_settlement").select("*").eq(
            "transaction_key", str(transaction_key)
        ).execute()

        if not result.data:
            return None
        return SettlementRecord.model_validate(result.data[0])

    def save_settlement(self, settlement: SettlementRecord) -> None:
        result = self._client.table("offer_settlement").upsert(
            settlement.model_dump(mode="json"),
            on_conflict="transaction_key",
        ).execute()

        if not result.data:
            raise PersistenceError("Failed to record settlement progress", settlement.transaction_key)

    def list_settlements(self, state: SettlementState) -> list[SettlementRecord]:
        result = self._client.table("offer_settlement").select("*").eq(
            "state", state.value
        ).order("updated_at", desc=True).execute()

        return [SettlementRecord.model_validate(row) for row in result.data or []]
