# backend/services/ledger.py
"""
Per-user card library used as the trade ledger.

Quantities are never negative: removing a copy the user does not have is a
silent no-op that returns zero. There is no batch operation; callers that
move several units sequence single-unit calls themselves.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Optional

import httpx
from supabase import Client

from core.exceptions import LedgerUnavailable
from core.logger import get_logger
from models.inventory import LibraryCardResponse

logger = get_logger(__name__)


class InventoryLedger(ABC):

    @abstractmethod
    def quantity(self, user_id: str, card_id: str) -> int:
        ...

    @abstractmethod
    def increment(self, user_id: str, card_id: str) -> int:
        """Add one copy and return the new quantity."""

    @abstractmethod
    def decrement(self, user_id: str, card_id: str) -> int:
        """Remove one copy and return the new quantity, floored at zero."""

    @abstractmethod
    def list_cards(self, user_id: str) -> list[LibraryCardResponse]:
        ...


class SupabaseInventoryLedger(InventoryLedger):
    """
    Ledger over the ``library_card`` table.

    Updates are compare-and-set on the previously read quantity, so two
    callers touching the same (user, card) never lose an update. A row that
    reaches zero is deleted.
    """

    TABLE = "library_card"

    def __init__(self, client: Client, cas_attempts: int = 5):
        self._client = client
        self._cas_attempts = cas_attempts

    @contextmanager
    def _transport(self, user_id: str, card_id: str, operation: str):
        try:
            yield
        except httpx.TransportError as exc:
            logger.warning(f"Ledger {operation} transport error for {user_id}/{card_id}: {exc}")
            raise LedgerUnavailable(user_id, card_id, operation) from exc

    def _read(self, user_id: str, card_id: str) -> Optional[int]:
        result = self._client.table(self.TABLE).select("quantity").eq(
            "user_id", user_id
        ).eq("card_id", card_id).execute()

        if not result.data:
            return None
        return max(int(result.data[0]["quantity"]), 0)

    def quantity(self, user_id: str, card_id: str) -> int:
        with self._transport(user_id, card_id, "read"):
            return self._read(user_id, card_id) or 0

    def increment(self, user_id: str, card_id: str) -> int:
        with self._transport(user_id, card_id, "increment"):
            for _ in range(self._cas_attempts):
                current = self._read(user_id, card_id)

                if current is None:
                    # Concurrent first insert loses the race and retries as an update
                    result = self._client.table(self.TABLE).upsert(
                        {"user_id": user_id, "card_id": card_id, "quantity": 1},
                        on_conflict="user_id,card_id",
                        ignore_duplicates=True,
                    ).execute()
                else:
                    result = self._client.table(self.TABLE).update({
                        "quantity": current + 1
                    }).eq("user_id", user_id).eq("card_id", card_id).eq("quantity", current).execute()

                if result.data:
                    return (current or 0) + 1

        logger.warning(f"Ledger increment for {user_id}/{card_id} lost {self._cas_attempts} races")
        raise LedgerUnavailable(user_id, card_id, "increment")

    def decrement(self, user_id: str, card_id: str) -> int:
        with self._transport(user_id, card_id, "decrement"):
            for _ in range(self._cas_attempts):
                current = self._read(user_id, card_id)

                if not current:
                    return 0

                if current == 1:
                    result = self._client.table(self.TABLE).delete().eq(
                        "user_id", user_id
                    ).eq("card_id", card_id).eq("quantity", 1).execute()
                else:
                    result = self._client.table(self.TABLE).update({
                        "quantity": current - 1
                    }).eq("user_id", user_id).eq("card_id", card_id).eq("quantity", current).execute()

                if result.data:
                    return current - 1

        logger.warning(f"Ledger decrement for {user_id}/{card_id} lost {self._cas_attempts} races")
        raise LedgerUnavailable(user_id, card_id, "decrement")

    def list_cards(self, user_id: str) -> list[LibraryCardResponse]:
        with self._transport(user_id, "*", "list"):
            result = self._client.table(self.TABLE).select("*").eq("user_id", user_id).execute()

        return [
            LibraryCardResponse(user_id=row["user_id"], card_id=row["card_id"], quantity=row["quantity"])
            for row in result.data or []
            if row["quantity"] > 0
        ]
