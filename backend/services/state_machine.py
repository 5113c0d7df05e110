# backend/services/state_machine.py
"""
Offer state machine.

An offer moves Pending -> Accepted | Rejected exactly once. Transitions are
keyed by transaction key, never by a single notification, and both
notifications of the pair are moved by one conditional update.

Accepting verifies the counterparty's library, then moves the cards one
unit at a time: take a copy from the counterparty, give it to the proposer.
Every step is written to the settlement log, so a transfer that stops part
way can be replayed without moving any unit twice.
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from core.config import settings
from core.exceptions import (
    LedgerUnavailable,
    NotPending,
    OfferNotFound,
    PartialTransferFailure,
    PersistenceError,
    Unauthorized,
    ValidationError,
)
from core.logger import get_logger
from models.notification import Notification, NotificationRole
from models.offer import (
    OfferAction,
    OfferRecord,
    OfferStatus,
    RespondOutcome,
    RespondResult,
    SettlementRecord,
    SettlementState,
    StockShortfall,
)
from services.ledger import InventoryLedger
from services.offer_repository import OfferRepository

logger = get_logger(__name__)


class _StockDrained(Exception):
    """The counterparty had no copy left to take when a debit was due."""

    def __init__(self, card_id: str, available: int):
        super().__init__(f"No copy of {card_id} left to take (available: {available})")
        self.card_id = card_id
        self.available = available


class _DebitNotConfirmed(Exception):
    """A debit returned a quantity other than the one it should have produced."""


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class TransactionLocks:
    """Per-transaction mutexes, created on demand and dropped when unused."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: dict[UUID, _LockEntry] = {}

    @contextmanager
    def hold(self, transaction_key: UUID):
        with self._guard:
            entry = self._entries.setdefault(transaction_key, _LockEntry())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[transaction_key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class OfferStateMachine:

    def __init__(
        self,
        repository: OfferRepository,
        ledger: InventoryLedger,
        locks: Optional[TransactionLocks] = None,
        max_retries: int = settings.LEDGER_MAX_RETRIES,
    ):
        self._repository = repository
        self._ledger = ledger
        self._locks = locks or TransactionLocks()
        self._max_retries = max_retries

    # ============== Entry points ==============

    def respond(self, transaction_key: UUID, acting_user_id: str, action: OfferAction) -> RespondResult:
        """
        Accept or reject a pending offer on behalf of its counterparty.

        Raises OfferNotFound, NotPending when the offer was already answered,
        Unauthorized when the actor is not the counterparty, and
        PartialTransferFailure when the transfer pass stops part way.
        """
        with self._locks.hold(transaction_key):
            offer, pair = self._load_pending(transaction_key)
            self._authorize(offer, pair, acting_user_id)

            if action is OfferAction.REJECT:
                self._finish(offer, OfferStatus.REJECTED)
                logger.info(f"Offer {transaction_key} rejected by {acting_user_id}")
                return RespondResult(
                    transaction_key=transaction_key,
                    status=OfferStatus.REJECTED,
                    outcome=RespondOutcome.REJECTED,
                )

            return self._accept(offer)

    def replay(self, transaction_key: UUID) -> RespondResult:
        """Resume a transfer that stopped part way, acting for the counterparty."""
        with self._locks.hold(transaction_key):
            offer, _ = self._load_pending(transaction_key)

            settlement = self._repository.get_settlement(transaction_key)
            if settlement is None or settlement.state is not SettlementState.PARTIAL:
                raise ValidationError(f"Offer {transaction_key} has no partial transfer to replay")

            logger.info(f"Replaying transfer for offer {transaction_key}")
            return self._accept(offer)

    # ============== Guards ==============

    def _load_pending(self, transaction_key: UUID) -> tuple[OfferRecord, list[Notification]]:
        offer = self._repository.get_offer(transaction_key)
        if offer is None:
            raise OfferNotFound(transaction_key)

        pair = self._repository.get_notifications(transaction_key)
        if len(pair) != 2:
            raise PersistenceError(
                f"Offer {transaction_key} has {len(pair)} notification(s), expected a pair",
                transaction_key,
            )

        terminal = next((n for n in pair if n.status.is_terminal), None)
        if terminal is not None:
            raise NotPending(transaction_key, terminal.status.value)

        return offer, pair

    @staticmethod
    def _authorize(offer: OfferRecord, pair: list[Notification], acting_user_id: str) -> None:
        if acting_user_id not in (offer.proposer_id, offer.counterparty_id):
            raise Unauthorized(acting_user_id, "Only participants of the offer can respond to it")

        counterparty_note = next(n for n in pair if n.role is NotificationRole.COUNTERPARTY)
        if counterparty_note.owner_id != acting_user_id:
            raise Unauthorized(acting_user_id, "Only the counterparty can accept or reject this offer")

    # ============== Accept path ==============

    def _accept(self, offer: OfferRecord) -> RespondResult:
        key = offer.transaction_key
        settlement = self._repository.get_settlement(key)

        shortfalls = self._verify(offer, settlement)
        if shortfalls:
            if settlement is not None and settlement.moved_any():
                # Some units already moved; an operator has to settle this one
                raise self._mark_partial(
                    offer, settlement, f"Insufficient stock on replay: {[s.card_id for s in shortfalls]}"
                )

            if settlement is not None:
                self._void(settlement, "Insufficient stock on replay")
            return self._auto_reject(offer, shortfalls)

        if settlement is None:
            settlement = SettlementRecord(transaction_key=key, updated_at=self._now())
        settlement.state = SettlementState.IN_PROGRESS
        settlement.last_error = None
        self._save(settlement)

        try:
            self._transfer(offer, settlement)
        except _StockDrained as exc:
            # Stock left between verification and transfer
            if settlement.moved_any():
                raise self._mark_partial(offer, settlement, str(exc)) from exc

            self._void(settlement, str(exc))
            line = next(line for line in offer.lines if line.card_id == exc.card_id)
            return self._auto_reject(offer, [StockShortfall(
                card_id=exc.card_id,
                requested=line.quantity,
                available=exc.available,
            )])

        try:
            self._finish(offer, OfferStatus.ACCEPTED)
        except NotPending:
            logger.error(f"Offer {key} left Pending during its own transfer; reconciliation needed")
            settlement.state = SettlementState.PARTIAL
            settlement.last_error = "Offer left Pending during transfer"
            self._save(settlement)
            raise

        settlement.state = SettlementState.COMPLETE
        self._save(settlement)

        logger.info(f"Offer {key} accepted by {offer.counterparty_id}")
        return RespondResult(
            transaction_key=key,
            status=OfferStatus.ACCEPTED,
            outcome=RespondOutcome.ACCEPTED,
            transferred_lines=list(offer.lines),
        )

    def _verify(self, offer: OfferRecord, settlement: Optional[SettlementRecord]) -> list[StockShortfall]:
        """Compare the counterparty's library with what is still to be taken."""
        shortfalls = []
        for line in offer.lines:
            debited = 0
            if settlement is not None and line.card_id in settlement.progress:
                debited = settlement.progress[line.card_id].debited

            outstanding = line.quantity - debited
            if outstanding <= 0:
                continue

            available = self._ledger.quantity(offer.counterparty_id, line.card_id)
            if available < outstanding:
                shortfalls.append(StockShortfall(
                    card_id=line.card_id,
                    requested=outstanding,
                    available=available,
                ))
        return shortfalls

    def _transfer(self, offer: OfferRecord, settlement: SettlementRecord) -> None:
        try:
            for line in offer.lines:
                progress = settlement.progress_for(line.card_id)
                for unit in range(line.quantity):
                    if progress.debited <= unit:
                        self._apply_unit(self._ledger.decrement, offer.counterparty_id, line.card_id, -1)
                        progress.debited += 1
                        self._save(settlement)
                    if progress.credited <= unit:
                        self._apply_unit(self._ledger.increment, offer.proposer_id, line.card_id, 1)
                        progress.credited += 1
                        self._save(settlement)
        except _StockDrained:
            raise
        except Exception as exc:
            raise self._mark_partial(offer, settlement, str(exc)) from exc

    def _apply_unit(self, operation: Callable[[str, str], int], user_id: str, card_id: str, delta: int) -> int:
        """
        Apply one ledger step, retrying when the ledger is unreachable.

        A failed call may still have applied, so the quantity is re-read
        before each retry and the step is treated as done if it moved by delta.
        A debit must be seen to land: decrementing an empty entry is a silent
        no-op in the ledger, and crediting after one would create a card.
        """
        before = self._ledger.quantity(user_id, card_id)
        if before + delta < 0:
            raise _StockDrained(card_id, before)

        for attempt in range(self._max_retries + 1):
            try:
                after = operation(user_id, card_id)
                if delta < 0 and after != before + delta:
                    raise _DebitNotConfirmed(
                        f"Debit of {card_id} from {user_id} not confirmed: {before} -> {after}"
                    )
                return after
            except LedgerUnavailable:
                if attempt == self._max_retries:
                    raise
                after = self._ledger.quantity(user_id, card_id)
                if after == before + delta:
                    logger.warning(f"Ledger step for {user_id}/{card_id} applied despite error")
                    return after
                logger.warning(f"Retrying ledger step for {user_id}/{card_id} (attempt {attempt + 2})")

    def _mark_partial(self, offer: OfferRecord, settlement: SettlementRecord, error: str) -> PartialTransferFailure:
        settlement.state = SettlementState.PARTIAL
        settlement.last_error = error
        try:
            self._save(settlement)
        except Exception:
            logger.exception(f"Could not record partial transfer marker for offer {offer.transaction_key}")

        logger.error(
            f"Partial transfer for offer {offer.transaction_key} "
            f"({offer.counterparty_id} -> {offer.proposer_id}): {error}; "
            f"progress={settlement.progress_dump()}"
        )
        return PartialTransferFailure(offer.transaction_key, settlement.progress_dump())

    def _void(self, settlement: SettlementRecord, error: str) -> None:
        settlement.state = SettlementState.VOIDED
        settlement.last_error = error
        self._save(settlement)

    def _auto_reject(self, offer: OfferRecord, shortfalls: list[StockShortfall]) -> RespondResult:
        self._finish(offer, OfferStatus.REJECTED, auto_rejected=True)
        logger.info(
            f"Offer {offer.transaction_key} auto-rejected, insufficient stock: {[s.card_id for s in shortfalls]}"
        )
        return RespondResult(
            transaction_key=offer.transaction_key,
            status=OfferStatus.REJECTED,
            outcome=RespondOutcome.AUTO_REJECTED_INSUFFICIENT_STOCK,
            shortfalls=shortfalls,
        )

    # ============== Helpers ==============

    def _finish(self, offer: OfferRecord, status: OfferStatus, auto_rejected: bool = False) -> None:
        changed = self._repository.transition(offer.transaction_key, status, self._now(), auto_rejected)
        if changed == 0:
            current = next(
                (n.status.value for n in self._repository.get_notifications(offer.transaction_key)
                 if n.status.is_terminal),
                OfferStatus.PENDING.value,
            )
            raise NotPending(offer.transaction_key, current)

    def _save(self, settlement: SettlementRecord) -> None:
        settlement.updated_at = self._now()
        self._repository.save_settlement(settlement)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)
