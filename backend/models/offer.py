# backend/models/offer.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional


# ============== Enums ==============

class OfferStatus(str, Enum):
    """Offer lifecycle states. Pending is the only non-terminal state."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not OfferStatus.PENDING


class OfferAction(str, Enum):
    """Responses the counterparty can give to a pending offer."""
    ACCEPT = "accept"
    REJECT = "reject"


class RespondOutcome(str, Enum):
    """How a response resolved the offer."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    AUTO_REJECTED_INSUFFICIENT_STOCK = "auto_rejected_insufficient_stock"


class PriceMode(str, Enum):
    """How the asking amount was chosen in the client."""
    TREND = "trend"
    LOW = "low"
    MANUAL = "manual"


class SettlementState(str, Enum):
    """
    Progress of the unit-by-unit transfer for an accepted offer.

    Voided marks a transfer that stopped before any unit moved because the
    counterparty's stock ran out after verification.
    """
    IN_PROGRESS = "in_progress"
    PARTIAL = "partial"
    COMPLETE = "complete"
    VOIDED = "voided"


# ============== Base Schemas ==============

class ItemLine(BaseModel):
    """A card and the number of copies changing hands."""
    card_id: str = Field(min_length=1)
    quantity: int = Field(ge=0, le=2**32 - 1, description="Number of copies to trade")
    unit_price_hint: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Display-only unit price taken from the catalog",
    )

    # Display data copied from the catalog by the client
    card_name: Optional[str] = None
    card_image_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)


# ============== Create Schemas ==============

class OfferCreate(BaseModel):
    """Schema for proposing a new offer. The proposer comes from X-User-Id."""
    counterparty_id: str = Field(min_length=1, description="User whose cards are requested")
    lines: list[ItemLine] = Field(description="Cards requested from the counterparty")
    asking_amount: Optional[Decimal] = Field(
        default=None,
        description="Amount offered; derived from price hints when omitted in trend/low mode",
    )
    price_mode: PriceMode = PriceMode.MANUAL
    message: Optional[str] = Field(default=None, max_length=500)


class OfferRecord(BaseModel):
    """Immutable record of what was proposed. Single source of truth for the offer."""
    transaction_key: UUID
    proposer_id: str
    counterparty_id: str
    lines: tuple[ItemLine, ...]
    asking_amount: Decimal
    price_mode: PriceMode = PriceMode.MANUAL
    message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(frozen=True, from_attributes=True)


# ============== Action Schemas ==============

class OfferRespond(BaseModel):
    """Schema for the counterparty's response."""
    action: OfferAction


# ============== Response Schemas ==============

class OfferResponse(OfferRecord):
    """Offer with the shared status of its notification pair."""
    status: OfferStatus
    auto_rejected: bool = False


class StockShortfall(BaseModel):
    """A line the counterparty could no longer cover at acceptance time."""
    card_id: str
    requested: int
    available: int


class RespondResult(BaseModel):
    """Result of responding to an offer."""
    transaction_key: UUID
    status: OfferStatus
    outcome: RespondOutcome
    transferred_lines: Optional[list[ItemLine]] = None
    shortfalls: Optional[list[StockShortfall]] = None


# ============== Pricing Schemas ==============

class PriceQuoteLine(BaseModel):
    """Catalog prices for one card, as shown on the offer screen."""
    card_id: str = Field(min_length=1)
    quantity: int = Field(ge=0)
    trend_price: Optional[Decimal] = Field(default=None, ge=0)
    low_price: Optional[Decimal] = Field(default=None, ge=0)


class PriceQuoteRequest(BaseModel):
    lines: list[PriceQuoteLine]


class PriceQuoteResponse(BaseModel):
    """Suggested asking amounts. Display only."""
    trend_total: Decimal
    low_total: Decimal


# ============== Settlement Schemas ==============

class LineProgress(BaseModel):
    """Units of one line already taken from the counterparty and given to the proposer."""
    debited: int = 0
    credited: int = 0


class SettlementRecord(BaseModel):
    """Applied-units log for one accepted offer."""
    transaction_key: UUID
    state: SettlementState = SettlementState.IN_PROGRESS
    progress: dict[str, LineProgress] = {}
    last_error: Optional[str] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def progress_for(self, card_id: str) -> LineProgress:
        return self.progress.setdefault(card_id, LineProgress())

    def moved_any(self) -> bool:
        return any(p.debited or p.credited for p in self.progress.values())

    def progress_dump(self) -> dict[str, dict[str, int]]:
        return {card_id: p.model_dump() for card_id, p in self.progress.items()}


class PartialSettlementListResponse(BaseModel):
    """Settlements an operator needs to reconcile."""
    settlements: list[SettlementRecord]
    total: int
