# backend/models/inventory.py
from pydantic import BaseModel, Field, ConfigDict


# ============== Base Schemas ==============

class LibraryCardBase(BaseModel):
    """A card entry within a user's library (the trade ledger)."""
    card_id: str
    quantity: int = Field(default=0, ge=0, description="Number of copies owned")


# ============== Action Schemas ==============

class LibraryCardAdjust(BaseModel):
    """Schema for adding or removing a single copy of a card."""
    user_id: str = Field(min_length=1)
    card_id: str = Field(min_length=1)


# ============== Response Schemas ==============

class LibraryCardResponse(LibraryCardBase):
    """Ledger entry with owner context."""
    user_id: str

    model_config = ConfigDict(from_attributes=True)


class LibraryResponse(BaseModel):
    """All ledger entries for a user."""
    user_id: str
    cards: list[LibraryCardResponse] = []
    total_cards: int = Field(default=0, description="Sum of all card quantities")
