# backend/models/notification.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional

from models.offer import ItemLine, OfferStatus


# ============== Enums ==============

class NotificationRole(str, Enum):
    """Which side of the offer a notification faces."""
    PROPOSER = "proposer"
    COUNTERPARTY = "counterparty"


class NotificationAction(str, Enum):
    """UI affordance offered for a notification row."""
    JUDGE = "judge"
    VIEW = "view"


# ============== Stored Schemas ==============

class Notification(BaseModel):
    """One participant's view of an offer."""
    notification_id: UUID
    owner_id: str
    transaction_key: UUID
    role: NotificationRole
    status: OfferStatus = OfferStatus.PENDING
    is_read: bool = False
    auto_rejected: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DisplayName(BaseModel):
    """Name and handle shown in notification text."""
    user_id: str
    name: str
    handle: str


# ============== Query/Filter Schemas ==============

class NotificationFilters(BaseModel):
    """Filters for listing a user's notifications."""
    status: Optional[OfferStatus] = None
    q: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Free text matched against the other participant's name or handle",
    )
    unread_only: bool = False


# ============== Response Schemas ==============

class DisplayNotification(BaseModel):
    """Notification decorated with role-aware, status-aware text."""
    notification_id: UUID
    transaction_key: UUID
    role: NotificationRole
    status: OfferStatus
    is_read: bool
    auto_rejected: bool = False
    action: NotificationAction

    title: str
    subtitle: str

    counterpart_id: str
    counterpart_name: str
    counterpart_handle: str

    asking_amount: Decimal
    lines: list[ItemLine] = []

    created_at: datetime
    updated_at: datetime
