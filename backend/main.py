from fastapi import FastAPI, Depends, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from functools import lru_cache
import secrets
from supabase import create_client, Client
from uuid import UUID
from typing import Optional

from core.config import settings
from core.error_handler import register_exception_handlers
from core.exceptions import Unauthorized
from core.logger import setup_logging, get_logger
from models.inventory import LibraryCardAdjust, LibraryCardResponse, LibraryResponse
from models.notification import DisplayNotification, Notification, NotificationFilters
from models.offer import (
    OfferCreate,
    OfferRespond,
    OfferResponse,
    OfferStatus,
    PartialSettlementListResponse,
    PriceQuoteRequest,
    PriceQuoteResponse,
    RespondResult,
    SettlementState,
)
from services.directory import DirectoryLookup, SupabaseDirectory
from services.ledger import InventoryLedger, SupabaseInventoryLedger
from services.notification_view import NotificationView
from services.offer_repository import OfferRepository, SupabaseOfferRepository
from services.offers import OfferService
from services.pricing import quote
from services.state_machine import OfferStateMachine, TransactionLocks

setup_logging()
logger = get_logger(__name__)

app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)

# CORS for Expo
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Shared by every request so responses to one offer are serialized
transaction_locks = TransactionLocks()


# ============== Dependencies ==============

@lru_cache
def get_supabase() -> Client:
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)


def get_repository(client: Client = Depends(get_supabase)) -> OfferRepository:
    return SupabaseOfferRepository(client)


def get_ledger(client: Client = Depends(get_supabase)) -> InventoryLedger:
    return SupabaseInventoryLedger(client, cas_attempts=settings.LEDGER_CAS_ATTEMPTS)


def get_directory(client: Client = Depends(get_supabase)) -> DirectoryLookup:
    return SupabaseDirectory(client)


def get_offer_service(repository: OfferRepository = Depends(get_repository)) -> OfferService:
    return OfferService(
        repository,
        max_lines=settings.MAX_OFFER_LINES,
        max_quantity=settings.MAX_LINE_QUANTITY,
    )


def get_state_machine(
    repository: OfferRepository = Depends(get_repository),
    ledger: InventoryLedger = Depends(get_ledger),
) -> OfferStateMachine:
    return OfferStateMachine(
        repository,
        ledger,
        locks=transaction_locks,
        max_retries=settings.LEDGER_MAX_RETRIES,
    )


def get_notification_view(
    repository: OfferRepository = Depends(get_repository),
    directory: DirectoryLookup = Depends(get_directory),
) -> NotificationView:
    return NotificationView(repository, directory)


def acting_user(x_user_id: Optional[str] = Header(None)) -> str:
    """The user making the request, passed explicitly by the client."""
    if not x_user_id:
        raise Unauthorized(None, "X-User-Id header is required")
    return x_user_id


def require_self(user_id: str, acting_user_id: str) -> None:
    if user_id != acting_user_id:
        raise Unauthorized(acting_user_id, "You can only access your own records")


def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    if not settings.ADMIN_TOKEN or not x_admin_token \
            or not secrets.compare_digest(x_admin_token, settings.ADMIN_TOKEN):
        raise Unauthorized(None, "Admin token required")


@app.get("/")
def read_root():
    return {"message": settings.APP_NAME, "version": settings.APP_VERSION}

@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Library Endpoints ==============

@app.get("/users/{user_id}/library", response_model=LibraryResponse)
async def get_library(user_id: str, ledger: InventoryLedger = Depends(get_ledger)):
    """Get every card a user holds."""
    cards = ledger.list_cards(user_id)

    return {
        "user_id": user_id,
        "cards": cards,
        "total_cards": sum(card.quantity for card in cards),
    }


@app.get("/users/{user_id}/library/{card_id}", response_model=LibraryCardResponse)
async def get_library_card(user_id: str, card_id: str, ledger: InventoryLedger = Depends(get_ledger)):
    """Get how many copies of a card a user holds (zero when absent)."""
    return {"user_id": user_id, "card_id": card_id, "quantity": ledger.quantity(user_id, card_id)}


@app.post("/library/add", response_model=LibraryCardResponse)
async def add_library_card(
    card: LibraryCardAdjust,
    user_id: str = Depends(acting_user),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Add one copy of a card to the caller's library."""
    require_self(card.user_id, user_id)
    quantity = ledger.increment(card.user_id, card.card_id)

    return {"user_id": card.user_id, "card_id": card.card_id, "quantity": quantity}


@app.post("/library/remove", response_model=LibraryCardResponse)
async def remove_library_card(
    card: LibraryCardAdjust,
    user_id: str = Depends(acting_user),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Remove one copy of a card. Removing a card the user does not hold is a no-op."""
    require_self(card.user_id, user_id)
    quantity = ledger.decrement(card.user_id, card.card_id)

    return {"user_id": card.user_id, "card_id": card.card_id, "quantity": quantity}


# ============== Offer Endpoints ==============

@app.post("/offers/quote", response_model=PriceQuoteResponse)
async def quote_offer(request: PriceQuoteRequest):
    """Suggested asking amounts from catalog trend and low prices."""
    return quote(request.lines)


@app.post("/offers", response_model=OfferResponse, status_code=201)
async def create_offer(
    offer: OfferCreate,
    user_id: str = Depends(acting_user),
    service: OfferService = Depends(get_offer_service),
):
    """Propose an offer to another user. Both participants get a pending notification."""
    record = service.create_offer(
        proposer_id=user_id,
        counterparty_id=offer.counterparty_id,
        lines=offer.lines,
        asking_amount=offer.asking_amount,
        price_mode=offer.price_mode,
        message=offer.message,
    )

    return OfferResponse(**record.model_dump(), status=OfferStatus.PENDING)


@app.get("/offers/{transaction_key}", response_model=OfferResponse)
async def get_offer(
    transaction_key: UUID,
    user_id: str = Depends(acting_user),
    service: OfferService = Depends(get_offer_service),
):
    """Get an offer and its current status. Participants only."""
    return service.get_offer(transaction_key, user_id)


@app.get("/users/{user_id}/offers", response_model=list[OfferResponse])
async def list_user_offers(
    user_id: str,
    acting_user_id: str = Depends(acting_user),
    service: OfferService = Depends(get_offer_service),
):
    """Offer history for the caller, newest first."""
    require_self(user_id, acting_user_id)
    return service.list_offers(user_id)


@app.post("/offers/{transaction_key}/respond", response_model=RespondResult)
def respond_to_offer(
    transaction_key: UUID,
    response: OfferRespond,
    user_id: str = Depends(acting_user),
    machine: OfferStateMachine = Depends(get_state_machine),
):
    """Accept or reject an offer. Only the counterparty may respond, and only once."""
    return machine.respond(transaction_key, user_id, response.action)


# ============== Notification Endpoints ==============

@app.get("/users/{user_id}/notifications", response_model=list[DisplayNotification])
async def list_notifications(
    user_id: str,
    status: Optional[OfferStatus] = Query(None),
    q: Optional[str] = Query(None, max_length=100),
    unread_only: bool = Query(False),
    acting_user_id: str = Depends(acting_user),
    view: NotificationView = Depends(get_notification_view),
):
    """List the caller's notifications, one row per offer."""
    require_self(user_id, acting_user_id)
    filters = NotificationFilters(status=status, q=q, unread_only=unread_only)

    return view.list_for_user(user_id, filters)


@app.patch("/notifications/{notification_id}/read", response_model=Notification)
async def mark_notification_read(
    notification_id: UUID,
    user_id: str = Depends(acting_user),
    view: NotificationView = Depends(get_notification_view),
):
    """Mark a notification as read. Has no effect on the offer."""
    return view.mark_read(notification_id, user_id)


# ============== Admin Endpoints ==============

@app.get(
    "/admin/settlements/partial",
    response_model=PartialSettlementListResponse,
    dependencies=[Depends(require_admin)],
)
async def list_partial_settlements(repository: OfferRepository = Depends(get_repository)):
    """Transfers that stopped part way and still need a replay."""
    settlements = repository.list_settlements(SettlementState.PARTIAL)

    return {"settlements": settlements, "total": len(settlements)}


@app.post(
    "/admin/offers/{transaction_key}/replay",
    response_model=RespondResult,
    dependencies=[Depends(require_admin)],
)
def replay_offer_transfer(
    transaction_key: UUID,
    machine: OfferStateMachine = Depends(get_state_machine),
):
    """Resume a partial transfer from where its settlement log stopped."""
    return machine.replay(transaction_key)
