"""
Conftest for unit tests.

Endpoints run against in-memory fakes through FastAPI dependency overrides;
the Supabase classes are tested against a mocked client.
All tests in this directory are automatically marked as unit tests.
"""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock
from decimal import Decimal
import sys
from pathlib import Path

# Add parent directory to path to import main
backend_path = Path(__file__).parent.parent.parent
sys.path.insert(0, str(backend_path))

from main import app, get_directory, get_ledger, get_repository
from models.offer import ItemLine
from services.notification_view import NotificationView
from services.offers import OfferService
from services.state_machine import OfferStateMachine

from fakes import FakeDirectory, FakeInventoryLedger, FakeOfferRepository, MockTableManager


def pytest_collection_modifyitems(items):
    """Automatically mark all tests in this directory as unit tests."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


# ============== Users ==============

@pytest.fixture
def proposer_id():
    return "proposer_user_123"


@pytest.fixture
def counterparty_id():
    return "counterparty_user_456"


@pytest.fixture
def outsider_id():
    return "outsider_user_789"


# ============== Fakes ==============

@pytest.fixture
def ledger(proposer_id, counterparty_id):
    """Counterparty holds 5 copies of card X and 2 of card Y; proposer holds 1 X."""
    return FakeInventoryLedger({
        (counterparty_id, "card_x"): 5,
        (counterparty_id, "card_y"): 2,
        (proposer_id, "card_x"): 1,
    })


@pytest.fixture
def repository():
    return FakeOfferRepository()


@pytest.fixture
def directory(proposer_id, counterparty_id):
    return FakeDirectory({
        proposer_id: ("Ash Ketchum", "ash"),
        counterparty_id: ("Misty Waterflower", "misty"),
    })


@pytest.fixture
def offer_service(repository):
    return OfferService(repository, max_lines=5)


@pytest.fixture
def machine(repository, ledger):
    return OfferStateMachine(repository, ledger, max_retries=2)


@pytest.fixture
def view(repository, directory):
    return NotificationView(repository, directory)


@pytest.fixture
def sample_lines():
    return [ItemLine(card_id="card_x", quantity=3, unit_price_hint=Decimal("1.50"), card_name="Card X")]


@pytest.fixture
def pending_offer(offer_service, proposer_id, counterparty_id, sample_lines):
    """A pending offer for 3 copies of card X at $10.00."""
    return offer_service.create_offer(proposer_id, counterparty_id, sample_lines, Decimal("10.00"))


# ============== HTTP ==============

@pytest.fixture
def client(repository, ledger, directory):
    """Test client whose storage is the in-memory fakes."""
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_directory] = lambda: directory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_supabase():
    """Supabase client whose tables are managed by a MockTableManager."""
    manager = MockTableManager()
    mock = MagicMock()
    mock.table.side_effect = manager.table_handler
    mock.manager = manager
    return mock
