"""
Integration test fixtures for testing with real local Supabase database.

These fixtures connect to a local Supabase instance and perform real database operations.
Run `supabase start` before running integration tests.
All tests in this directory are automatically marked as integration tests.
"""
import pytest
import subprocess
import os
from pathlib import Path
from dotenv import load_dotenv
from fastapi.testclient import TestClient
from supabase import create_client, Client
from uuid import uuid4

# Path to the project root (where supabase/ folder is located)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent


def pytest_collection_modifyitems(items):
    """Automatically mark all tests in this directory as integration tests."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def setup_test_environment():
    """Load .env.test at session start."""
    # .env.test is in the backend root
    env_test_path = Path(__file__).parent.parent.parent / ".env.test"
    load_dotenv(env_test_path, override=True)
    yield


@pytest.fixture(scope="session")
def supabase_client(setup_test_environment) -> Client:
    """Create a real Supabase client connected to local instance."""
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")

    if not url or not key:
        pytest.skip("SUPABASE_URL and SERVICE_ROLE_KEY must be set in .env.test")

    return create_client(url, key)


@pytest.fixture(scope="session")
def reset_database(setup_test_environment):
    """
    Reset the database before the test session.

    Note: This fixture is optional. If the supabase CLI is not available it
    is skipped. Run `supabase db reset` manually before running integration
    tests if needed.
    """
    import warnings

    try:
        result = subprocess.run(
            ["supabase", "db", "reset", "--no-seed"],
            cwd=str(PROJECT_ROOT),
            capture_output=True,
            text=True,
            timeout=60
        )

        if result.returncode != 0:
            # Database might already be in good state
            warnings.warn(f"Could not reset database: {result.stderr}")
    except FileNotFoundError:
        warnings.warn("supabase CLI not found. Skipping database reset.")
    except subprocess.TimeoutExpired:
        warnings.warn("Database reset timed out. Continuing anyway.")

    yield


@pytest.fixture
def integration_client(supabase_client, reset_database):
    """
    FastAPI TestClient wired to the local Supabase instance.

    The app's client dependency is overridden so the service, ledger and
    directory all talk to the same database the fixtures write to.
    """
    from main import app, get_supabase

    app.dependency_overrides[get_supabase] = lambda: supabase_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(monkeypatch):
    from core.config import settings

    monkeypatch.setattr(settings, "ADMIN_TOKEN", "integration-admin-token")
    return {"X-Admin-Token": "integration-admin-token"}


def _create_user(supabase_client, user_id, name, handle):
    result = supabase_client.table("user").insert({
        "user_id": user_id,
        "user_name": name,
        "user_handle": handle,
    }).execute()

    if not result.data:
        pytest.fail(f"Failed to create test user {user_id}")
    return result.data[0]


@pytest.fixture
def test_user_id():
    """Generate a unique test user ID for each test."""
    return f"test_user_{uuid4().hex[:8]}"


@pytest.fixture
def test_user(supabase_client, test_user_id):
    """
    Create the proposing test user.
    Offers, notifications and library rows cascade when the user is deleted.
    """
    yield _create_user(supabase_client, test_user_id, "Proposer Test", f"proposer_{test_user_id[-8:]}")

    supabase_client.table("user").delete().eq("user_id", test_user_id).execute()


@pytest.fixture
def second_test_user_id():
    """Generate a unique second test user ID for trading tests."""
    return f"test_user_2_{uuid4().hex[:8]}"


@pytest.fixture
def second_test_user(supabase_client, second_test_user_id):
    """
    Create the counterparty test user.
    Automatically cleaned up after the test.
    """
    yield _create_user(supabase_client, second_test_user_id, "Counterparty Test", f"counter_{second_test_user_id[-8:]}")

    supabase_client.table("user").delete().eq("user_id", second_test_user_id).execute()


@pytest.fixture
def trading_setup(supabase_client, test_user, second_test_user):
    """
    Two users where the counterparty owns 5 copies of card_a and 2 of card_b.

    Returns a dict with:
    - proposer: user dict
    - counterparty: user dict
    - cards: {card_id: starting quantity} for the counterparty
    """
    cards = {f"card_a_{uuid4().hex[:6]}": 5, f"card_b_{uuid4().hex[:6]}": 2}
    rows = [
        {"user_id": second_test_user["user_id"], "card_id": card_id, "quantity": quantity}
        for card_id, quantity in cards.items()
    ]

    result = supabase_client.table("library_card").insert(rows).execute()
    if len(result.data or []) != len(rows):
        pytest.fail("Failed to seed counterparty library")

    yield {
        "proposer": test_user,
        "counterparty": second_test_user,
        "cards": cards,
    }
