# backend/tests/conftest.py
"""
Shared fixtures for all test modules.
Avoids async fixtures to prevent event loop issues: tests wrap their async
logic in asyncio.run() and open the test database inside that loop.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import app
from app.main import app
from app.shared.core.config import settings
from app.shared.db.base import Base
from app.shared.db.session import build_engine
from app.shared.utils.time_utils import utcnow
from app.modules.whatsapp_connect import models  # noqa: F401 - registers tables on Base
from app.modules.whatsapp_connect.services.graph_client import TokenGrant


# --- SETTINGS ---
@pytest.fixture(autouse=True)
def app_secret():
    """OAuth state signing needs an app secret."""
    with patch.object(settings, "WHATSAPP_APP_SECRET", "test-app-secret"):
        yield "test-app-secret"


# --- TEST CLIENT FIXTURE ---
@pytest.fixture(scope="module")
def test_client():
    """Create a FastAPI test client."""
    return TestClient(app)


# --- DATABASE ---
@asynccontextmanager
async def open_test_db():
    """
    Fresh in-memory SQLite database with all tables.

    Yields a session factory; every session shares the one connection
    (StaticPool), so separate sessions see each other's commits.
    """
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def test_db():
    """Usage: async with test_db() as session_factory: ..."""
    return open_test_db


# --- SAMPLE DATA FIXTURES ---
@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def token_grant():
    """A long-lived grant as returned by a successful code exchange."""
    return TokenGrant(
        access_token="EAAG-test-access-token",
        refresh_token="refresh-token-1",
        expires_at=utcnow() + timedelta(days=60),
    )


def text_message_payload(waba_id="waba-1", wamid="wamid.123", body="hi", wa_id="15551234567", timestamp="1700000000"):
    """A webhook delivery carrying one inbound text message."""
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": waba_id,
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": "15550001111", "phone_number_id": "phone-1"},
                    "contacts": [{"profile": {"name": "Jane Customer"}, "wa_id": wa_id}],
                    "messages": [{
                        "from": wa_id,
                        "id": wamid,
                        "timestamp": timestamp,
                        "type": "text",
                        "text": {"body": body},
                    }],
                },
            }],
        }],
    }


def status_payload(waba_id="waba-1", wamid="wamid.out-1", status="read", timestamp="1700000100", errors=None):
    """A webhook delivery carrying one status update."""
    status_node = {
        "id": wamid,
        "status": status,
        "timestamp": timestamp,
        "recipient_id": "15551234567",
    }
    if errors:
        status_node["errors"] = errors
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": waba_id,
            "changes": [{
                "field": "messages",
                "value": {"messaging_product": "whatsapp", "statuses": [status_node]},
            }],
        }],
    }


# --- MOCK FIXTURES FOR EXTERNAL SERVICES ---
@pytest.fixture
def mock_graph(token_grant):
    """Graph API client whose calls all succeed."""
    graph = MagicMock()
    graph.authorization_url = MagicMock(
        side_effect=lambda state, configuration_id=None: f"https://www.facebook.com/dialog/oauth?state={state}"
    )
    graph.exchange_code = AsyncMock(return_value=token_grant)
    graph.refresh_access_token = AsyncMock()
    graph.subscribe_webhooks = AsyncMock(return_value={"success": True})
    graph.unsubscribe_webhooks = AsyncMock(return_value={"success": True})
    graph.register_phone_number = AsyncMock(return_value={"success": True})
    graph.get_phone_number = AsyncMock(return_value={"display_phone_number": "+1 555-000-1111"})
    graph.send_message = AsyncMock(return_value={
        "messaging_product": "whatsapp",
        "contacts": [{"input": "15551234567", "wa_id": "15551234567"}],
        "messages": [{"id": "wamid.out-1"}],
    })
    return graph


@pytest.fixture
def make_text_payload():
    return text_message_payload


@pytest.fixture
def make_status_payload():
    return status_payload
