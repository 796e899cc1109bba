# backend/tests/test_tenant_api.py
"""
HTTP surface of the tenant and messaging routers.

Service methods are patched, so these tests cover routing, request
validation and the mapping of domain exceptions to status codes.
"""
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.main import app
from app.shared.db.session import get_db
from app.shared.utils.exceptions import (
    ConcurrentModificationError,
    DuplicateTenantError,
    EntityNotFoundError,
    InvalidOAuthStateError,
    InvalidPinError,
    InvalidStateError,
    MissingConfigurationError,
    TokenExpiredError,
    UpstreamFailureError,
)
from app.modules.whatsapp_connect.constants import ConnectionStatus
from app.modules.whatsapp_connect.services.connection_service import WhatsAppConnectionService
from app.modules.whatsapp_connect.services.messaging_service import WhatsAppMessagingService

TENANTS_URL = "/api/v1/whatsapp/tenants"
MESSAGES_URL = "/api/v1/whatsapp/messages"


@pytest.fixture(autouse=True)
def fake_db():
    """No database behind these requests; the services are mocked."""
    async def override():
        yield MagicMock()

    app.dependency_overrides[get_db] = override
    yield
    app.dependency_overrides.pop(get_db, None)


def tenant_record(tenant_id, status="CONNECTED", **overrides):
    record = {
        "tenant_id": tenant_id,
        "business_name": "Acme Corp",
        "waba_id": "waba-1",
        "business_phone_number_id": "phone-1",
        "phone_number": "15550001111",
        "connection_status": status,
        "access_token": "EAAG-secret",
        "token_expires_at": None,
        "last_error": None,
        "version": 4,
    }
    record.update(overrides)
    return record


# --- HEALTH ---

def test_health(test_client):
    response = test_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


# --- LIFECYCLE ROUTES ---

def test_connect_returns_authorization_url(test_client, tenant_id):
    result = {
        "tenant_id": tenant_id,
        "connection_status": "CONNECTING",
        "authorization_url": "https://www.facebook.com/dialog/oauth?state=abc",
        "state": "abc",
    }
    with patch.object(WhatsAppConnectionService, "initialize", new=AsyncMock(return_value=result)) as mock_init:
        response = test_client.post(f"{TENANTS_URL}/{tenant_id}/connect", params={"business_name": "Acme Corp"})

    assert response.status_code == 200
    assert response.json()["connection_status"] == "CONNECTING"
    mock_init.assert_awaited_once_with(tenant_id, "Acme Corp")


def test_connect_twice_is_conflict(test_client, tenant_id):
    with patch.object(WhatsAppConnectionService, "initialize",
                      new=AsyncMock(side_effect=DuplicateTenantError(tenant_id))):
        response = test_client.post(f"{TENANTS_URL}/{tenant_id}/connect")

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "DuplicateTenantError"


def test_tenant_response_hides_token(test_client, tenant_id):
    with patch.object(WhatsAppConnectionService, "get_tenant",
                      new=AsyncMock(return_value=tenant_record(tenant_id))):
        response = test_client.get(f"{TENANTS_URL}/{tenant_id}")

    body = response.json()
    assert response.status_code == 200
    assert body["has_access_token"] is True
    assert "access_token" not in body
    assert "EAAG-secret" not in response.text


def test_unknown_tenant_is_404(test_client, tenant_id):
    with patch.object(WhatsAppConnectionService, "get_tenant",
                      new=AsyncMock(side_effect=EntityNotFoundError("WhatsAppTenant", tenant_id))):
        response = test_client.get(f"{TENANTS_URL}/{tenant_id}")

    assert response.status_code == 404


def test_status_route(test_client, tenant_id):
    with patch.object(WhatsAppConnectionService, "get_connection_status",
                      new=AsyncMock(return_value=ConnectionStatus.CONNECTED)):
        response = test_client.get(f"{TENANTS_URL}/{tenant_id}/status")

    assert response.json() == {
        "tenant_id": str(tenant_id), "connection_status": "CONNECTED", "is_connected": True
    }


def test_forged_callback_state_is_400(test_client):
    with patch.object(WhatsAppConnectionService, "handle_authorization_callback",
                      new=AsyncMock(side_effect=InvalidOAuthStateError())):
        response = test_client.get(f"{TENANTS_URL}/oauth/callback", params={"code": "c", "state": "forged"})

    assert response.status_code == 400


def test_missing_app_secret_is_503(test_client):
    with patch.object(WhatsAppConnectionService, "handle_authorization_callback",
                      new=AsyncMock(side_effect=MissingConfigurationError("WHATSAPP_APP_SECRET"))):
        response = test_client.get(f"{TENANTS_URL}/oauth/callback", params={"code": "c", "state": "s"})

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "MissingConfigurationError"


def test_callback_requires_code_and_state(test_client):
    response = test_client.get(f"{TENANTS_URL}/oauth/callback", params={"state": "abc"})
    assert response.status_code == 422


def test_onboarding_from_wrong_state_is_409(test_client, tenant_id):
    error = InvalidStateError("Onboarding requires VERIFICATION_NEEDED", current_state="CONNECTING")
    with patch.object(WhatsAppConnectionService, "complete_onboarding", new=AsyncMock(side_effect=error)):
        response = test_client.post(
            f"{TENANTS_URL}/{tenant_id}/complete-onboarding",
            json={"waba_id": "waba-1", "phone_number_id": "phone-1"},
        )

    assert response.status_code == 409
    assert response.json()["detail"]["current_state"] == "CONNECTING"


def test_onboarding_rejects_blank_ids(test_client, tenant_id):
    response = test_client.post(
        f"{TENANTS_URL}/{tenant_id}/complete-onboarding",
        json={"waba_id": "   ", "phone_number_id": "phone-1"},
    )
    assert response.status_code == 422


def test_bad_pin_is_400(test_client, tenant_id):
    with patch.object(WhatsAppConnectionService, "register_phone_number",
                      new=AsyncMock(side_effect=InvalidPinError())):
        response = test_client.post(f"{TENANTS_URL}/{tenant_id}/register-pin", json={"pin": "12ab56"})

    assert response.status_code == 400


def test_upstream_failure_is_502(test_client, tenant_id):
    error = UpstreamFailureError("Graph API timed out", transient=True)
    with patch.object(WhatsAppConnectionService, "register_phone_number", new=AsyncMock(side_effect=error)):
        response = test_client.post(f"{TENANTS_URL}/{tenant_id}/register-pin", json={"pin": "123456"})

    assert response.status_code == 502
    assert response.json()["detail"]["transient"] is True


def test_concurrent_modification_is_409(test_client, tenant_id):
    error = ConcurrentModificationError("WhatsAppTenant", tenant_id)
    with patch.object(WhatsAppConnectionService, "disconnect", new=AsyncMock(side_effect=error)):
        response = test_client.post(f"{TENANTS_URL}/{tenant_id}/disconnect")

    assert response.status_code == 409


def test_refresh_token_route(test_client, tenant_id):
    with patch.object(WhatsAppConnectionService, "refresh_token", new=AsyncMock(return_value=False)):
        response = test_client.post(f"{TENANTS_URL}/{tenant_id}/refresh-token")

    assert response.json() == {"success": False, "tenant_id": str(tenant_id)}


# --- MESSAGING ROUTES ---

def test_send_text_route(test_client, tenant_id):
    conversation_id = uuid.uuid4()
    message = {
        "id": uuid.uuid4(),
        "conversation_id": conversation_id,
        "whatsapp_message_id": "wamid.out-1",
        "direction": "OUTBOUND",
        "message_type": "TEXT",
        "content": "Hello",
        "status": "SENT",
    }
    with patch.object(WhatsAppMessagingService, "send_text", new=AsyncMock(return_value=message)) as mock_send:
        response = test_client.post(f"{MESSAGES_URL}/{tenant_id}/text", json={"to": "+1 555 123 4567", "text": "Hello"})

    assert response.status_code == 200
    body = response.json()
    assert body["whatsapp_message_id"] == "wamid.out-1"
    assert body["conversation_id"] == str(conversation_id)
    assert mock_send.await_args.kwargs["to"] == "15551234567"


def test_send_with_expired_token_is_409(test_client, tenant_id):
    with patch.object(WhatsAppMessagingService, "send_text",
                      new=AsyncMock(side_effect=TokenExpiredError(tenant_id))):
        response = test_client.post(f"{MESSAGES_URL}/{tenant_id}/text", json={"to": "15551234567", "text": "Hi"})

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "TokenExpiredError"


def test_send_rejects_bad_recipient(test_client, tenant_id):
    response = test_client.post(f"{MESSAGES_URL}/{tenant_id}/text", json={"to": "call me", "text": "Hi"})
    assert response.status_code == 422


def test_send_media_rejects_unknown_type(test_client, tenant_id):
    response = test_client.post(
        f"{MESSAGES_URL}/{tenant_id}/media/sticker",
        json={"to": "15551234567", "link": "https://cdn.example.com/a.webp"},
    )
    assert response.status_code == 422


# --- MIDDLEWARE ---

def test_request_id_is_echoed(test_client):
    response = test_client.get("/health", headers={"X-Request-ID": "req-fixed-1"})
    assert response.headers["X-Request-ID"] == "req-fixed-1"

    generated = test_client.get("/health").headers["X-Request-ID"]
    assert generated.startswith("req-")
