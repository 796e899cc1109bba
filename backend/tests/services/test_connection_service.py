import asyncio
import logging
import uuid
from datetime import timedelta

import pytest

from app.modules.whatsapp_connect.repositories.tenant_repository import WhatsAppTenantRepository
from app.modules.whatsapp_connect.services.client_cache import WhatsAppClientCache
from app.modules.whatsapp_connect.services.connection_service import WhatsAppConnectionService
from app.modules.whatsapp_connect.services.graph_client import TokenGrant
from app.modules.whatsapp_connect.services.tenant_locks import TenantLockArena
from app.shared.utils.exceptions import (
    ConcurrentModificationError,
    DuplicateTenantError,
    EntityNotFoundError,
    InvalidOAuthStateError,
    InvalidPinError,
    InvalidStateError,
    UpstreamFailureError,
)
from app.shared.utils.time_utils import utcnow


def make_service(db, graph):
    return WhatsAppConnectionService(
        db,
        graph=graph,
        cache=WhatsAppClientCache(graph=graph),
        locks=TenantLockArena(),
    )


async def connect_tenant(service, tenant_id, waba_id="waba-1", phone_number_id="phone-1"):
    """Drive a tenant from nothing to CONNECTED."""
    init = await service.initialize(tenant_id, "Acme Corp")
    await service.handle_authorization_callback("code-1", init["state"])
    return await service.complete_onboarding(tenant_id, waba_id, phone_number_id)


# --- SCENARIO A ---

def test_initialize_callback_onboarding_reaches_connected(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)

                init = await service.initialize(tenant_id, "Acme Corp")
                assert init["connection_status"] == "DISCONNECTED"
                assert init["authorization_url"].startswith("https://www.facebook.com/dialog/oauth")
                assert init["state"]

                tenant = await service.handle_authorization_callback("code-1", init["state"])
                assert tenant["connection_status"] == "VERIFICATION_NEEDED"
                assert tenant["access_token"] == "EAAG-test-access-token"
                mock_graph.exchange_code.assert_awaited_once_with("code-1")

                tenant = await service.complete_onboarding(tenant_id, "waba-1", "phone-1")
                assert tenant["connection_status"] == "CONNECTED"
                mock_graph.subscribe_webhooks.assert_awaited_once_with("waba-1", "EAAG-test-access-token")

            # Fresh session: the state was committed
            async with factory() as db:
                stored = await WhatsAppTenantRepository(db).get_by_tenant_id(tenant_id)
                assert stored["connection_status"] == "CONNECTED"
                assert stored["waba_id"] == "waba-1"
                assert stored["business_phone_number_id"] == "phone-1"
                assert stored["phone_number"] == "15550001111"
                assert stored["refresh_token"] == "refresh-token-1"
                assert stored["version"] == 4

    asyncio.run(test_logic())


def test_initialize_twice_is_duplicate(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await service.initialize(tenant_id)

                with pytest.raises(DuplicateTenantError):
                    await service.initialize(tenant_id)

    asyncio.run(test_logic())


def test_callback_with_forged_state_is_rejected(test_db, mock_graph):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                with pytest.raises(InvalidOAuthStateError):
                    await make_service(db, mock_graph).handle_authorization_callback("code-1", "forged")
                mock_graph.exchange_code.assert_not_awaited()

    asyncio.run(test_logic())


def test_failed_code_exchange_moves_to_error(test_db, mock_graph, tenant_id):
    mock_graph.exchange_code.side_effect = UpstreamFailureError("Invalid verification code", status_code=400)

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                init = await service.initialize(tenant_id)

                with pytest.raises(UpstreamFailureError):
                    await service.handle_authorization_callback("bad-code", init["state"])

                tenant = await service.get_tenant(tenant_id)
                assert tenant["connection_status"] == "ERROR"
                assert "Invalid verification code" in tenant["last_error"]
                assert tenant["access_token"] is None

                # ERROR may start over
                again = await service.authorization_url(tenant_id)
                assert again["connection_status"] == "ERROR"

    asyncio.run(test_logic())


# --- ONBOARDING ---

def test_complete_onboarding_requires_verification_needed(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await service.initialize(tenant_id)

                with pytest.raises(InvalidStateError):
                    await service.complete_onboarding(tenant_id, "waba-1", "phone-1")

                tenant = await service.get_tenant(tenant_id)
                assert tenant["connection_status"] == "DISCONNECTED"
                assert tenant["waba_id"] is None
                assert tenant["version"] == 1
                mock_graph.subscribe_webhooks.assert_not_awaited()

    asyncio.run(test_logic())


def test_waba_linked_to_another_tenant_is_rejected(test_db, mock_graph):
    first, second = uuid.uuid4(), uuid.uuid4()

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await connect_tenant(service, first, waba_id="waba-1", phone_number_id="phone-1")

                init = await service.initialize(second)
                await service.handle_authorization_callback("code-2", init["state"])

                with pytest.raises(InvalidStateError):
                    await service.complete_onboarding(second, "waba-1", "phone-2")

                tenant = await service.get_tenant(second)
                assert tenant["connection_status"] == "VERIFICATION_NEEDED"
                assert tenant["waba_id"] is None

    asyncio.run(test_logic())


def test_subscription_failure_moves_to_error_and_keeps_ids(test_db, mock_graph, tenant_id):
    mock_graph.subscribe_webhooks.side_effect = UpstreamFailureError("Graph API timeout", transient=True)

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                init = await service.initialize(tenant_id)
                await service.handle_authorization_callback("code-1", init["state"])

                with pytest.raises(UpstreamFailureError):
                    await service.complete_onboarding(tenant_id, "waba-1", "phone-1")

                tenant = await service.get_tenant(tenant_id)
                assert tenant["connection_status"] == "ERROR"
                assert tenant["waba_id"] == "waba-1"
                assert tenant["business_phone_number_id"] == "phone-1"

                # Registering the number recovers the tenant
                tenant = await service.register_phone_number(tenant_id, "123456")
                assert tenant["connection_status"] == "CONNECTED"

    asyncio.run(test_logic())


def test_display_number_lookup_failure_does_not_block_onboarding(test_db, mock_graph, tenant_id):
    mock_graph.get_phone_number.side_effect = UpstreamFailureError("Unsupported get request", status_code=400)

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                tenant = await connect_tenant(make_service(db, mock_graph), tenant_id)
                assert tenant["connection_status"] == "CONNECTED"
                assert tenant.get("phone_number") is None

    asyncio.run(test_logic())


# --- PHONE REGISTRATION ---

@pytest.mark.parametrize("pin", ["12345", "1234567", "abcdef", "", "12 456"])
def test_register_rejects_bad_pins(test_db, mock_graph, tenant_id, pin):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                with pytest.raises(InvalidPinError):
                    await make_service(db, mock_graph).register_phone_number(tenant_id, pin)
                mock_graph.register_phone_number.assert_not_awaited()

    asyncio.run(test_logic())


def test_register_requires_phone_number_id(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                init = await service.initialize(tenant_id)
                await service.handle_authorization_callback("code-1", init["state"])

                with pytest.raises(InvalidStateError):
                    await service.register_phone_number(tenant_id, "123456")

    asyncio.run(test_logic())


def test_register_is_idempotent_when_connected(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await connect_tenant(service, tenant_id)

                tenant = await service.register_phone_number(tenant_id, "123456")
                assert tenant["connection_status"] == "CONNECTED"
                mock_graph.register_phone_number.assert_awaited_once_with(
                    "phone-1", "EAAG-test-access-token", "123456"
                )

    asyncio.run(test_logic())


def test_register_failure_leaves_status_unchanged(test_db, mock_graph, tenant_id):
    mock_graph.register_phone_number.side_effect = UpstreamFailureError("PIN mismatch", status_code=400)

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await connect_tenant(service, tenant_id)
                before = await service.get_tenant(tenant_id)

                with pytest.raises(UpstreamFailureError):
                    await service.register_phone_number(tenant_id, "654321")

                after = await service.get_tenant(tenant_id)
                assert after["connection_status"] == "CONNECTED"
                assert after["version"] == before["version"]

    asyncio.run(test_logic())


# --- SCENARIO D / DISCONNECT ---

def test_disconnect_survives_unsubscribe_timeout(test_db, mock_graph, tenant_id, caplog):
    mock_graph.unsubscribe_webhooks.side_effect = UpstreamFailureError("Graph API timeout", transient=True)
    caplog.set_level(logging.WARNING, logger="connection_service")

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await connect_tenant(service, tenant_id)

                tenant = await service.disconnect(tenant_id)
                assert tenant["connection_status"] == "DISCONNECTED"

                stored = await service.get_tenant(tenant_id)
                assert stored["connection_status"] == "DISCONNECTED"
                assert stored["access_token"] is None
                assert stored["refresh_token"] is None
                assert stored["token_expires_at"] is None
                # Ids kept for reconnecting the same account
                assert stored["waba_id"] == "waba-1"

    asyncio.run(test_logic())

    assert "unsubscribe failed" in caplog.text
    mock_graph.unsubscribe_webhooks.assert_awaited_once()


def test_disconnect_unknown_tenant_is_not_found(test_db, mock_graph):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                with pytest.raises(EntityNotFoundError):
                    await make_service(db, mock_graph).disconnect(uuid.uuid4())

    asyncio.run(test_logic())


# --- TOKEN REFRESH ---

def test_refresh_without_refresh_token_returns_false(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await service.initialize(tenant_id)

                assert await service.refresh_token(tenant_id) is False
                mock_graph.refresh_access_token.assert_not_awaited()

    asyncio.run(test_logic())


def test_refresh_stores_new_token_and_keeps_status(test_db, mock_graph, tenant_id):
    mock_graph.refresh_access_token.return_value = TokenGrant(
        access_token="EAAG-refreshed",
        refresh_token=None,
        expires_at=utcnow() + timedelta(days=30),
    )

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await connect_tenant(service, tenant_id)

                assert await service.refresh_token(tenant_id) is True
                mock_graph.refresh_access_token.assert_awaited_once_with("refresh-token-1")

                tenant = await service.get_tenant(tenant_id)
                assert tenant["access_token"] == "EAAG-refreshed"
                # No new refresh token returned: the old one is kept
                assert tenant["refresh_token"] == "refresh-token-1"
                assert tenant["connection_status"] == "CONNECTED"

    asyncio.run(test_logic())


def test_refresh_upstream_failure_returns_false(test_db, mock_graph, tenant_id):
    mock_graph.refresh_access_token.side_effect = UpstreamFailureError("Session has expired", status_code=400)

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await connect_tenant(service, tenant_id)

                assert await service.refresh_token(tenant_id) is False
                tenant = await service.get_tenant(tenant_id)
                assert tenant["access_token"] == "EAAG-test-access-token"

    asyncio.run(test_logic())


# --- READS ---

def test_unknown_tenant_reports_disconnected(test_db, mock_graph):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                status = await service.get_connection_status(uuid.uuid4())
                assert status.value == "DISCONNECTED"
                assert await service.is_connected(uuid.uuid4()) is False

    asyncio.run(test_logic())


def test_stale_version_raises_concurrent_modification(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await service.initialize(tenant_id)
                repo = WhatsAppTenantRepository(db)

                await repo.update_fields(tenant_id, {"business_name": "First"}, expected_version=1)
                with pytest.raises(ConcurrentModificationError):
                    await repo.update_fields(tenant_id, {"business_name": "Second"}, expected_version=1)

    asyncio.run(test_logic())


# --- COLLABORATORS / CONCURRENCY ---

def test_injected_cache_and_locks_are_used_even_when_empty(mock_graph):
    cache = WhatsAppClientCache(graph=mock_graph)
    locks = TenantLockArena()

    service = WhatsAppConnectionService(None, graph=mock_graph, cache=cache, locks=locks)

    assert service.graph is mock_graph
    assert service.cache is cache
    assert service.locks is locks


def test_disconnect_survives_unexpected_unsubscribe_error(test_db, mock_graph, tenant_id):
    mock_graph.unsubscribe_webhooks.side_effect = RuntimeError("client has been closed")

    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                service = make_service(db, mock_graph)
                await connect_tenant(service, tenant_id)

                await service.disconnect(tenant_id)

                stored = await service.get_tenant(tenant_id)
                assert stored["connection_status"] == "DISCONNECTED"
                assert stored["access_token"] is None

    asyncio.run(test_logic())


def test_onboarding_and_disconnect_run_one_at_a_time(test_db, mock_graph, tenant_id):
    order = []

    async def slow_subscribe(waba_id, token):
        order.append("subscribe-start")
        await asyncio.sleep(0.05)
        order.append("subscribe-end")
        return {"success": True}

    async def record_unsubscribe(waba_id, token):
        order.append("unsubscribe")
        return {"success": True}

    mock_graph.subscribe_webhooks.side_effect = slow_subscribe
    mock_graph.unsubscribe_webhooks.side_effect = record_unsubscribe

    async def test_logic():
        async with test_db() as factory:
            cache = WhatsAppClientCache(graph=mock_graph)
            locks = TenantLockArena()

            async with factory() as db:
                setup = WhatsAppConnectionService(db, graph=mock_graph, cache=cache, locks=locks)
                init = await setup.initialize(tenant_id, "Acme Corp")
                await setup.handle_authorization_callback("code-1", init["state"])

            async with factory() as db_a, factory() as db_b:
                onboarding = WhatsAppConnectionService(db_a, graph=mock_graph, cache=cache, locks=locks)
                disconnecting = WhatsAppConnectionService(db_b, graph=mock_graph, cache=cache, locks=locks)

                # Without serialization the disconnect would read a stale version
                await asyncio.gather(
                    onboarding.complete_onboarding(tenant_id, "waba-1", "phone-1"),
                    disconnecting.disconnect(tenant_id),
                )

            async with factory() as db:
                stored = await WhatsAppTenantRepository(db).get_by_tenant_id(tenant_id)
                assert stored["connection_status"] == "DISCONNECTED"
                assert stored["waba_id"] == "waba-1"
                assert stored["access_token"] is None

    asyncio.run(test_logic())

    assert order == ["subscribe-start", "subscribe-end", "unsubscribe"]
