import asyncio
import uuid
from datetime import timedelta

import pytest

from app.modules.whatsapp_connect.repositories.tenant_repository import WhatsAppTenantRepository
from app.modules.whatsapp_connect.services.client_cache import WhatsAppClientCache, token_fingerprint
from app.shared.utils.exceptions import EntityNotFoundError, TenantNotConnectedError, TokenExpiredError
from app.shared.utils.time_utils import utcnow


async def seed_tenant(db, tenant_id, status="CONNECTED", access_token="tok-1", expires_in=timedelta(days=30)):
    """Insert a tenant straight through the repository."""
    repo = WhatsAppTenantRepository(db)
    await repo.create(tenant_id, "Acme Corp")
    await repo.update_fields(tenant_id, {
        "connection_status": status,
        "access_token": access_token,
        "token_expires_at": utcnow() + expires_in if expires_in is not None else None,
        "business_phone_number_id": "phone-1",
        "waba_id": f"waba-{tenant_id.hex[:6]}",
    })
    await db.commit()
    return repo


def test_handle_is_memoized(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                await seed_tenant(db, tenant_id)
                cache = WhatsAppClientCache(graph=mock_graph)

                first = await cache.get_handle(db, tenant_id)
                second = await cache.get_handle(db, tenant_id)

                assert first is second
                assert tenant_id in cache
                assert len(cache) == 1
                assert first.phone_number_id == "phone-1"

    asyncio.run(test_logic())


def test_new_token_rebuilds_handle_without_invalidate(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                repo = await seed_tenant(db, tenant_id)
                cache = WhatsAppClientCache(graph=mock_graph)
                old = await cache.get_handle(db, tenant_id)

                # Credentials rotated behind the cache's back
                await repo.update_fields(tenant_id, {"access_token": "tok-2"})
                await db.commit()

                new = await cache.get_handle(db, tenant_id)
                assert new is not old

                await new.send_text("15551234567", "hello")
                args = mock_graph.send_message.await_args.args
                assert args[0] == "phone-1"
                assert args[1] == "tok-2"

    asyncio.run(test_logic())


def test_expired_token_is_never_served(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                repo = await seed_tenant(db, tenant_id)
                cache = WhatsAppClientCache(graph=mock_graph)
                await cache.get_handle(db, tenant_id)

                await repo.update_fields(tenant_id, {"token_expires_at": utcnow() - timedelta(seconds=1)})
                await db.commit()

                with pytest.raises(TokenExpiredError):
                    await cache.get_handle(db, tenant_id)
                assert tenant_id not in cache

    asyncio.run(test_logic())


def test_token_without_expiry_is_served(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                await seed_tenant(db, tenant_id, expires_in=None)
                handle = await WhatsAppClientCache(graph=mock_graph).get_handle(db, tenant_id)
                assert handle.tenant_id == tenant_id

    asyncio.run(test_logic())


@pytest.mark.parametrize("status", ["DISCONNECTED", "CONNECTING", "VERIFICATION_NEEDED", "ERROR"])
def test_not_connected_tenant_gets_no_handle(test_db, mock_graph, tenant_id, status):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                await seed_tenant(db, tenant_id, status=status)

                with pytest.raises(TenantNotConnectedError) as exc_info:
                    await WhatsAppClientCache(graph=mock_graph).get_handle(db, tenant_id)
                assert exc_info.value.status == status

    asyncio.run(test_logic())


def test_unknown_tenant_is_not_found(test_db, mock_graph):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                with pytest.raises(EntityNotFoundError):
                    await WhatsAppClientCache(graph=mock_graph).get_handle(db, uuid.uuid4())

    asyncio.run(test_logic())


def test_invalidate_drops_entry(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                await seed_tenant(db, tenant_id)
                cache = WhatsAppClientCache(graph=mock_graph)
                await cache.get_handle(db, tenant_id)

                cache.invalidate(tenant_id)
                assert tenant_id not in cache
                assert cache.get_status() == {"cached_tenants": 0, "expired_entries": 0}

    asyncio.run(test_logic())


def test_media_payload_shapes(test_db, mock_graph, tenant_id):
    async def test_logic():
        async with test_db() as factory:
            async with factory() as db:
                await seed_tenant(db, tenant_id)
                handle = await WhatsAppClientCache(graph=mock_graph).get_handle(db, tenant_id)

                await handle.send_media("155", "document", "https://cdn.example.com/a.pdf",
                                        caption="Invoice", filename="a.pdf")
                payload = mock_graph.send_message.await_args.args[2]
                assert payload["type"] == "document"
                assert payload["document"] == {
                    "link": "https://cdn.example.com/a.pdf", "caption": "Invoice", "filename": "a.pdf"
                }

                await handle.send_media("155", "audio", "https://cdn.example.com/a.ogg", caption="ignored")
                payload = mock_graph.send_message.await_args.args[2]
                assert payload["audio"] == {"link": "https://cdn.example.com/a.ogg"}

                await handle.mark_as_read("wamid.in-1")
                payload = mock_graph.send_message.await_args.args[2]
                assert payload == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.in-1"}

    asyncio.run(test_logic())


def test_fingerprint_does_not_contain_token():
    fingerprint = token_fingerprint("EAAG-secret")
    assert "EAAG" not in fingerprint
    assert fingerprint == token_fingerprint("EAAG-secret")
    assert fingerprint != token_fingerprint("EAAG-other")
