"""
WhatsApp Client Cache
Per-tenant memoized, authenticated Cloud API handles.

Each entry remembers which token it was built from (SHA-256 fingerprint +
expiry + phone number id). Every lookup re-reads the tenant and compares,
so a handle built from an old or expired token is never returned, even if
a code path forgot to call invalidate().

Entries live in a plain dict keyed by tenant id and are replaced whole, so
one tenant's rebuild never blocks another tenant.
"""
import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp_connect.constants import (
    ConnectionStatus,
    OutboundMediaType,
    MESSAGING_PRODUCT,
)
from app.modules.whatsapp_connect.repositories.tenant_repository import WhatsAppTenantRepository
from app.modules.whatsapp_connect.services.graph_client import MetaGraphClient, graph_client
from app.shared.utils.exceptions import (
    EntityNotFoundError,
    TenantNotConnectedError,
    TokenExpiredError,
)
from app.shared.utils.time_utils import as_utc, is_expired, utcnow

logger = logging.getLogger("client_cache")


def token_fingerprint(access_token: str) -> str:
    return hashlib.sha256(access_token.encode("utf-8")).hexdigest()


class WhatsAppCloudClient:
    """
    Authenticated Cloud API handle for one tenant.

    Bound to the tenant's access token and business phone number id at
    construction time; get a fresh one from the cache after any credential
    change.
    """

    def __init__(
        self,
        tenant_id: uuid.UUID,
        phone_number_id: str,
        access_token: str,
        graph: MetaGraphClient,
    ):
        self.tenant_id = tenant_id
        self.phone_number_id = phone_number_id
        self._access_token = access_token
        self._graph = graph

    def __repr__(self):
        return f"<WhatsAppCloudClient(tenant_id={self.tenant_id}, phone_number_id='{self.phone_number_id}')>"

    async def _send(self, to: str, message_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "messaging_product": MESSAGING_PRODUCT,
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
            message_type: body,
        }
        return await self._graph.send_message(self.phone_number_id, self._access_token, payload)

    async def send_text(self, to: str, text: str, preview_url: bool = False) -> Dict[str, Any]:
        return await self._send(to, "text", {"body": text, "preview_url": preview_url})

    async def send_template(
        self,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        template: Dict[str, Any] = {
            "name": template_name,
            "language": {"code": language_code},
        }
        if components:
            template["components"] = components
        return await self._send(to, "template", template)

    async def send_media(
        self,
        to: str,
        media_type: OutboundMediaType,
        link: str,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Dict[str, Any]:
        media_type = OutboundMediaType(media_type)
        media: Dict[str, Any] = {"link": link}
        # Audio messages accept neither caption nor filename
        if caption and media_type != OutboundMediaType.AUDIO:
            media["caption"] = caption
        if filename and media_type == OutboundMediaType.DOCUMENT:
            media["filename"] = filename
        return await self._send(to, media_type.value, media)

    async def mark_as_read(self, whatsapp_message_id: str) -> Dict[str, Any]:
        payload = {
            "messaging_product": MESSAGING_PRODUCT,
            "status": "read",
            "message_id": whatsapp_message_id,
        }
        return await self._graph.send_message(self.phone_number_id, self._access_token, payload)


@dataclass
class CachedClient:
    """Cache entry: the handle plus the credentials it was built from."""
    handle: WhatsAppCloudClient
    token_fingerprint: str
    token_expires_at: Optional[datetime]
    phone_number_id: str
    created_at: datetime = field(default_factory=utcnow)

    def matches(self, fingerprint: str, expires_at: Optional[datetime], phone_number_id: str) -> bool:
        return (
            self.token_fingerprint == fingerprint
            and as_utc(self.token_expires_at) == as_utc(expires_at)
            and self.phone_number_id == phone_number_id
        )

    @property
    def is_expired(self) -> bool:
        return is_expired(self.token_expires_at)


class WhatsAppClientCache:
    """
    Process-wide cache of WhatsAppCloudClient handles.

    Usage:
        handle = await client_cache.get_handle(db, tenant_id)
        await handle.send_text("15551234567", "hello")

        # after any credential or status change
        client_cache.invalidate(tenant_id)
    """

    def __init__(self, graph: Optional[MetaGraphClient] = None):
        self._graph = graph if graph is not None else graph_client
        self._entries: Dict[str, CachedClient] = {}

    async def get_handle(self, db: AsyncSession, tenant_id: uuid.UUID) -> WhatsAppCloudClient:
        """
        Return the tenant's handle, building it if missing or stale.

        Raises:
            EntityNotFoundError: unknown tenant
            TenantNotConnectedError: tenant not CONNECTED or has no token
            TokenExpiredError: tenant CONNECTED but its token has expired
        """
        key = str(tenant_id)
        tenant = await WhatsAppTenantRepository(db).get_by_tenant_id(tenant_id)

        if not tenant:
            self.invalidate(tenant_id)
            raise EntityNotFoundError("WhatsAppTenant", tenant_id)

        status = tenant["connection_status"]
        if status != ConnectionStatus.CONNECTED.value or not tenant.get("access_token"):
            self.invalidate(tenant_id)
            raise TenantNotConnectedError(tenant_id, status=status)

        if is_expired(tenant.get("token_expires_at")):
            self.invalidate(tenant_id)
            logger.warning(f"Access token expired for tenant {tenant_id}")
            raise TokenExpiredError(tenant_id)

        fingerprint = token_fingerprint(tenant["access_token"])
        expires_at = tenant.get("token_expires_at")
        phone_number_id = tenant.get("business_phone_number_id")

        entry = self._entries.get(key)
        if entry and entry.matches(fingerprint, expires_at, phone_number_id):
            return entry.handle

        if entry:
            logger.info(f"Rebuilding stale client handle for tenant {tenant_id}")

        handle = WhatsAppCloudClient(
            tenant_id=tenant["tenant_id"],
            phone_number_id=phone_number_id,
            access_token=tenant["access_token"],
            graph=self._graph,
        )
        self._entries[key] = CachedClient(
            handle=handle,
            token_fingerprint=fingerprint,
            token_expires_at=expires_at,
            phone_number_id=phone_number_id,
        )
        return handle

    def invalidate(self, tenant_id: uuid.UUID) -> None:
        if self._entries.pop(str(tenant_id), None) is not None:
            logger.info(f"Client handle invalidated for tenant {tenant_id}")

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, tenant_id) -> bool:
        return str(tenant_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_status(self) -> Dict[str, Any]:
        """Cache statistics for monitoring."""
        return {
            "cached_tenants": len(self._entries),
            "expired_entries": sum(1 for e in self._entries.values() if e.is_expired),
        }


# Singleton instance
client_cache = WhatsAppClientCache()
