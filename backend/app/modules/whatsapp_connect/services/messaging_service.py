"""
WhatsApp Messaging Service
Outbound sends: client cache → Cloud API → conversation ledger.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.core.logging import set_log_tenant
from app.shared.utils.phone_utils import to_wa_id
from app.modules.whatsapp_connect.constants import MessageType, OutboundMediaType
from app.modules.whatsapp_connect.services.client_cache import WhatsAppClientCache, client_cache
from app.modules.whatsapp_connect.services.conversation_ledger import ConversationLedger

logger = logging.getLogger("messaging_service")


_MEDIA_MESSAGE_TYPES = {
    OutboundMediaType.IMAGE: MessageType.IMAGE,
    OutboundMediaType.DOCUMENT: MessageType.DOCUMENT,
    OutboundMediaType.AUDIO: MessageType.AUDIO,
    OutboundMediaType.VIDEO: MessageType.VIDEO,
}


class WhatsAppMessagingService:
    def __init__(self, db: AsyncSession, cache: Optional[WhatsAppClientCache] = None):
        self.db = db
        self.cache = cache if cache is not None else client_cache
        self.ledger = ConversationLedger(db)

    async def _record(
        self,
        tenant_id: uuid.UUID,
        recipient: str,
        send_result: Dict[str, Any],
        **fields
    ) -> Dict[str, Any]:
        """Record a completed send and commit."""
        try:
            message = await self.ledger.record_outbound(tenant_id, recipient, send_result, **fields)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Message sent to {recipient} but could not be recorded: {str(e)}")
            raise

        logger.info(f"Sent {message['message_type']} message {message['whatsapp_message_id']} to {recipient}")
        return message

    async def send_text(
        self,
        tenant_id: uuid.UUID,
        to: str,
        text: str,
        preview_url: bool = False,
    ) -> Dict[str, Any]:
        set_log_tenant(tenant_id)
        handle = await self.cache.get_handle(self.db, tenant_id)
        recipient = to_wa_id(to)

        result = await handle.send_text(recipient, text, preview_url=preview_url)
        return await self._record(tenant_id, recipient, result, content=text, message_type=MessageType.TEXT)

    async def send_template(
        self,
        tenant_id: uuid.UUID,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        set_log_tenant(tenant_id)
        handle = await self.cache.get_handle(self.db, tenant_id)
        recipient = to_wa_id(to)

        result = await handle.send_template(recipient, template_name, language_code, components)
        return await self._record(
            tenant_id, recipient, result,
            content=f"Template: {template_name}",
            message_type=MessageType.TEMPLATE,
        )

    async def send_media(
        self,
        tenant_id: uuid.UUID,
        to: str,
        media_type: OutboundMediaType,
        link: str,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Dict[str, Any]:
        set_log_tenant(tenant_id)
        media_type = OutboundMediaType(media_type)
        handle = await self.cache.get_handle(self.db, tenant_id)
        recipient = to_wa_id(to)

        result = await handle.send_media(recipient, media_type, link, caption=caption, filename=filename)
        return await self._record(
            tenant_id, recipient, result,
            content=caption,
            message_type=_MEDIA_MESSAGE_TYPES[media_type],
            media_url=link,
            media_filename=filename,
        )

    async def mark_as_read(self, tenant_id: uuid.UUID, whatsapp_message_id: str) -> Dict[str, Any]:
        """Send a read receipt for an inbound message."""
        set_log_tenant(tenant_id)
        handle = await self.cache.get_handle(self.db, tenant_id)
        result = await handle.mark_as_read(whatsapp_message_id)
        logger.info(f"Marked {whatsapp_message_id} as read")
        return {"success": bool(result.get("success", True)), "whatsapp_message_id": whatsapp_message_id}
