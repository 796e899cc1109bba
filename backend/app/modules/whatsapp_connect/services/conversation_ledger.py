"""
Conversation Ledger
Conversations and messages keyed by tenant and customer identity.

Guarantees:
- One conversation per (tenant, customer wa_id)
- One message per upstream message id (webhook redelivery is a no-op)
- Message status only moves forward (see state_machines)
- Conversation.last_message_at never moves backwards

TRANSACTIONS: the ledger never commits. Inserts that can race run in
savepoints and recover from the unique-constraint violation; the caller
commits (webhook router per entry, messaging service per send).
"""
import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.core.constants import DEFAULT_PAGE_SIZE
from app.shared.utils.exceptions import (
    EntityNotFoundError,
    MalformedEventError,
    UpstreamFailureError,
)
from app.shared.utils.phone_utils import to_wa_id
from app.shared.utils.time_utils import from_unix, utcnow
from app.modules.whatsapp_connect.constants import (
    MessageDirection,
    MessageStatus,
    MessageType,
)
from app.modules.whatsapp_connect.repositories.conversation_repository import WhatsAppConversationRepository
from app.modules.whatsapp_connect.repositories.message_repository import WhatsAppMessageRepository
from app.modules.whatsapp_connect.state_machines import allowed_predecessors, next_message_status

logger = logging.getLogger("conversation_ledger")


_MEDIA_TYPES = {
    "image": MessageType.IMAGE,
    "audio": MessageType.AUDIO,
    "video": MessageType.VIDEO,
    "document": MessageType.DOCUMENT,
    "sticker": MessageType.STICKER,
}


def _first(items: Any) -> Dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def classify_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map an inbound message node to ledger fields.

    Returns a dict with message_type, content and the media_* fields.
    Unknown types are kept (type UNKNOWN) rather than rejected.
    """
    kind = message.get("type")
    fields: Dict[str, Any] = {
        "message_type": MessageType.UNKNOWN,
        "content": None,
        "media_url": None,
        "media_mime_type": None,
        "media_filename": None,
        "media_id": None,
    }

    if kind == "text":
        fields["message_type"] = MessageType.TEXT
        fields["content"] = (message.get("text") or {}).get("body")

    elif kind in _MEDIA_TYPES:
        media = message.get(kind) or {}
        fields["message_type"] = _MEDIA_TYPES[kind]
        fields["content"] = media.get("caption")
        fields["media_id"] = media.get("id")
        fields["media_url"] = media.get("link")
        fields["media_mime_type"] = media.get("mime_type")
        fields["media_filename"] = media.get("filename")

    elif kind == "location":
        location = message.get("location") or {}
        fields["message_type"] = MessageType.LOCATION
        fields["content"] = "Latitude: {}, Longitude: {}, Name: {}, Address: {}".format(
            location.get("latitude", "N/A"),
            location.get("longitude", "N/A"),
            location.get("name", "N/A"),
            location.get("address", "N/A"),
        )

    elif kind == "button":
        button = message.get("button") or {}
        fields["message_type"] = MessageType.BUTTON
        fields["content"] = button.get("text") or button.get("payload") or "Button clicked"

    elif kind == "interactive":
        interactive = message.get("interactive") or {}
        interactive_type = interactive.get("type")
        fields["message_type"] = MessageType.INTERACTIVE
        if interactive_type == "button_reply":
            fields["content"] = (interactive.get("button_reply") or {}).get("title") or "Button reply"
        elif interactive_type == "list_reply":
            fields["content"] = (interactive.get("list_reply") or {}).get("title") or "List reply"
        else:
            fields["content"] = f"Interactive message: {interactive_type}"

    elif kind == "reaction":
        reaction = message.get("reaction") or {}
        fields["message_type"] = MessageType.REACTION
        fields["content"] = reaction.get("emoji")

    elif kind == "contacts":
        names = [
            (c.get("name") or {}).get("formatted_name")
            for c in message.get("contacts") or []
            if isinstance(c, dict)
        ]
        fields["message_type"] = MessageType.CONTACT
        fields["content"] = ", ".join(n for n in names if n) or None

    else:
        fields["content"] = f"Unsupported message type: {kind}"

    fields["message_type"] = fields["message_type"].value
    return fields


class ConversationLedger:
    """Ledger operations over one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversation_repo = WhatsAppConversationRepository(db)
        self.message_repo = WhatsAppMessageRepository(db)

    # ============================================
    # CONVERSATIONS
    # ============================================

    async def _find_or_create_conversation(
        self,
        tenant_id: uuid.UUID,
        wa_id: str,
        customer_phone: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        conversation = await self.conversation_repo.get_by_tenant_and_wa_id(tenant_id, wa_id)
        if conversation:
            return conversation

        try:
            async with self.db.begin_nested():
                conversation = await self.conversation_repo.create(
                    tenant_id=tenant_id,
                    customer_wa_id=wa_id,
                    customer_phone=customer_phone,
                    customer_name=customer_name,
                )
            logger.info(f"New conversation {conversation['id']} for tenant {tenant_id}")
            return conversation
        except IntegrityError:
            # Another writer created it between our read and insert
            conversation = await self.conversation_repo.get_by_tenant_and_wa_id(tenant_id, wa_id)
            if conversation:
                return conversation
            raise

    async def get_conversation(self, tenant_id: uuid.UUID, conversation_id: uuid.UUID) -> Dict[str, Any]:
        conversation = await self.conversation_repo.get_by_id(conversation_id)
        if not conversation or conversation["tenant_id"] != tenant_id:
            raise EntityNotFoundError("WhatsAppConversation", conversation_id)
        return conversation

    async def list_conversations(
        self,
        tenant_id: uuid.UUID,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        conversations = await self.conversation_repo.list_for_tenant(tenant_id, skip=skip, limit=limit)
        total = await self.conversation_repo.count_for_tenant(tenant_id)
        return {"conversations": conversations, "total": total, "skip": skip, "limit": limit}

    async def list_messages(
        self,
        tenant_id: uuid.UUID,
        conversation_id: uuid.UUID,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        await self.get_conversation(tenant_id, conversation_id)
        messages = await self.message_repo.list_for_conversation(conversation_id, skip=skip, limit=limit)
        total = await self.message_repo.count_for_conversation(conversation_id)
        return {"messages": messages, "total": total, "skip": skip, "limit": limit}

    # ============================================
    # OUTBOUND
    # ============================================

    async def record_outbound(
        self,
        tenant_id: uuid.UUID,
        customer_phone: str,
        send_result: Dict[str, Any],
        content: Optional[str] = None,
        message_type: MessageType = MessageType.TEXT,
        media_url: Optional[str] = None,
        media_filename: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record a message the tenant just sent.

        Raises UpstreamFailureError if the send result has no message id.
        """
        whatsapp_message_id = _first(send_result.get("messages")).get("id")
        if not whatsapp_message_id:
            raise UpstreamFailureError("Send response did not include a message id", details=send_result)

        wa_id = _first(send_result.get("contacts")).get("wa_id") or to_wa_id(customer_phone)

        conversation = await self.conversation_repo.get_by_tenant_and_phone(tenant_id, customer_phone)
        if not conversation:
            conversation = await self._find_or_create_conversation(
                tenant_id, wa_id, customer_phone=customer_phone
            )
            if not conversation.get("customer_phone"):
                await self.conversation_repo.update_customer_phone(conversation["id"], customer_phone)

        sent_at = utcnow()
        try:
            async with self.db.begin_nested():
                message = await self.message_repo.create(
                    conversation_id=conversation["id"],
                    whatsapp_message_id=whatsapp_message_id,
                    direction=MessageDirection.OUTBOUND.value,
                    message_type=MessageType(message_type).value,
                    status=MessageStatus.SENT.value,
                    content=content,
                    media_url=media_url,
                    media_filename=media_filename,
                    sent_at=sent_at,
                )
        except IntegrityError:
            logger.warning(f"Outbound message {whatsapp_message_id} already recorded")
            return await self.message_repo.get_by_whatsapp_message_id(whatsapp_message_id)

        await self.conversation_repo.advance_last_message_at(conversation["id"], sent_at)
        return message

    # ============================================
    # INBOUND
    # ============================================

    async def record_inbound(
        self,
        tenant_id: uuid.UUID,
        message: Dict[str, Any],
        value: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Record a customer message from a webhook.

        `value` is the change value the message came in (for contacts[]).
        Returns the new message, or None when it was already recorded.
        Raises MalformedEventError if the message has no id/type or no
        customer identity.
        """
        whatsapp_message_id = message.get("id")
        if not whatsapp_message_id or not message.get("type"):
            raise MalformedEventError("Inbound message is missing id or type")

        if await self.message_repo.exists_by_whatsapp_message_id(whatsapp_message_id):
            logger.info(f"Duplicate delivery of {whatsapp_message_id} ignored")
            return None

        contact = _first((value or {}).get("contacts"))
        wa_id = contact.get("wa_id") or message.get("from")
        if not wa_id:
            raise MalformedEventError(f"Inbound message {whatsapp_message_id} has no customer wa_id")

        customer_name = (contact.get("profile") or {}).get("name")
        received_at = from_unix(message.get("timestamp")) or utcnow()

        conversation = await self._find_or_create_conversation(
            tenant_id,
            wa_id,
            customer_phone=message.get("from") or wa_id,
            customer_name=customer_name,
        )
        if customer_name and conversation.get("customer_name") != customer_name:
            await self.conversation_repo.update_customer_name(conversation["id"], customer_name)

        fields = classify_message(message)

        try:
            async with self.db.begin_nested():
                created = await self.message_repo.create(
                    conversation_id=conversation["id"],
                    whatsapp_message_id=whatsapp_message_id,
                    direction=MessageDirection.INBOUND.value,
                    status=MessageStatus.DELIVERED.value,
                    sent_at=received_at,
                    delivered_at=received_at,
                    **fields,
                )
        except IntegrityError:
            logger.info(f"Concurrent delivery of {whatsapp_message_id} ignored")
            return None

        await self.conversation_repo.advance_last_message_at(conversation["id"], received_at)
        logger.info(f"Inbound {fields['message_type']} message {whatsapp_message_id} recorded")
        return created

    # ============================================
    # STATUS UPDATES
    # ============================================

    async def apply_status_update(
        self,
        whatsapp_message_id: str,
        status_label: str,
        timestamp: Optional[Any] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """
        Apply a delivery status from a webhook.

        Returns True only when the message's status advanced. Unknown
        messages, unknown labels, repeats and regressions return False.
        """
        status = MessageStatus.from_label(status_label)
        if status is None:
            logger.warning(f"Unknown status '{status_label}' for message {whatsapp_message_id}")
            return False

        message = await self.message_repo.get_by_whatsapp_message_id(whatsapp_message_id)
        if not message:
            logger.info(f"Status {status.value} for unknown message {whatsapp_message_id} ignored")
            return False

        if next_message_status(message["status"], status) is None:
            logger.debug(f"Status {message['status']} -> {status.value} for {whatsapp_message_id} is a no-op")
            return False

        status_at = from_unix(timestamp) if timestamp is not None else None
        updated = await self.message_repo.apply_status(
            whatsapp_message_id,
            status,
            allowed_from=allowed_predecessors(status),
            status_at=status_at or utcnow(),
            failed_reason=failure_reason,
        )

        if updated:
            logger.info(f"Message {whatsapp_message_id}: {message['status']} -> {status.value}")
        return updated
