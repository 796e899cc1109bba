"""
WhatsApp Message Repository
Database operations for the whatsapp_messages table.

Status changes are conditional UPDATEs filtered on the allowed predecessor
statuses, so two racing webhooks can never move a message backwards.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Iterable
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp_connect.models.message import WhatsAppMessage
from app.modules.whatsapp_connect.constants import MessageStatus
from app.shared.core.constants import DEFAULT_PAGE_SIZE


# Timestamp column stamped when a message reaches each status
_STATUS_TIMESTAMP_COLUMN = {
    MessageStatus.SENT: "sent_at",
    MessageStatus.DELIVERED: "delivered_at",
    MessageStatus.READ: "read_at",
}


class WhatsAppMessageRepository:
    """Repository for message CRUD operations."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ============================================
    # READ OPERATIONS
    # ============================================

    async def get_by_id(self, message_id: uuid.UUID) -> Optional[dict]:
        query = (
            select(WhatsAppMessage)
            .where(WhatsAppMessage.id == message_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        message = result.scalar_one_or_none()

        if message:
            return {k: v for k, v in message.__dict__.items() if not k.startswith('_')}
        return None

    async def get_by_whatsapp_message_id(self, whatsapp_message_id: str) -> Optional[dict]:
        """Fetch a message by its upstream wamid (for webhook matching)."""
        query = (
            select(WhatsAppMessage)
            .where(WhatsAppMessage.whatsapp_message_id == whatsapp_message_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        message = result.scalar_one_or_none()

        if message:
            return {k: v for k, v in message.__dict__.items() if not k.startswith('_')}
        return None

    async def exists_by_whatsapp_message_id(self, whatsapp_message_id: str) -> bool:
        query = (
            select(func.count())
            .select_from(WhatsAppMessage)
            .where(WhatsAppMessage.whatsapp_message_id == whatsapp_message_id)
        )
        result = await self.db.execute(query)
        return (result.scalar() or 0) > 0

    async def list_for_conversation(
        self,
        conversation_id: uuid.UUID,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> List[dict]:
        """Conversation history, most recent first."""
        query = (
            select(WhatsAppMessage)
            .where(WhatsAppMessage.conversation_id == conversation_id)
            .order_by(WhatsAppMessage.sent_at.desc(), WhatsAppMessage.created_at.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        messages = result.scalars().all()

        return [{k: v for k, v in m.__dict__.items() if not k.startswith('_')} for m in messages]

    async def count_for_conversation(self, conversation_id: uuid.UUID) -> int:
        query = (
            select(func.count())
            .select_from(WhatsAppMessage)
            .where(WhatsAppMessage.conversation_id == conversation_id)
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    # ============================================
    # CREATE OPERATIONS
    # ============================================

    async def create(
        self,
        conversation_id: uuid.UUID,
        direction: str,
        message_type: str,
        status: str,
        whatsapp_message_id: Optional[str] = None,
        content: Optional[str] = None,
        media_url: Optional[str] = None,
        media_mime_type: Optional[str] = None,
        media_filename: Optional[str] = None,
        media_id: Optional[str] = None,
        sent_at: Optional[datetime] = None,
        delivered_at: Optional[datetime] = None
    ) -> dict:
        """
        Insert a message. A duplicate whatsapp_message_id raises
        IntegrityError; callers run this inside a savepoint.
        """
        message = WhatsAppMessage(
            conversation_id=conversation_id,
            whatsapp_message_id=whatsapp_message_id,
            direction=direction,
            message_type=message_type,
            content=content,
            media_url=media_url,
            media_mime_type=media_mime_type,
            media_filename=media_filename,
            media_id=media_id,
            status=status,
            status_updated_at=sent_at,
            sent_at=sent_at,
            delivered_at=delivered_at
        )

        self.db.add(message)
        await self.db.flush()  # Flush to get ID, let service manage commit
        await self.db.refresh(message)

        return {k: v for k, v in message.__dict__.items() if not k.startswith('_')}

    # ============================================
    # UPDATE OPERATIONS
    # ============================================

    async def apply_status(
        self,
        whatsapp_message_id: str,
        status: MessageStatus,
        allowed_from: Iterable[MessageStatus],
        status_at: datetime,
        failed_reason: Optional[str] = None
    ) -> bool:
        """
        Move a message to `status` only if its current status is one of
        `allowed_from`. Returns True if a row was updated.

        NOTE: This method does NOT commit.
        """
        allowed = [MessageStatus(s).value for s in allowed_from]
        if not allowed:
            return False

        update_values = {
            "status": MessageStatus(status).value,
            "status_updated_at": status_at,
        }

        timestamp_column = _STATUS_TIMESTAMP_COLUMN.get(MessageStatus(status))
        if timestamp_column:
            update_values[timestamp_column] = status_at

        if status == MessageStatus.FAILED and failed_reason:
            update_values["failed_reason"] = failed_reason

        stmt = (
            update(WhatsAppMessage)
            .where(
                WhatsAppMessage.whatsapp_message_id == whatsapp_message_id,
                WhatsAppMessage.status.in_(allowed)
            )
            .values(**update_values)
            .execution_options(synchronize_session=False)
        )

        result = await self.db.execute(stmt)
        return result.rowcount > 0
