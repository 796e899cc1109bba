"""
WhatsApp Conversation Repository
Database operations for the whatsapp_conversations table.
"""
import uuid
from datetime import datetime
from typing import Optional, List
from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp_connect.models.conversation import WhatsAppConversation
from app.modules.whatsapp_connect.constants import ConversationStatus
from app.shared.core.constants import DEFAULT_PAGE_SIZE


class WhatsAppConversationRepository:
    """Repository for conversation CRUD operations."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ============================================
    # READ OPERATIONS
    # ============================================

    async def get_by_id(self, conversation_id: uuid.UUID) -> Optional[dict]:
        query = (
            select(WhatsAppConversation)
            .where(WhatsAppConversation.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        conversation = result.scalar_one_or_none()

        if conversation:
            return {k: v for k, v in conversation.__dict__.items() if not k.startswith('_')}
        return None

    async def get_by_tenant_and_wa_id(self, tenant_id: uuid.UUID, wa_id: str) -> Optional[dict]:
        query = (
            select(WhatsAppConversation)
            .where(
                WhatsAppConversation.tenant_id == tenant_id,
                WhatsAppConversation.customer_wa_id == wa_id
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        conversation = result.scalar_one_or_none()

        if conversation:
            return {k: v for k, v in conversation.__dict__.items() if not k.startswith('_')}
        return None

    async def get_by_tenant_and_phone(self, tenant_id: uuid.UUID, phone: str) -> Optional[dict]:
        """First conversation the tenant addressed with this phone number."""
        query = (
            select(WhatsAppConversation)
            .where(
                WhatsAppConversation.tenant_id == tenant_id,
                WhatsAppConversation.customer_phone == phone
            )
            .order_by(WhatsAppConversation.created_at.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        conversation = result.scalars().first()

        if conversation:
            return {k: v for k, v in conversation.__dict__.items() if not k.startswith('_')}
        return None

    async def list_for_tenant(
        self,
        tenant_id: uuid.UUID,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> List[dict]:
        """Conversations ordered by most recent activity first."""
        query = (
            select(WhatsAppConversation)
            .where(WhatsAppConversation.tenant_id == tenant_id)
            .order_by(
                WhatsAppConversation.last_message_at.is_(None),
                WhatsAppConversation.last_message_at.desc()
            )
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        conversations = result.scalars().all()

        return [{k: v for k, v in c.__dict__.items() if not k.startswith('_')} for c in conversations]

    async def count_for_tenant(self, tenant_id: uuid.UUID) -> int:
        query = (
            select(func.count())
            .select_from(WhatsAppConversation)
            .where(WhatsAppConversation.tenant_id == tenant_id)
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    # ============================================
    # CREATE OPERATIONS
    # ============================================

    async def create(
        self,
        tenant_id: uuid.UUID,
        customer_wa_id: str,
        customer_phone: Optional[str] = None,
        customer_name: Optional[str] = None
    ) -> dict:
        """
        Insert a conversation. Raises IntegrityError if (tenant, wa_id)
        already exists; callers run this inside a savepoint.
        """
        conversation = WhatsAppConversation(
            tenant_id=tenant_id,
            customer_wa_id=customer_wa_id,
            customer_phone=customer_phone,
            customer_name=customer_name,
            status=ConversationStatus.ACTIVE.value
        )

        self.db.add(conversation)
        await self.db.flush()
        await self.db.refresh(conversation)

        return {k: v for k, v in conversation.__dict__.items() if not k.startswith('_')}

    # ============================================
    # UPDATE OPERATIONS
    # ============================================

    async def update_customer_name(self, conversation_id: uuid.UUID, customer_name: str) -> None:
        stmt = (
            update(WhatsAppConversation)
            .where(WhatsAppConversation.id == conversation_id)
            .values(customer_name=customer_name)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def update_customer_phone(self, conversation_id: uuid.UUID, customer_phone: str) -> None:
        stmt = (
            update(WhatsAppConversation)
            .where(
                WhatsAppConversation.id == conversation_id,
                WhatsAppConversation.customer_phone.is_(None)
            )
            .values(customer_phone=customer_phone)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def advance_last_message_at(self, conversation_id: uuid.UUID, message_at: datetime) -> bool:
        """
        Move last_message_at forward to message_at. An older timestamp
        leaves the row untouched. Returns True if the row changed.
        """
        stmt = (
            update(WhatsAppConversation)
            .where(
                WhatsAppConversation.id == conversation_id,
                or_(
                    WhatsAppConversation.last_message_at.is_(None),
                    WhatsAppConversation.last_message_at < message_at
                )
            )
            .values(last_message_at=message_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0
