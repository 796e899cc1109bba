"""
WhatsApp Webhook Event Repository
Database operations for the whatsapp_webhook_events table.
"""
import uuid
from typing import Optional, List, Any, Dict
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp_connect.models.tenant import WhatsAppTenant
from app.modules.whatsapp_connect.models.webhook_event import WhatsAppWebhookEvent
from app.shared.core.constants import DEFAULT_PAGE_SIZE


class WhatsAppWebhookEventRepository:
    """Repository for the webhook audit log."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ============================================
    # READ OPERATIONS
    # ============================================

    async def get_by_id(self, event_id: uuid.UUID) -> Optional[dict]:
        query = (
            select(WhatsAppWebhookEvent)
            .where(WhatsAppWebhookEvent.id == event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        event = result.scalar_one_or_none()

        if event:
            return {k: v for k, v in event.__dict__.items() if not k.startswith('_')}
        return None

    async def list_events(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        processed: Optional[bool] = None,
        event_type: Optional[str] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> List[dict]:
        """Stored events, newest first, with optional filters."""
        query = select(WhatsAppWebhookEvent)

        if tenant_id is not None:
            query = query.where(WhatsAppWebhookEvent.tenant_id == tenant_id)
        if processed is not None:
            query = query.where(WhatsAppWebhookEvent.processed == processed)
        if event_type:
            query = query.where(WhatsAppWebhookEvent.event_type == event_type)

        query = (
            query
            .order_by(WhatsAppWebhookEvent.created_at.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        result = await self.db.execute(query)
        events = result.scalars().all()

        return [{k: v for k, v in e.__dict__.items() if not k.startswith('_')} for e in events]

    async def list_unattributed(self, limit: int = DEFAULT_PAGE_SIZE) -> List[dict]:
        """
        Unprocessed unattributed events whose WABA now belongs to a tenant, oldest first.

        Events for WABAs still unknown are left out, so they cannot fill a
        batch ahead of events that can be attributed.
        """
        linked_wabas = select(WhatsAppTenant.waba_id).where(WhatsAppTenant.waba_id.is_not(None))
        query = (
            select(WhatsAppWebhookEvent)
            .where(
                WhatsAppWebhookEvent.tenant_id.is_(None),
                WhatsAppWebhookEvent.processed.is_(False),
                WhatsAppWebhookEvent.waba_id.in_(linked_wabas)
            )
            .order_by(WhatsAppWebhookEvent.created_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        events = result.scalars().all()

        return [{k: v for k, v in e.__dict__.items() if not k.startswith('_')} for e in events]

    async def count_unprocessed(self) -> int:
        query = (
            select(func.count())
            .select_from(WhatsAppWebhookEvent)
            .where(WhatsAppWebhookEvent.processed.is_(False))
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    # ============================================
    # CREATE OPERATIONS
    # ============================================

    async def create(
        self,
        event_type: str,
        payload: Dict[str, Any],
        tenant_id: Optional[uuid.UUID] = None,
        waba_id: Optional[str] = None
    ) -> dict:
        event = WhatsAppWebhookEvent(
            tenant_id=tenant_id,
            waba_id=waba_id,
            event_type=event_type,
            payload=payload,
            processed=False
        )

        self.db.add(event)
        await self.db.flush()
        await self.db.refresh(event)

        return {k: v for k, v in event.__dict__.items() if not k.startswith('_')}

    # ============================================
    # UPDATE OPERATIONS
    # ============================================

    async def mark_processed(self, event_id: uuid.UUID) -> None:
        stmt = (
            update(WhatsAppWebhookEvent)
            .where(WhatsAppWebhookEvent.id == event_id)
            .values(processed=True, processed_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def assign_tenant(self, event_id: uuid.UUID, tenant_id: uuid.UUID) -> None:
        """Attribute a previously unattributed event."""
        stmt = (
            update(WhatsAppWebhookEvent)
            .where(
                WhatsAppWebhookEvent.id == event_id,
                WhatsAppWebhookEvent.tenant_id.is_(None)
            )
            .values(tenant_id=tenant_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
