"""
WhatsApp Webhook Event ORM Model
SQLAlchemy model representing the 'whatsapp_webhook_events' table.

Audit log of every accepted webhook entry. Rows are written before the
entry is acted on and are never deleted, so any entry can be replayed.
"""
import uuid

from sqlalchemy import Column, Text, Boolean, DateTime, Index, Uuid
from sqlalchemy.sql import func
from app.shared.db.base import Base, JSONType


class WhatsAppWebhookEvent(Base):
    """ORM Model for the whatsapp_webhook_events table."""
    __tablename__ = "whatsapp_webhook_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    tenant_id = Column(Uuid, nullable=True)          # NULL when the WABA was unknown at receipt
    waba_id = Column(Text, nullable=True)            # entry.id, kept for later attribution
    event_type = Column(Text, nullable=False)        # changes[0].field or UNKNOWN
    payload = Column(JSONType, nullable=False)       # The raw entry object

    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_whatsapp_webhook_events_tenant', 'tenant_id'),
        Index('idx_whatsapp_webhook_events_unprocessed', 'processed', 'created_at'),
        Index('idx_whatsapp_webhook_events_type', 'event_type'),
        Index('idx_whatsapp_webhook_events_waba', 'waba_id'),
    )

    def __repr__(self):
        return f"<WhatsAppWebhookEvent(id={self.id}, tenant_id={self.tenant_id}, type='{self.event_type}', processed={self.processed})>"
