"""
WhatsApp Conversation ORM Model
SQLAlchemy model representing the 'whatsapp_conversations' table.

One conversation per (tenant, customer wa_id).
"""
import uuid

from sqlalchemy import Column, Text, DateTime, Index, Uuid, UniqueConstraint
from app.shared.db.base import Base, TimestampMixin


class WhatsAppConversation(Base, TimestampMixin):
    """ORM Model for the whatsapp_conversations table."""
    __tablename__ = "whatsapp_conversations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Owning tenant (platform tenant_id, not the tenants table PK)
    tenant_id = Column(Uuid, nullable=False)

    # ============================================
    # CUSTOMER IDENTITY
    # ============================================
    customer_wa_id = Column(Text, nullable=False)             # WhatsApp id (digits, no '+')
    customer_phone = Column(Text, nullable=True)              # Number as the tenant addressed it
    customer_name = Column(Text, nullable=True)               # Profile name, last write wins
    customer_profile_pic_url = Column(Text, nullable=True)

    status = Column(Text, nullable=False, default='ACTIVE')   # ACTIVE/ARCHIVED/BLOCKED
    last_message_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'customer_wa_id', name='uq_whatsapp_conversations_tenant_wa_id'),
        Index('idx_whatsapp_conversations_tenant_phone', 'tenant_id', 'customer_phone'),
        Index('idx_whatsapp_conversations_last_message', 'tenant_id', 'last_message_at'),
    )

    def __repr__(self):
        return f"<WhatsAppConversation(id={self.id}, tenant_id={self.tenant_id}, wa_id='{self.customer_wa_id}')>"
