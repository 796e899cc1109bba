"""
WhatsApp Message ORM Model
SQLAlchemy model representing the 'whatsapp_messages' table.

Stores inbound and outbound messages per conversation. The upstream
message id (wamid) is unique, which is what makes webhook redelivery
harmless.
"""
import uuid

from sqlalchemy import Column, Text, DateTime, Index, ForeignKey, Uuid
from app.shared.db.base import Base, TimestampMixin


class WhatsAppMessage(Base, TimestampMixin):
    """ORM Model for the whatsapp_messages table."""
    __tablename__ = "whatsapp_messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # ============================================
    # FOREIGN KEY TO CONVERSATION
    # ============================================
    conversation_id = Column(
        Uuid,
        ForeignKey('whatsapp_conversations.id', ondelete='CASCADE'),
        nullable=False
    )

    # ============================================
    # IDENTITY + CONTENT
    # ============================================
    whatsapp_message_id = Column(Text, unique=True, nullable=True)  # wamid.*, unique once assigned
    direction = Column(Text, nullable=False)                        # INBOUND / OUTBOUND
    message_type = Column(Text, nullable=False, default='TEXT')
    content = Column(Text, nullable=True)

    # ============================================
    # MEDIA
    # ============================================
    media_url = Column(Text, nullable=True)
    media_mime_type = Column(Text, nullable=True)
    media_filename = Column(Text, nullable=True)
    media_id = Column(Text, nullable=True)

    # ============================================
    # DELIVERY STATUS
    # ============================================
    status = Column(Text, nullable=False, default='SENT')           # SENT/DELIVERED/READ/FAILED
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    failed_reason = Column(Text, nullable=True)

    # ============================================
    # TIMESTAMPS
    # ============================================
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('idx_whatsapp_messages_conversation', 'conversation_id', 'sent_at'),
        Index('idx_whatsapp_messages_status', 'status'),
    )

    def __repr__(self):
        return f"<WhatsAppMessage(id={self.id}, wamid='{self.whatsapp_message_id}', direction='{self.direction}', status='{self.status}')>"
