"""
WhatsApp Tenant ORM Model
SQLAlchemy model representing the 'whatsapp_tenants' table.

One row per tenant connection. The row is never deleted: disconnecting
clears the credentials and resets the status to DISCONNECTED.
"""
import uuid

from sqlalchemy import Column, Text, DateTime, BigInteger, Index, Uuid
from app.shared.db.base import Base, TimestampMixin


class WhatsAppTenant(Base, TimestampMixin):
    """
    ORM Model for the whatsapp_tenants table.

    Holds the OAuth credentials and the WhatsApp Business Account identifiers
    for one tenant, plus the current connection status.
    """
    __tablename__ = "whatsapp_tenants"

    # Primary Key (internal)
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # ============================================
    # TENANT IDENTITY
    # ============================================
    tenant_id = Column(Uuid, unique=True, nullable=False)      # Platform-assigned tenant id
    business_name = Column(Text, nullable=True)

    # ============================================
    # WHATSAPP BUSINESS ACCOUNT
    # ============================================
    waba_id = Column(Text, unique=True, nullable=True)         # Webhook entry.id resolves to this
    business_phone_number_id = Column(Text, nullable=True)     # Graph id used for sends
    phone_number = Column(Text, unique=True, nullable=True)    # Display number of the business

    # ============================================
    # OAUTH CREDENTIALS (never logged)
    # ============================================
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    webhook_secret = Column(Text, nullable=True)

    # ============================================
    # LIFECYCLE
    # ============================================
    connection_status = Column(Text, nullable=False, default='DISCONNECTED')
    last_error = Column(Text, nullable=True)                   # Cause of the last ERROR transition

    # Optimistic locking: incremented on every lifecycle write
    version = Column(BigInteger, nullable=False, default=1, server_default='1')

    # ============================================
    # INDEXES
    # ============================================
    __table_args__ = (
        Index('idx_whatsapp_tenants_status', 'connection_status'),
        Index('idx_whatsapp_tenants_phone_number_id', 'business_phone_number_id'),
    )

    def __repr__(self):
        return f"<WhatsAppTenant(tenant_id={self.tenant_id}, waba_id='{self.waba_id}', status='{self.connection_status}')>"
