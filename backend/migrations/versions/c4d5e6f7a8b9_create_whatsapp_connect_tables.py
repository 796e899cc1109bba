"""Create WhatsApp connect tables

Revision ID: c4d5e6f7a8b9
Revises:
Create Date: 2026-10-19

This migration adds:
- whatsapp_tenants: One connection record per tenant (credentials, WABA, status)
- whatsapp_conversations: One conversation per (tenant, customer wa_id)
- whatsapp_messages: Inbound/outbound messages, unique by wamid
- whatsapp_webhook_events: Audit log of every accepted webhook entry
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'c4d5e6f7a8b9'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create whatsapp_tenants table
    op.create_table(
        'whatsapp_tenants',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False, unique=True),
        sa.Column('business_name', sa.Text(), nullable=True),

        # WhatsApp Business Account
        sa.Column('waba_id', sa.Text(), nullable=True, unique=True),
        sa.Column('business_phone_number_id', sa.Text(), nullable=True),
        sa.Column('phone_number', sa.Text(), nullable=True, unique=True),

        # OAuth credentials
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('webhook_secret', sa.Text(), nullable=True),

        # Lifecycle
        sa.Column('connection_status', sa.Text(), nullable=False, server_default='DISCONNECTED'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('version', sa.BigInteger(), nullable=False, server_default='1'),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_whatsapp_tenants_status', 'whatsapp_tenants', ['connection_status'])
    op.create_index('idx_whatsapp_tenants_phone_number_id', 'whatsapp_tenants', ['business_phone_number_id'])

    # Create whatsapp_conversations table
    op.create_table(
        'whatsapp_conversations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),

        # Customer identity
        sa.Column('customer_wa_id', sa.Text(), nullable=False),
        sa.Column('customer_phone', sa.Text(), nullable=True),
        sa.Column('customer_name', sa.Text(), nullable=True),
        sa.Column('customer_profile_pic_url', sa.Text(), nullable=True),

        sa.Column('status', sa.Text(), nullable=False, server_default='ACTIVE'),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),

        sa.UniqueConstraint('tenant_id', 'customer_wa_id', name='uq_whatsapp_conversations_tenant_wa_id'),
    )
    op.create_index('idx_whatsapp_conversations_tenant_phone', 'whatsapp_conversations',
                    ['tenant_id', 'customer_phone'])
    op.create_index('idx_whatsapp_conversations_last_message', 'whatsapp_conversations',
                    ['tenant_id', 'last_message_at'])

    # Create whatsapp_messages table
    op.create_table(
        'whatsapp_messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('conversation_id', sa.Uuid(),
                  sa.ForeignKey('whatsapp_conversations.id', ondelete='CASCADE'),
                  nullable=False),

        # Identity + content
        sa.Column('whatsapp_message_id', sa.Text(), nullable=True, unique=True),
        sa.Column('direction', sa.Text(), nullable=False),
        sa.Column('message_type', sa.Text(), nullable=False, server_default='TEXT'),
        sa.Column('content', sa.Text(), nullable=True),

        # Media
        sa.Column('media_url', sa.Text(), nullable=True),
        sa.Column('media_mime_type', sa.Text(), nullable=True),
        sa.Column('media_filename', sa.Text(), nullable=True),
        sa.Column('media_id', sa.Text(), nullable=True),

        # Delivery status
        sa.Column('status', sa.Text(), nullable=False, server_default='SENT'),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_reason', sa.Text(), nullable=True),

        # Timestamps
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_whatsapp_messages_conversation', 'whatsapp_messages', ['conversation_id', 'sent_at'])
    op.create_index('idx_whatsapp_messages_status', 'whatsapp_messages', ['status'])

    # Create whatsapp_webhook_events table
    op.create_table(
        'whatsapp_webhook_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=True),
        sa.Column('waba_id', sa.Text(), nullable=True),
        sa.Column('event_type', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON().with_variant(postgresql.JSONB(), 'postgresql'), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_whatsapp_webhook_events_tenant', 'whatsapp_webhook_events', ['tenant_id'])
    op.create_index('idx_whatsapp_webhook_events_unprocessed', 'whatsapp_webhook_events', ['processed', 'created_at'])
    op.create_index('idx_whatsapp_webhook_events_type', 'whatsapp_webhook_events', ['event_type'])
    op.create_index('idx_whatsapp_webhook_events_waba', 'whatsapp_webhook_events', ['waba_id'])


def downgrade() -> None:
    # Drop indexes first
    op.drop_index('idx_whatsapp_webhook_events_waba', table_name='whatsapp_webhook_events')
    op.drop_index('idx_whatsapp_webhook_events_type', table_name='whatsapp_webhook_events')
    op.drop_index('idx_whatsapp_webhook_events_unprocessed', table_name='whatsapp_webhook_events')
    op.drop_index('idx_whatsapp_webhook_events_tenant', table_name='whatsapp_webhook_events')

    op.drop_index('idx_whatsapp_messages_status', table_name='whatsapp_messages')
    op.drop_index('idx_whatsapp_messages_conversation', table_name='whatsapp_messages')

    op.drop_index('idx_whatsapp_conversations_last_message', table_name='whatsapp_conversations')
    op.drop_index('idx_whatsapp_conversations_tenant_phone', table_name='whatsapp_conversations')

    op.drop_index('idx_whatsapp_tenants_phone_number_id', table_name='whatsapp_tenants')
    op.drop_index('idx_whatsapp_tenants_status', table_name='whatsapp_tenants')

    # Drop tables
    op.drop_table('whatsapp_webhook_events')
    op.drop_table('whatsapp_messages')
    op.drop_table('whatsapp_conversations')
    op.drop_table('whatsapp_tenants')
