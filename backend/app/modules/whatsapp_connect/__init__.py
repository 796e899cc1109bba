"""
WhatsApp Connect Module

Connects tenants' WhatsApp Business Accounts through the Cloud API and keeps
a local conversation ledger in sync with webhook deliveries.
Key features:
- Per-tenant connection lifecycle (OAuth, onboarding, phone registration)
- Cached, per-tenant authenticated Graph API handles
- Webhook ingestion with audit log, tenant routing and replay
- Idempotent conversation/message ledger with monotonic delivery status
"""
