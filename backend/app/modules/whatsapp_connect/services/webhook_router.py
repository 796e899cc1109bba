"""
Webhook Router
Routes WhatsApp Business Account webhook deliveries to tenants.

Per entry:
1. Resolve entry.id (WABA id) to a tenant
2. Store the raw entry and COMMIT it before acting on it
3. Dispatch each change by field (Dictionary Dispatch), each in its own
   savepoint so one bad change never rolls back its siblings
4. Mark the stored event processed

Deliveries are at-least-once and may arrive out of order; correctness
comes from the ledger (wamid dedup, monotonic status), not from here.
Nothing raised while handling a delivery escapes ingest().
"""
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.core.constants import RECONCILE_BATCH_SIZE, DEFAULT_PAGE_SIZE
from app.shared.core.logging import set_log_tenant
from app.shared.db.session import AsyncSessionLocal
from app.shared.utils.exceptions import EntityNotFoundError, MalformedEventError
from app.modules.whatsapp_connect.constants import (
    AccountUpdateEvent,
    WebhookField,
    WEBHOOK_OBJECT,
    UNKNOWN_EVENT_TYPE,
)
from app.modules.whatsapp_connect.repositories.tenant_repository import WhatsAppTenantRepository
from app.modules.whatsapp_connect.repositories.webhook_event_repository import WhatsAppWebhookEventRepository
from app.modules.whatsapp_connect.services.conversation_ledger import ConversationLedger

logger = logging.getLogger("webhook_router")


def event_type_of(entry: Dict[str, Any]) -> str:
    """Field of the first change, or UNKNOWN."""
    changes = entry.get("changes")
    if isinstance(changes, list) and changes and isinstance(changes[0], dict):
        field = changes[0].get("field")
        if field:
            return str(field)
    return UNKNOWN_EVENT_TYPE


def failure_reason_of(status: Dict[str, Any]) -> Optional[str]:
    errors = status.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        error = errors[0]
        reason = error.get("title") or error.get("message")
        if reason and error.get("code"):
            return f"{error['code']}: {reason}"
        return reason
    return None


class WebhookRouter:
    """Webhook Router/Deduplicator over one database session."""

    def __init__(self, db: AsyncSession, ledger: Optional[ConversationLedger] = None):
        self.db = db
        self.tenant_repo = WhatsAppTenantRepository(db)
        self.event_repo = WhatsAppWebhookEventRepository(db)
        self.ledger = ledger if ledger is not None else ConversationLedger(db)

        # Dictionary Dispatch: change field -> handler
        self._handlers: Dict[str, Callable[[uuid.UUID, Dict[str, Any]], Awaitable[int]]] = {
            WebhookField.ACCOUNT_UPDATE.value: self._handle_account_update,
            WebhookField.MESSAGES.value: self._handle_messages,
            WebhookField.MESSAGE_TEMPLATE_STATUS_UPDATE.value: self._handle_template_status,
        }

    # ============================================
    # INGESTION
    # ============================================

    async def ingest(self, payload: Any) -> Dict[str, int]:
        """
        Process one webhook delivery. Never raises.

        Returns counters: entries, stored, unattributed, failed_entries,
        failed_changes.
        """
        summary = {"entries": 0, "stored": 0, "unattributed": 0, "failed_entries": 0, "failed_changes": 0}

        if not isinstance(payload, dict) or payload.get("object") != WEBHOOK_OBJECT:
            obj = payload.get("object") if isinstance(payload, dict) else type(payload).__name__
            logger.warning(f"Dropping webhook for unexpected object: {obj}")
            return summary

        entries = payload.get("entry")
        if not isinstance(entries, list):
            logger.warning("Dropping webhook without an entry list")
            return summary

        for entry in entries:
            summary["entries"] += 1
            try:
                await self._ingest_entry(entry, summary)
            except Exception as e:
                await self.db.rollback()
                summary["failed_entries"] += 1
                logger.error(f"Webhook entry failed: {str(e)}", exc_info=True)
            finally:
                set_log_tenant(None)

        logger.info(f"Webhook ingested: {summary}")
        return summary

    async def _ingest_entry(self, entry: Any, summary: Dict[str, int]) -> None:
        if not isinstance(entry, dict):
            raise MalformedEventError("Webhook entry is not an object")

        waba_id = str(entry.get("id") or "") or None
        tenant = await self.tenant_repo.get_by_waba_id(waba_id)
        tenant_id = tenant["tenant_id"] if tenant else None
        set_log_tenant(tenant_id)

        event = await self.event_repo.create(
            event_type=event_type_of(entry),
            payload=entry,
            tenant_id=tenant_id,
            waba_id=waba_id,
        )
        await self.db.commit()
        summary["stored"] += 1

        if tenant_id is None:
            summary["unattributed"] += 1
            logger.warning(f"No tenant for WABA {waba_id}; event {event['id']} stored unattributed")
            return

        summary["failed_changes"] += await self._dispatch(event["id"], tenant_id, entry)

    async def _dispatch(self, event_id: uuid.UUID, tenant_id: uuid.UUID, entry: Dict[str, Any]) -> int:
        """Run every change of a stored entry, then mark it processed. Returns the failure count."""
        failures = 0
        changes = entry.get("changes") or []
        if not isinstance(changes, list):
            logger.error(f"Event {event_id} has a non-list changes field")
            changes, failures = [], 1

        for index, change in enumerate(changes):
            field = change.get("field") if isinstance(change, dict) else None
            try:
                async with self.db.begin_nested():
                    failures += await self._handle_change(tenant_id, change)
            except Exception as e:
                failures += 1
                logger.error(f"Change #{index} ({field}) of event {event_id} failed: {str(e)}")

        await self.event_repo.mark_processed(event_id)
        await self.db.commit()
        return failures

    async def _handle_change(self, tenant_id: uuid.UUID, change: Any) -> int:
        if not isinstance(change, dict):
            raise MalformedEventError("Webhook change is not an object")

        field = change.get("field")
        value = change.get("value")
        if not isinstance(value, dict):
            raise MalformedEventError(f"Change '{field}' has no value object")

        handler = self._handlers.get(field)
        if not handler:
            logger.info(f"Ignoring unhandled webhook field: {field}")
            return 0
        return await handler(tenant_id, value)

    async def _isolated(self, description: str, func: Callable[..., Awaitable[Any]], *args) -> bool:
        """Run one item in its own savepoint; log and report failure instead of raising."""
        try:
            async with self.db.begin_nested():
                await func(*args)
            return True
        except Exception as e:
            logger.error(f"{description} failed: {str(e)}")
            return False

    # ============================================
    # CHANGE HANDLERS
    # ============================================

    async def _handle_messages(self, tenant_id: uuid.UUID, value: Dict[str, Any]) -> int:
        """New messages go to record_inbound, statuses to apply_status_update."""
        failures = 0

        for message in value.get("messages") or []:
            if not isinstance(message, dict):
                failures += 1
                logger.error("Skipping non-object message node")
                continue
            ok = await self._isolated(
                f"Inbound message {message.get('id')}",
                self.ledger.record_inbound, tenant_id, message, value
            )
            failures += 0 if ok else 1

        for status in value.get("statuses") or []:
            if not isinstance(status, dict) or not status.get("id") or not status.get("status"):
                failures += 1
                logger.error(f"Skipping malformed status node: {status!r}")
                continue
            ok = await self._isolated(
                f"Status {status.get('status')} for {status.get('id')}",
                self.ledger.apply_status_update,
                status["id"], status["status"], status.get("timestamp"), failure_reason_of(status)
            )
            failures += 0 if ok else 1

        return failures

    async def _handle_account_update(self, tenant_id: uuid.UUID, value: Dict[str, Any]) -> int:
        """Account events are recorded and logged; they never drive the lifecycle."""
        event = value.get("event")

        if event == AccountUpdateEvent.PARTNER_ADDED.value:
            waba_info = value.get("waba_info") or {}
            logger.info(f"Partner added for tenant {tenant_id}: WABA {waba_info.get('waba_id')}")
        elif event in (AccountUpdateEvent.ACCOUNT_VERIFIED.value, AccountUpdateEvent.VERIFIED_ACCOUNT.value):
            logger.info(f"Account verified for tenant {tenant_id}")
        elif event == AccountUpdateEvent.DISABLED_UPDATE.value:
            logger.warning(f"Account disabled update for tenant {tenant_id}: {value.get('ban_info') or value}")
        elif event == AccountUpdateEvent.ACCOUNT_UPDATE.value:
            logger.info(f"Account update for tenant {tenant_id}")
        else:
            logger.info(f"Unhandled account_update event '{event}' for tenant {tenant_id}")
        return 0

    async def _handle_template_status(self, tenant_id: uuid.UUID, value: Dict[str, Any]) -> int:
        logger.info(
            f"Template status update for tenant {tenant_id}: "
            f"{value.get('message_template_name')} ({value.get('message_template_id')}) -> {value.get('event')}"
        )
        return 0

    # ============================================
    # REPLAY / RECONCILIATION
    # ============================================

    async def reprocess_event(self, event_id: uuid.UUID) -> Dict[str, Any]:
        """
        Replay a stored event through the handlers.

        An unattributed event is attributed first if its WABA now resolves;
        otherwise it is left untouched. Safe to repeat.
        """
        event = await self.event_repo.get_by_id(event_id)
        if not event:
            raise EntityNotFoundError("WhatsAppWebhookEvent", event_id)

        tenant_id = event.get("tenant_id")
        if tenant_id is None:
            tenant = await self.tenant_repo.get_by_waba_id(event.get("waba_id"))
            if not tenant:
                logger.info(f"Event {event_id} still has no tenant (WABA {event.get('waba_id')})")
                return {"event_id": event_id, "tenant_id": None, "processed": event["processed"], "failed_changes": 0}
            tenant_id = tenant["tenant_id"]
            await self.event_repo.assign_tenant(event_id, tenant_id)
            await self.db.commit()
            logger.info(f"Event {event_id} attributed to tenant {tenant_id}")

        set_log_tenant(tenant_id)
        try:
            failures = await self._dispatch(event_id, tenant_id, event["payload"] or {})
        finally:
            set_log_tenant(None)
        return {"event_id": event_id, "tenant_id": tenant_id, "processed": True, "failed_changes": failures}

    async def reconcile_unattributed(self, limit: int = RECONCILE_BATCH_SIZE) -> Dict[str, int]:
        """Replay unprocessed unattributed events whose WABA now belongs to a tenant."""
        summary = {"examined": 0, "attributed": 0, "still_unattributed": 0, "failed": 0}

        for event in await self.event_repo.list_unattributed(limit=limit):
            summary["examined"] += 1
            try:
                result = await self.reprocess_event(event["id"])
            except Exception as e:
                await self.db.rollback()
                summary["failed"] += 1
                logger.error(f"Reconciling event {event['id']} failed: {str(e)}")
                continue

            if result["tenant_id"] is None:
                summary["still_unattributed"] += 1
            else:
                summary["attributed"] += 1

        logger.info(f"Reconciliation finished: {summary}")
        return summary

    async def list_events(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        processed: Optional[bool] = None,
        event_type: Optional[str] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ):
        return await self.event_repo.list_events(
            tenant_id=tenant_id, processed=processed, event_type=event_type, skip=skip, limit=limit
        )


async def process_webhook_payload(payload: Any, session_factory=None) -> Dict[str, int]:
    """
    Background-task entry point: ingest with a dedicated session.

    The request's session is closed by the time background tasks run.
    """
    factory = session_factory or AsyncSessionLocal
    async with factory() as db:
        return await WebhookRouter(db).ingest(payload)
