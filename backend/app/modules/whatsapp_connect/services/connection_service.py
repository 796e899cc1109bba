"""
WhatsApp Connection Service
Drives each tenant through the connection lifecycle:

    initialize → (OAuth dialog) → authorization callback → complete onboarding
                                                          ↘ register phone number
    disconnect / refresh_token at any time

TRANSACTIONS: every state change is committed before the next upstream call,
so a crash mid-flow leaves the tenant in the last state it actually reached.
All status values come from state_machines.transition().
"""
import logging
import re
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.core.logging import set_log_tenant
from app.shared.utils.exceptions import (
    DuplicateTenantError,
    EntityNotFoundError,
    InvalidPinError,
    InvalidStateError,
    UpstreamFailureError,
)
from app.modules.whatsapp_connect.constants import ConnectionEvent, ConnectionStatus, PIN_LENGTH
from app.modules.whatsapp_connect.repositories.tenant_repository import WhatsAppTenantRepository
from app.modules.whatsapp_connect.services.client_cache import WhatsAppClientCache, client_cache
from app.modules.whatsapp_connect.services.graph_client import MetaGraphClient, graph_client
from app.modules.whatsapp_connect.services.oauth_state import issue_state, verify_state
from app.modules.whatsapp_connect.services.tenant_locks import TenantLockArena, tenant_locks
from app.modules.whatsapp_connect.state_machines import can_transition, transition

logger = logging.getLogger("connection_service")

_PIN_PATTERN = re.compile(rf"^\d{{{PIN_LENGTH}}}$")


class WhatsAppConnectionService:
    """
    Connection Lifecycle Controller.

    One instance per request/session. The graph client, client cache and
    lock arena default to the process-wide singletons.
    """

    def __init__(
        self,
        db: AsyncSession,
        graph: Optional[MetaGraphClient] = None,
        cache: Optional[WhatsAppClientCache] = None,
        locks: Optional[TenantLockArena] = None,
    ):
        self.db = db
        self.tenant_repo = WhatsAppTenantRepository(db)
        self.graph = graph if graph is not None else graph_client
        self.cache = cache if cache is not None else client_cache
        self.locks = locks if locks is not None else tenant_locks

    # ============================================
    # HELPERS
    # ============================================

    async def _require_tenant(self, tenant_id: uuid.UUID) -> Dict[str, Any]:
        tenant = await self.tenant_repo.get_by_tenant_id(tenant_id)
        if not tenant:
            logger.info(f"Tenant {tenant_id} not found")
            raise EntityNotFoundError("WhatsAppTenant", tenant_id)
        return tenant

    async def _apply(
        self,
        tenant: Dict[str, Any],
        event: ConnectionEvent,
        values: Optional[Dict[str, Any]] = None,
    ) -> ConnectionStatus:
        """
        Run `event` through the state machine and persist the result with
        an optimistic version check. Updates `tenant` in place. No commit.
        """
        values = dict(values or {})
        new_status = transition(
            tenant["connection_status"],
            event,
            access_token=values.get("access_token", tenant.get("access_token")),
            token_expires_at=values.get("token_expires_at", tenant.get("token_expires_at")),
        )
        values["connection_status"] = new_status.value

        await self.tenant_repo.update_fields(
            tenant["tenant_id"], values, expected_version=tenant["version"]
        )

        previous = tenant["connection_status"]
        tenant.update(values)
        tenant["version"] += 1
        logger.info(f"Tenant {tenant['tenant_id']}: {previous} --{event.value}--> {new_status.value}")
        return new_status

    async def _mark_failed(self, tenant_id: uuid.UUID, reason: str, values: Optional[Dict[str, Any]] = None) -> None:
        """Move the tenant to ERROR after a failed step and commit."""
        tenant = await self.tenant_repo.get_by_tenant_id(tenant_id)
        if not tenant or not can_transition(tenant["connection_status"], ConnectionEvent.STEP_FAILED):
            return

        failure_values = dict(values or {})
        failure_values["last_error"] = reason[:1000]
        try:
            await self._apply(tenant, ConnectionEvent.STEP_FAILED, failure_values)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Could not record ERROR state for tenant {tenant_id}: {str(e)}")

    def _authorization_payload(self, tenant: Dict[str, Any]) -> Dict[str, Any]:
        state = issue_state(tenant["tenant_id"])
        return {
            "tenant_id": tenant["tenant_id"],
            "connection_status": tenant["connection_status"],
            "authorization_url": self.graph.authorization_url(state),
            "state": state,
        }

    # ============================================
    # ONBOARDING
    # ============================================

    async def initialize(self, tenant_id: uuid.UUID, business_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a DISCONNECTED tenant record and return the authorization URL.

        Raises DuplicateTenantError if the tenant already exists.
        """
        set_log_tenant(tenant_id)
        async with self.locks.lock_for(tenant_id):
            if await self.tenant_repo.exists(tenant_id):
                raise DuplicateTenantError(tenant_id)

            try:
                tenant = await self.tenant_repo.create(tenant_id, business_name)
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                raise DuplicateTenantError(tenant_id)

        logger.info(f"Initialized WhatsApp connection for tenant {tenant_id}")
        return self._authorization_payload(tenant)

    async def authorization_url(self, tenant_id: uuid.UUID) -> Dict[str, Any]:
        """Issue a fresh authorization URL for a DISCONNECTED or ERROR tenant."""
        set_log_tenant(tenant_id)
        tenant = await self._require_tenant(tenant_id)

        if not can_transition(tenant["connection_status"], ConnectionEvent.AUTHORIZATION_STARTED):
            raise InvalidStateError(
                f"Cannot start authorization while {tenant['connection_status']}",
                current_state=tenant["connection_status"],
            )
        return self._authorization_payload(tenant)

    async def handle_authorization_callback(self, code: str, state: str) -> Dict[str, Any]:
        """
        Exchange the OAuth code for tokens.

        CONNECTING is committed before the exchange; success moves to
        VERIFICATION_NEEDED, failure to ERROR (and the error is re-raised).
        """
        tenant_id = verify_state(state)
        set_log_tenant(tenant_id)

        async with self.locks.lock_for(tenant_id):
            tenant = await self._require_tenant(tenant_id)

            await self._apply(tenant, ConnectionEvent.AUTHORIZATION_STARTED, {"last_error": None})
            await self.db.commit()

            try:
                grant = await self.graph.exchange_code(code)
                await self._apply(tenant, ConnectionEvent.TOKEN_ISSUED, {
                    "access_token": grant.access_token,
                    "refresh_token": grant.refresh_token,
                    "token_expires_at": grant.expires_at,
                })
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Authorization callback failed for tenant {tenant_id}: {str(e)}")
                await self._mark_failed(tenant_id, str(e))
                raise
            finally:
                self.cache.invalidate(tenant_id)

        logger.info(f"Tenant {tenant_id} authorized, awaiting onboarding")
        return tenant

    async def complete_onboarding(
        self,
        tenant_id: uuid.UUID,
        waba_id: str,
        phone_number_id: str,
    ) -> Dict[str, Any]:
        """
        Link the WABA and phone number, subscribe to webhooks and move to CONNECTED.

        Only allowed from VERIFICATION_NEEDED. A subscription failure moves
        the tenant to ERROR (ids kept, so register_phone_number can recover)
        and is re-raised.
        """
        set_log_tenant(tenant_id)
        if not waba_id or not phone_number_id:
            raise InvalidStateError("waba_id and phone_number_id are both required")

        async with self.locks.lock_for(tenant_id):
            tenant = await self._require_tenant(tenant_id)

            # Pure pre-check: raises InvalidStateError without touching the row
            transition(
                tenant["connection_status"],
                ConnectionEvent.ONBOARDING_COMPLETED,
                access_token=tenant.get("access_token"),
                token_expires_at=tenant.get("token_expires_at"),
            )

            owner = await self.tenant_repo.get_by_waba_id(waba_id)
            if owner and owner["tenant_id"] != tenant["tenant_id"]:
                raise InvalidStateError(f"WABA {waba_id} is already linked to another tenant")

            owner = await self.tenant_repo.get_by_phone_number_id(phone_number_id)
            if owner and owner["tenant_id"] != tenant["tenant_id"]:
                raise InvalidStateError(f"Phone number {phone_number_id} is already linked to another tenant")

            ids = {"waba_id": waba_id, "business_phone_number_id": phone_number_id}

            try:
                await self.graph.subscribe_webhooks(waba_id, tenant["access_token"])

                values = dict(ids, last_error=None)
                display_number = await self._lookup_display_number(tenant, phone_number_id)
                if display_number:
                    values["phone_number"] = display_number

                await self._apply(tenant, ConnectionEvent.ONBOARDING_COMPLETED, values)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Onboarding failed for tenant {tenant_id}: {str(e)}")
                await self._mark_failed(tenant_id, str(e), ids)
                raise
            finally:
                self.cache.invalidate(tenant_id)

        logger.info(f"Tenant {tenant_id} connected (waba={waba_id}, phone_number_id={phone_number_id})")
        return tenant

    async def _lookup_display_number(self, tenant: Dict[str, Any], phone_number_id: str) -> Optional[str]:
        """Best effort: the business's display phone number, or None."""
        try:
            info = await self.graph.get_phone_number(phone_number_id, tenant["access_token"])
        except UpstreamFailureError as e:
            logger.warning(f"Could not look up display number for {phone_number_id}: {str(e)}")
            return None

        display = re.sub(r"\D", "", str(info.get("display_phone_number") or ""))
        if not display:
            return None

        owner = await self.tenant_repo.get_by_phone_number(display)
        if owner and owner["tenant_id"] != tenant["tenant_id"]:
            logger.warning(f"Display number {display} already belongs to tenant {owner['tenant_id']}")
            return None
        return display

    async def register_phone_number(self, tenant_id: uuid.UUID, pin: str) -> Dict[str, Any]:
        """
        Register the tenant's business phone number with its two-step PIN.

        A failed upstream call is re-raised and leaves the status unchanged.
        """
        set_log_tenant(tenant_id)
        if not pin or not _PIN_PATTERN.match(pin):
            raise InvalidPinError()

        async with self.locks.lock_for(tenant_id):
            tenant = await self._require_tenant(tenant_id)

            if not tenant.get("business_phone_number_id"):
                raise InvalidStateError(
                    "Phone number id is not set. Complete onboarding first.",
                    current_state=tenant["connection_status"],
                )

            transition(
                tenant["connection_status"],
                ConnectionEvent.PHONE_REGISTERED,
                access_token=tenant.get("access_token"),
                token_expires_at=tenant.get("token_expires_at"),
            )

            try:
                await self.graph.register_phone_number(
                    tenant["business_phone_number_id"], tenant["access_token"], pin
                )
            except UpstreamFailureError as e:
                logger.error(f"Phone registration failed for tenant {tenant_id}: {str(e)}")
                raise

            await self._apply(tenant, ConnectionEvent.PHONE_REGISTERED, {"last_error": None})
            await self.db.commit()
            self.cache.invalidate(tenant_id)

        logger.info(f"Phone number registered for tenant {tenant_id}")
        return tenant

    # ============================================
    # MAINTENANCE
    # ============================================

    async def disconnect(self, tenant_id: uuid.UUID) -> Dict[str, Any]:
        """
        Unsubscribe (best effort), clear credentials and move to DISCONNECTED.

        WABA and phone ids are kept so the tenant can reconnect the same account.
        """
        set_log_tenant(tenant_id)
        async with self.locks.lock_for(tenant_id):
            tenant = await self._require_tenant(tenant_id)

            if tenant.get("waba_id") and tenant.get("access_token"):
                try:
                    await self.graph.unsubscribe_webhooks(tenant["waba_id"], tenant["access_token"])
                except Exception as e:
                    logger.warning(f"Webhook unsubscribe failed for tenant {tenant_id}, continuing: {str(e)}")

            await self._apply(tenant, ConnectionEvent.DISCONNECTED, {
                "access_token": None,
                "refresh_token": None,
                "token_expires_at": None,
            })
            await self.db.commit()
            self.cache.invalidate(tenant_id)

        logger.info(f"Tenant {tenant_id} disconnected")
        return tenant

    async def refresh_token(self, tenant_id: uuid.UUID) -> bool:
        """
        Exchange the refresh token for a new access token.

        Returns False when there is no refresh token or the upstream call
        fails. Never changes the connection status.
        """
        set_log_tenant(tenant_id)
        async with self.locks.lock_for(tenant_id):
            tenant = await self._require_tenant(tenant_id)

            if not tenant.get("refresh_token"):
                logger.info(f"Tenant {tenant_id} has no refresh token")
                return False

            try:
                grant = await self.graph.refresh_access_token(tenant["refresh_token"])
            except UpstreamFailureError as e:
                logger.error(f"Token refresh failed for tenant {tenant_id}: {str(e)}")
                return False

            values = {
                "access_token": grant.access_token,
                "token_expires_at": grant.expires_at,
            }
            if grant.refresh_token:
                values["refresh_token"] = grant.refresh_token

            await self.tenant_repo.update_fields(tenant_id, values, expected_version=tenant["version"])
            await self.db.commit()
            self.cache.invalidate(tenant_id)

        logger.info(f"Access token refreshed for tenant {tenant_id}")
        return True

    # ============================================
    # READ OPERATIONS
    # ============================================

    async def get_tenant(self, tenant_id: uuid.UUID) -> Dict[str, Any]:
        return await self._require_tenant(tenant_id)

    async def get_connection_status(self, tenant_id: uuid.UUID) -> ConnectionStatus:
        """DISCONNECTED for unknown tenants."""
        tenant = await self.tenant_repo.get_by_tenant_id(tenant_id)
        if not tenant:
            return ConnectionStatus.DISCONNECTED
        return ConnectionStatus(tenant["connection_status"])

    async def is_connected(self, tenant_id: uuid.UUID) -> bool:
        return await self.get_connection_status(tenant_id) == ConnectionStatus.CONNECTED
