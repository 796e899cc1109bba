"""
WhatsApp Tenant Repository
Database operations for the whatsapp_tenants table.

OPTIMISTIC LOCKING: every write bumps the version column; writes that pass
expected_version fail with ConcurrentModificationError when another process
changed the row first.
"""
import uuid
from typing import Optional, Any, Dict
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.whatsapp_connect.models.tenant import WhatsAppTenant
from app.modules.whatsapp_connect.constants import ConnectionStatus
from app.shared.utils.exceptions import ConcurrentModificationError, EntityNotFoundError


class WhatsAppTenantRepository:
    """Repository for tenant connection records. Never computes transitions."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ============================================
    # READ OPERATIONS
    # ============================================

    async def _get_one(self, *criteria) -> Optional[dict]:
        query = (
            select(WhatsAppTenant)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        tenant = result.scalar_one_or_none()

        if tenant:
            return {k: v for k, v in tenant.__dict__.items() if not k.startswith('_')}
        return None

    async def get_by_tenant_id(self, tenant_id: uuid.UUID) -> Optional[dict]:
        return await self._get_one(WhatsAppTenant.tenant_id == tenant_id)

    async def get_by_waba_id(self, waba_id: str) -> Optional[dict]:
        """Resolve a webhook entry.id to its tenant."""
        if not waba_id:
            return None
        return await self._get_one(WhatsAppTenant.waba_id == waba_id)

    async def get_by_phone_number_id(self, phone_number_id: str) -> Optional[dict]:
        if not phone_number_id:
            return None
        return await self._get_one(WhatsAppTenant.business_phone_number_id == phone_number_id)

    async def get_by_phone_number(self, phone_number: str) -> Optional[dict]:
        if not phone_number:
            return None
        return await self._get_one(WhatsAppTenant.phone_number == phone_number)

    async def exists(self, tenant_id: uuid.UUID) -> bool:
        query = (
            select(func.count())
            .select_from(WhatsAppTenant)
            .where(WhatsAppTenant.tenant_id == tenant_id)
        )
        result = await self.db.execute(query)
        return (result.scalar() or 0) > 0

    # ============================================
    # CREATE OPERATIONS
    # ============================================

    async def create(self, tenant_id: uuid.UUID, business_name: Optional[str] = None) -> dict:
        """Create a DISCONNECTED tenant record."""
        tenant = WhatsAppTenant(
            tenant_id=tenant_id,
            business_name=business_name,
            connection_status=ConnectionStatus.DISCONNECTED.value,
            version=1
        )

        self.db.add(tenant)
        await self.db.flush()  # Flush to get ID, let service manage commit
        await self.db.refresh(tenant)

        return {k: v for k, v in tenant.__dict__.items() if not k.startswith('_')}

    # ============================================
    # UPDATE OPERATIONS
    # ============================================

    async def update_fields(
        self,
        tenant_id: uuid.UUID,
        values: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> None:
        """
        Write `values` to the tenant and bump its version.

        With expected_version, the write only applies if the row still has
        that version; otherwise ConcurrentModificationError.

        NOTE: This method does NOT commit.
        """
        values = {
            k: (v.value if isinstance(v, ConnectionStatus) else v)
            for k, v in values.items()
        }

        criteria = [WhatsAppTenant.tenant_id == tenant_id]
        if expected_version is not None:
            criteria.append(WhatsAppTenant.version == expected_version)

        stmt = (
            update(WhatsAppTenant)
            .where(*criteria)
            .values(**values, version=WhatsAppTenant.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 0:
            if expected_version is not None and await self.exists(tenant_id):
                raise ConcurrentModificationError("WhatsAppTenant", tenant_id)
            raise EntityNotFoundError("WhatsAppTenant", tenant_id)
        # NO COMMIT HERE - service layer handles transaction
