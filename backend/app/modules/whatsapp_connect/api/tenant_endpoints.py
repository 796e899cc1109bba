"""
WhatsApp Tenant API Endpoints
Connection lifecycle: connect, OAuth callback, onboarding, PIN registration,
disconnect and token refresh.

Domain exceptions (NotFound, InvalidState, UpstreamFailure, ...) propagate
to the handlers registered in app.main.
"""
import logging
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.db.session import get_db
from app.modules.whatsapp_connect.constants import ConnectionStatus
from app.modules.whatsapp_connect.services.connection_service import WhatsAppConnectionService
from app.modules.whatsapp_connect.schemas.whatsapp_schemas import (
    CompleteOnboardingRequest,
    RegisterPinRequest,
    TenantResponse,
    ConnectionInitResponse,
    ConnectionStatusResponse,
    RefreshTokenResponse,
)

router = APIRouter()
logger = logging.getLogger("tenant_api")


# ============================================
# OAUTH
# ============================================

@router.get("/oauth/callback", response_model=TenantResponse, summary="OAuth authorization callback")
async def oauth_callback(
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db)
):
    """
    Redirect target of the Meta authorization dialog.

    Exchanges the code for an access token; the tenant moves to
    VERIFICATION_NEEDED on success and ERROR on failure.
    """
    tenant = await WhatsAppConnectionService(db).handle_authorization_callback(code, state)
    return TenantResponse.from_record(tenant)


@router.post("/{tenant_id}/connect", response_model=ConnectionInitResponse, summary="Start a WhatsApp connection")
async def connect_tenant(
    tenant_id: uuid.UUID,
    business_name: Optional[str] = Query(default=None, max_length=255),
    db: AsyncSession = Depends(get_db)
):
    """Create the tenant's connection record and return the authorization URL."""
    result = await WhatsAppConnectionService(db).initialize(tenant_id, business_name)
    return ConnectionInitResponse(**result)


@router.get("/{tenant_id}/authorization-url", response_model=ConnectionInitResponse, summary="Re-issue the authorization URL")
async def get_authorization_url(tenant_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Only for tenants in DISCONNECTED or ERROR."""
    result = await WhatsAppConnectionService(db).authorization_url(tenant_id)
    return ConnectionInitResponse(**result)


# ============================================
# ONBOARDING
# ============================================

@router.post("/{tenant_id}/complete-onboarding", response_model=TenantResponse, summary="Link WABA and phone number")
async def complete_onboarding(
    tenant_id: uuid.UUID,
    request: CompleteOnboardingRequest,
    db: AsyncSession = Depends(get_db)
):
    tenant = await WhatsAppConnectionService(db).complete_onboarding(
        tenant_id,
        waba_id=request.waba_id,
        phone_number_id=request.phone_number_id
    )
    return TenantResponse.from_record(tenant)


@router.post("/{tenant_id}/register-pin", response_model=TenantResponse, summary="Register phone number with PIN")
async def register_pin(
    tenant_id: uuid.UUID,
    request: RegisterPinRequest,
    db: AsyncSession = Depends(get_db)
):
    tenant = await WhatsAppConnectionService(db).register_phone_number(tenant_id, request.pin)
    return TenantResponse.from_record(tenant)


# ============================================
# MAINTENANCE
# ============================================

@router.post("/{tenant_id}/disconnect", response_model=TenantResponse, summary="Disconnect a tenant")
async def disconnect_tenant(tenant_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    tenant = await WhatsAppConnectionService(db).disconnect(tenant_id)
    return TenantResponse.from_record(tenant)


@router.post("/{tenant_id}/refresh-token", response_model=RefreshTokenResponse, summary="Refresh the access token")
async def refresh_tenant_token(tenant_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """success=false when there is no refresh token or Meta rejected it."""
    refreshed = await WhatsAppConnectionService(db).refresh_token(tenant_id)
    return RefreshTokenResponse(success=refreshed, tenant_id=tenant_id)


# ============================================
# READ ENDPOINTS
# ============================================

@router.get("/{tenant_id}/status", response_model=ConnectionStatusResponse, summary="Get connection status")
async def get_connection_status(tenant_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Unknown tenants report DISCONNECTED."""
    status = await WhatsAppConnectionService(db).get_connection_status(tenant_id)
    return ConnectionStatusResponse(
        tenant_id=tenant_id,
        connection_status=status.value,
        is_connected=status == ConnectionStatus.CONNECTED
    )


@router.get("/{tenant_id}", response_model=TenantResponse, summary="Get tenant details")
async def get_tenant(tenant_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    tenant = await WhatsAppConnectionService(db).get_tenant(tenant_id)
    return TenantResponse.from_record(tenant)
