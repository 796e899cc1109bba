import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.shared.core.config import settings
from app.shared.core.logging import setup_logging
from app.shared.middleware.correlation import CorrelationIdMiddleware
from app.shared.utils.http_client import shutdown_http_client
from app.shared.utils.exceptions import (
    ConcurrentModificationError,
    DuplicateTenantError,
    EntityNotFoundError,
    InvalidOAuthStateError,
    InvalidPinError,
    InvalidStateError,
    MissingConfigurationError,
    TenantNotConnectedError,
    UpstreamFailureError,
)
from app.modules.whatsapp_connect.api import router as whatsapp_router

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger("main")

app = FastAPI(title=settings.PROJECT_NAME)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CORS_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)


# ============================================
# EXCEPTION HANDLERS
# ============================================

_STATUS_CODES = {
    EntityNotFoundError: 404,
    DuplicateTenantError: 409,
    InvalidStateError: 409,
    TenantNotConnectedError: 409,
    ConcurrentModificationError: 409,
    InvalidOAuthStateError: 400,
    InvalidPinError: 400,
    UpstreamFailureError: 502,
    MissingConfigurationError: 503,
}


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = _STATUS_CODES.get(type(exc))
    if status_code is None:
        # Subclasses (e.g. TokenExpiredError) map like their parent
        status_code = next(code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls))

    detail = {"error": type(exc).__name__, "message": getattr(exc, "message", str(exc))}
    current_state = getattr(exc, "current_state", None) or getattr(exc, "status", None)
    if current_state:
        detail["current_state"] = current_state
    if isinstance(exc, UpstreamFailureError):
        detail["transient"] = exc.transient

    log = logger.warning if status_code >= 500 else logger.info
    log(f"{request.method} {request.url.path} -> {status_code} {detail['error']}: {detail['message']}")
    return JSONResponse(status_code=status_code, content={"detail": detail})


for _exc_class in _STATUS_CODES:
    app.add_exception_handler(_exc_class, domain_exception_handler)


# ============================================
# ROUTERS
# ============================================

app.include_router(whatsapp_router, prefix=f"{settings.API_V1_STR}/whatsapp")


@app.on_event("shutdown")
async def on_shutdown():
    await shutdown_http_client()


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/")
def root():
    return {"message": f"{settings.PROJECT_NAME} API is running"}
