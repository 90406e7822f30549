"""
FACTURACION-CORE — Main API Application
FastAPI mediation service between the back-office and the Numrot DIAN gateway.

Complete flow:
  1. POST /api/v1/registrar-documentos → validate, enrich and send FC/NC/ND/DS
  2. POST /api/v1/facturas[...]        → Radian listings and PDF lookups
  3. POST /api/v1/eventos              → Radian events on issued documents
  4. /api/v1/adquirentes, /proveedores → counterparty master data
  5. GET  /api/v1/auditoria/{id}       → provider exchanges of one request

Architecture:
  - Every Numrot call goes through the TracedClient (correlation id, logs, audit)
  - Audit rows are written from detached tasks that outlive the request
  - The Numrot token is cached process-wide and refreshed on expiry or 401
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from facturacion_core.core.config import get_numrot_url, settings
from facturacion_core.core.context import (
    CORRELATION_HEADER, new_correlation_id, reset_correlation_id, set_correlation_id,
)
from facturacion_core.core.errors import (
    MSG_AUTH, MSG_CONFIG, MSG_CONFLICT, MSG_INTERNAL, MSG_INVALID_BODY, MSG_NOT_FOUND,
    MSG_TIMEOUT, MSG_VALIDATION, AuthenticationError, ConfigurationError, CounterpartyError,
    DocumentValidationError, NumrotError, classify_error,
)
from facturacion_core.dependencies import get_audit_dispatcher, get_traced_client
from facturacion_core.routers.audit_router import router as audit_router
from facturacion_core.routers.counterparty_router import router as counterparty_router
from facturacion_core.routers.documents_router import router as documents_router
from facturacion_core.routers.eventos_router import router as eventos_router
from facturacion_core.routers.facturas_router import router as facturas_router
from facturacion_core.schemas.models import ErrorResponse, HealthResponse

# ─────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("facturacion-core")


# ─────────────────────────────────────────────────────────────
# APP LIFECYCLE
# ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 {settings.app_name} v{settings.app_version} starting...")
    logger.info(f"   Environment: {settings.app_env.value}")
    logger.info(f"   Numrot configured: {settings.numrot_configured}")
    if settings.numrot_configured:
        logger.info(f"   Numrot SendDIAN URL: {get_numrot_url('send_dian')}")
    logger.info(f"   Database configured: {settings.database_configured}")
    logger.info(f"   Auth enabled: {settings.auth_enabled}, streaming: {settings.document_streaming_enabled}")
    yield
    auditor = get_audit_dispatcher()
    if auditor is not None:
        await auditor.drain()
    await get_traced_client().aclose()
    logger.info(f"{settings.app_name} shutdown complete.")


# ─────────────────────────────────────────────────────────────
# FASTAPI APP
# ─────────────────────────────────────────────────────────────

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])

app = FastAPI(
    title="FACTURACION-CORE API",
    description=(
        "Servicio de mediación para facturación electrónica DIAN vía Numrot. "
        "Registra facturas, notas y documentos soporte, consulta documentos "
        "emitidos y recibidos y registra eventos Radian."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiter setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def request_timeout_middleware(request: Request, call_next):
    """HTTP_WRITE_TIMEOUT_MASSIVE ceiling, up to the start of the response."""
    try:
        return await asyncio.wait_for(call_next(request), settings.http_write_timeout_massive)
    except asyncio.TimeoutError:
        logger.error(
            f"{request.method} {request.url.path} exceeded {settings.http_write_timeout_massive}s, aborted"
        )
        return _error_response(504, MSG_TIMEOUT, ["La petición excedió el tiempo máximo de procesamiento"])


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Bind X-Correlation-ID (or a new UUID) to the request and echo it back."""
    correlation_id = request.headers.get(CORRELATION_HEADER) or new_correlation_id()
    token = set_correlation_id(correlation_id)
    t0 = time.monotonic()
    try:
        response = await call_next(request)
    finally:
        reset_correlation_id(token)
    response.headers[CORRELATION_HEADER] = correlation_id
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({round((time.monotonic() - t0) * 1000)}ms) correlation_id={correlation_id}"
    )
    return response


# ─────────────────────────────────────────────────────────────
# GLOBAL EXCEPTION HANDLERS
# ─────────────────────────────────────────────────────────────

def _error_response(status_code: int, message: str, errors: list[str]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, errors=errors).model_dump(),
    )


@app.exception_handler(DocumentValidationError)
async def validation_error_handler(request: Request, exc: DocumentValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.message}")
    return _error_response(400, MSG_VALIDATION, [exc.message])


@app.exception_handler(NumrotError)
async def numrot_error_handler(request: Request, exc: NumrotError):
    status_code, title, errors = classify_error(exc.message)
    log = logger.error if status_code >= 500 else logger.warning
    log(f"Numrot error on {request.url.path}: {exc.message} -> {status_code}")
    return _error_response(status_code, title, errors)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error on {request.url.path}: {exc.message}")
    return _error_response(500, MSG_CONFIG, ["Error de configuración del servicio"])


_COUNTERPARTY_TITLES = {400: MSG_VALIDATION, 404: MSG_NOT_FOUND, 409: MSG_CONFLICT}


@app.exception_handler(CounterpartyError)
async def counterparty_error_handler(request: Request, exc: CounterpartyError):
    title = _COUNTERPARTY_TITLES.get(exc.status_code)
    if title is None:
        logger.error(f"Counterparty store failure on {request.url.path}: {exc.message}")
        return _error_response(500, MSG_INTERNAL, ["Ha ocurrido un error interno"])
    return _error_response(exc.status_code, title, [exc.message])


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return _error_response(401, exc.message or MSG_AUTH, exc.errors)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Invalid body on {request.url.path}: {exc.errors()}")
    return _error_response(400, MSG_VALIDATION, [MSG_INVALID_BODY])


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = str(exc.detail)
    return _error_response(exc.status_code, detail, [detail])


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return _error_response(500, MSG_INTERNAL, ["Ha ocurrido un error interno"])


# ═════════════════════════════════════════════════════════════
# ROUTES
# ═════════════════════════════════════════════════════════════

@app.get("/health", response_model=HealthResponse, tags=["Sistema"])
async def health_check():
    """Verificar estado del servicio."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.app_env.value,
        "numrot_configured": settings.numrot_configured,
        "database_configured": settings.database_configured,
    }


app.include_router(documents_router)
app.include_router(facturas_router)
app.include_router(eventos_router)
app.include_router(counterparty_router)
app.include_router(audit_router)


# ─────────────────────────────────────────────────────────────
# ENTRYPOINT
# ─────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "facturacion_core.main:app",
        host=settings.app_host,
        port=settings.app_port,
    )
