"""
FACTURACION-CORE: Adquirentes y Proveedores
===========================================
CRUD de las tablas acquirer y provider usadas para enriquecer documentos.
Las identificaciones se normalizan (sin dígito de verificación) antes de guardar y buscar.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from facturacion_core.dependencies import require_counterparty_store
from facturacion_core.schemas.models import Acquirer, CounterpartyListResponse, Provider
from facturacion_core.services.auth_middleware import require_bearer
from facturacion_core.services.counterparty_store import CounterpartyStore

router = APIRouter(prefix="/api/v1", tags=["contrapartes"], dependencies=[Depends(require_bearer)])


# ═══════════════════════════════════════════
# ADQUIRENTES
# ═══════════════════════════════════════════

@router.get("/adquirentes", response_model=CounterpartyListResponse)
async def list_adquirentes(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    ofe: Optional[str] = None,
    sort_by: str = "created_at",
    order: str = "desc",
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.list_acquirers(page, per_page, ofe, sort_by, order)


@router.get("/adquirentes/search", response_model=list[Acquirer])
async def search_adquirentes(
    q: str = "",
    ofe: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.search_acquirers(q, ofe, limit)


@router.get("/adquirentes/{ofe_identificacion}/{adq_identificacion}", response_model=Acquirer)
async def get_adquirente(
    ofe_identificacion: str,
    adq_identificacion: str,
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.get_acquirer(ofe_identificacion, adq_identificacion)


@router.post("/adquirentes", response_model=Acquirer, status_code=201)
async def create_adquirente(
    body: Acquirer,
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.create_acquirer(body)


@router.put("/adquirentes/{ofe_identificacion}/{adq_identificacion}", response_model=Acquirer)
async def update_adquirente(
    ofe_identificacion: str,
    adq_identificacion: str,
    body: Acquirer,
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.update_acquirer(ofe_identificacion, adq_identificacion, body)


# ═══════════════════════════════════════════
# PROVEEDORES
# ═══════════════════════════════════════════

@router.get("/proveedores", response_model=CounterpartyListResponse)
async def list_proveedores(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    ofe: Optional[str] = None,
    sort_by: str = "fecha_creacion",
    order: str = "desc",
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.list_providers(page, per_page, ofe, sort_by, order)


@router.get("/proveedores/search", response_model=list[Provider])
async def search_proveedores(
    q: str = "",
    ofe: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.search_providers(q, ofe, limit)


@router.get("/proveedores/{ofe_identificacion}/{pro_identificacion}", response_model=Provider)
async def get_proveedor(
    ofe_identificacion: str,
    pro_identificacion: str,
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.get_provider(ofe_identificacion, pro_identificacion)


@router.post("/proveedores", response_model=Provider, status_code=201)
async def create_proveedor(
    body: Provider,
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.create_provider(body)


@router.put("/proveedores/{ofe_identificacion}/{pro_identificacion}", response_model=Provider)
async def update_proveedor(
    ofe_identificacion: str,
    pro_identificacion: str,
    body: Provider,
    store: CounterpartyStore = Depends(require_counterparty_store),
):
    return await store.update_provider(ofe_identificacion, pro_identificacion, body)
