"""
FACTURACION-CORE: Eventos Radian
================================
POST /api/v1/eventos — ACUSE (030), RECLAMO (031), RECIBOBIEN (032), ACEPTACION (033).
"""
from fastapi import APIRouter, Depends

from facturacion_core.dependencies import get_event_service
from facturacion_core.schemas.models import EventRequest, EventResponse
from facturacion_core.services.auth_middleware import require_bearer
from facturacion_core.services.event_service import EventService

router = APIRouter(prefix="/api/v1", tags=["eventos"], dependencies=[Depends(require_bearer)])


@router.post("/eventos", response_model=EventResponse, summary="Registrar evento Radian")
async def registrar_evento(
    body: EventRequest,
    service: EventService = Depends(get_event_service),
):
    result = await service.register_event(body)
    return EventResponse(data=result)
