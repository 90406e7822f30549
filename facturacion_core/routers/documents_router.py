"""
FACTURACION-CORE: Registro de Documentos
========================================
POST /api/v1/registrar-documentos — FC, NC, ND o DS (un solo tipo por petición).
"""
from fastapi import APIRouter, Depends, Request

from facturacion_core.dependencies import get_registration_responder
from facturacion_core.schemas.models import DocumentRegistrationRequest, DocumentRegistrationResponse
from facturacion_core.services.auth_middleware import require_bearer
from facturacion_core.services.streaming import RegistrationResponder

router = APIRouter(prefix="/api/v1", tags=["documentos"], dependencies=[Depends(require_bearer)])


@router.post(
    "/registrar-documentos",
    response_model=DocumentRegistrationResponse,
    summary="Registrar documentos electrónicos en Numrot",
    description=(
        "Valida, enriquece y envía los documentos. Con streaming habilitado la "
        "respuesta es JSON por partes: cabecera, un resultado por documento y "
        "un resumen final."
    ),
)
async def registrar_documentos(
    body: DocumentRegistrationRequest,
    request: Request,
    responder: RegistrationResponder = Depends(get_registration_responder),
):
    return await responder.respond(body.documentos, request)
