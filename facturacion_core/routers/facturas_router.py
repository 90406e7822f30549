"""
FACTURACION-CORE: Consulta de Facturas
======================================
Listados Radian (emitidas, por número, recibidas) y descarga de PDF.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Form, Query
from fastapi.responses import JSONResponse

from facturacion_core.core.errors import MSG_PROVIDER, MSG_VALIDATION, DocumentValidationError, NumrotError
from facturacion_core.dependencies import get_document_service
from facturacion_core.schemas.models import (
    Document, DocumentByNumberRequest, DocumentQueryRequest, DocumentsResponse, DownloadRequest,
    ErrorResponse,
)
from facturacion_core.services.auth_middleware import require_bearer
from facturacion_core.services.document_service import DocumentService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/facturas", tags=["facturas"], dependencies=[Depends(require_bearer)])


def _error(status_code: int, message: str, errors: list[str]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(message=message, errors=errors).model_dump())


def _download_body(doc: Optional[Document], status_code: int) -> JSONResponse:
    if doc is None:
        content = {"mensaje": "Error en la peticion", "status": status_code, "urlPDF": None, "urlXML": None}
    else:
        content = {"mensaje": "Exitoso", "status": status_code, "urlPDF": doc.urlPDF,
                   "urlXML": doc.urlXML, "cufe": doc.cufe}
    return JSONResponse(status_code=status_code, content=content)


# ═══════════════════════════════════════════
# LISTADOS
# ═══════════════════════════════════════════

@router.post("", response_model=DocumentsResponse, summary="Documentos emitidos en un rango de fechas")
async def get_documents(
    body: DocumentQueryRequest,
    service: DocumentService = Depends(get_document_service),
):
    documents = await service.get_documents(body)
    return DocumentsResponse(total=len(documents), data=documents)


@router.post("/by-number", response_model=DocumentsResponse, summary="Documento por número y proveedor")
async def get_document_by_number(
    body: DocumentByNumberRequest,
    service: DocumentService = Depends(get_document_service),
):
    documents = await service.get_document_by_number(body)
    return DocumentsResponse(total=len(documents), data=documents)


@router.post("/received", response_model=DocumentsResponse, summary="Documentos recibidos")
async def get_received_documents(
    body: DocumentQueryRequest,
    download: Optional[str] = Query(None, description="1 devuelve las URLs del primer documento"),
    service: DocumentService = Depends(get_document_service),
):
    documents = await service.get_received_documents(body)
    if download == "1":
        if not documents:
            return _error(400, MSG_VALIDATION, ["No hay documentos para descargar"])
        return _download_body(documents[0], 200)
    return DocumentsResponse(total=len(documents), data=documents)


# ═══════════════════════════════════════════
# DESCARGAS
# ═══════════════════════════════════════════

async def _download(service: DocumentService, cufe: str, fecha: Optional[str], nit: Optional[str]) -> JSONResponse:
    if not cufe:
        return _error(400, MSG_VALIDATION, ["id (cufe) es requerido"])
    try:
        doc = await service.find_received_by_cufe(cufe, nit=nit or "", fecha=fecha)
    except (DocumentValidationError, NumrotError) as e:
        status_code = 404 if "initial date is required" in str(e).lower() else 502
        logger.warning(f"Received documents lookup failed during download of {cufe}: {e}")
        return _download_body(None, status_code)
    return _download_body(doc, 200 if doc is not None else 404)


@router.get("/download", summary="URLs de PDF/XML de un documento recibido por CUFE")
async def download_get(
    cufe: str = Query(""),
    fecha: Optional[str] = Query(None),
    nit: Optional[str] = Query(None),
    service: DocumentService = Depends(get_document_service),
):
    return await _download(service, cufe, fecha, nit)


@router.post("/download", summary="URLs de PDF/XML de un documento recibido por CUFE")
async def download_post(
    body: DownloadRequest = Body(...),
    fecha: Optional[str] = Query(None),
    nit: Optional[str] = Query(None),
    service: DocumentService = Depends(get_document_service),
):
    return await _download(service, body.id, fecha, nit)


@router.post("/pdf", summary="PDF firmado (base64) desde SearchEstadosDIAN")
async def download_pdf_from_numrot(
    ofe_identificacion: str = Form(""),
    prefijo: str = Form(""),
    consecutivo: str = Form(""),
    service: DocumentService = Depends(get_document_service),
):
    for name, value in (("ofe_identificacion", ofe_identificacion), ("prefijo", prefijo),
                        ("consecutivo", consecutivo)):
        if not value:
            return _error(400, MSG_VALIDATION, [f"{name} es requerido"])

    try:
        result = await service.fetch_signed_pdf(ofe_identificacion, prefijo, consecutivo)
    except NumrotError as e:
        logger.error(f"Failed to get document {prefijo}{consecutivo} from Numrot: {e.message}")
        if "document not found" in e.message:
            return _error(404, "Documento No Encontrado", ["No se encontró el documento en Numrot"])
        return _error(502, MSG_PROVIDER, ["Error al consultar documento en Numrot"])

    if not result.Document:
        logger.warning(f"PDF not found in Numrot response for {prefijo}{consecutivo}")
        return _error(404, "PDF No Encontrado", ["El documento no contiene un PDF"])
    return {"data": {"pdf": result.Document}}
