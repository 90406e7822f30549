"""
FACTURACION-CORE — Document Service
Orquesta: seleccionar tipo → validar → enriquecer → enviar a Numrot → unir fallidos.

Also owns the validation of the Radian listing queries (/facturas*) and the
PDF lookup by CUFE over the received documents.
"""

import logging
from typing import Optional

from facturacion_core.core.config import settings
from facturacion_core.core.errors import DocumentValidationError
from facturacion_core.schemas.models import (
    Document, DocumentByNumberRequest, DocumentQueryRequest,
    DocumentRegistrationResponse, DocumentsByType, FailedDocument, OpenETLDocument,
    SearchEstadosResult,
)
from facturacion_core.services.document_enricher import DocumentEnricher, EnrichmentError
from facturacion_core.services.document_validator import (
    DocumentValidator, document_validator, select_document_type,
)
from facturacion_core.services.worker_pool import DocumentWorkerPool
from facturacion_core.utils.document_helpers import parse_date, processing_stamp

logger = logging.getLogger(__name__)

ALL_FAILED_MESSAGE = "Todos los documentos fallaron la validación"

NIT_MIN_LENGTH = 9
NIT_MAX_LENGTH = 15


# ─────────────────────────────────────────────────────────────
# QUERY VALIDATION
# ─────────────────────────────────────────────────────────────

def _check_nit(value: str, label: str) -> None:
    if not value:
        raise DocumentValidationError(f"{label} is required")
    if not NIT_MIN_LENGTH <= len(value) <= NIT_MAX_LENGTH:
        raise DocumentValidationError(
            f"invalid {label} format: must be between {NIT_MIN_LENGTH} and {NIT_MAX_LENGTH} characters"
        )


def validate_document_query(query: DocumentQueryRequest) -> None:
    _check_nit(query.CompanyNit, "company nit")
    if not query.InitialDate:
        raise DocumentValidationError("initial date is required")
    if not query.FinalDate:
        raise DocumentValidationError("final date is required")
    try:
        initial = parse_date(query.InitialDate)
    except ValueError:
        raise DocumentValidationError("invalid initial date format: must be YYYY-MM-DD")
    try:
        final = parse_date(query.FinalDate)
    except ValueError:
        raise DocumentValidationError("invalid final date format: must be YYYY-MM-DD")
    if initial > final:
        raise DocumentValidationError("initial date must be before or equal to final date")


def validate_document_by_number_query(query: DocumentByNumberRequest) -> None:
    _check_nit(query.CompanyNit, "company nit")
    if not query.DocumentNumber:
        raise DocumentValidationError("document number is required")
    _check_nit(query.SupplierNit, "supplier nit")


# ─────────────────────────────────────────────────────────────
# SERVICE
# ─────────────────────────────────────────────────────────────

class DocumentService:
    """
    Registration coordinator and Radian listing facade.

    `gateway` is a NumrotClient; `store` is an optional CounterpartyStore.
    Without a store, documents are only completed with the issuer identity
    and the default environment.
    """

    def __init__(self, gateway, store=None, validator: DocumentValidator = None,
                 enricher: DocumentEnricher = None, config=None):
        self.gateway = gateway
        self.store = store
        self.config = config or settings
        self.validator = validator or document_validator
        self.enricher = enricher or DocumentEnricher(self.config)

    # ══════════════════════════════════════════════════════════
    # REGISTRO
    # ══════════════════════════════════════════════════════════

    async def register_document(self, batch: DocumentsByType) -> DocumentRegistrationResponse:
        """
        Raises:
            DocumentValidationError: batch shape or any document fails validation
            NumrotError: gateway failure for a single-document batch
        """
        document_type, documents = select_document_type(batch)
        self.validator.validate_all(documents, document_type)

        if self.store is not None and len(documents) > 1:
            pool = DocumentWorkerPool(
                worker_count=self.config.document_worker_pool_size,
                store=self.store, gateway=self.gateway, enricher=self.enricher, config=self.config,
            )
            valid, failed = await pool.process_documents(documents, document_type)
        else:
            valid, failed = await self._enrich_sequential(documents, document_type)

        if failed:
            logger.warning(f"{len(failed)}/{len(documents)} {document_type} documents failed enrichment")

        if not valid:
            fecha, hora = processing_stamp()
            return DocumentRegistrationResponse(
                message=ALL_FAILED_MESSAGE,
                lote=f"lote-{fecha}-{hora}",
                documentos_procesados=[],
                documentos_fallidos=failed,
            )

        response = await self.gateway.register_document(DocumentsByType.single(document_type, valid))
        response.documentos_fallidos = list(response.documentos_fallidos or []) + failed
        response.documentos_procesados = list(response.documentos_procesados or [])
        return response

    async def _enrich_sequential(self, documents: list[OpenETLDocument],
                                 document_type: str) -> tuple[list[OpenETLDocument], list[FailedDocument]]:
        valid: list[OpenETLDocument] = []
        failed: list[FailedDocument] = []
        for doc in documents:
            try:
                valid.append(await self.enricher.enrich(doc, document_type, self.store))
            except EnrichmentError as e:
                fecha, hora = processing_stamp()
                failed.append(FailedDocument(
                    documento=document_type, consecutivo=doc.cdo_consecutivo,
                    prefijo=doc.rfa_prefijo, errors=[e.message],
                    fecha_procesamiento=fecha, hora_procesamiento=hora,
                ))
        return valid, failed

    # ══════════════════════════════════════════════════════════
    # CONSULTAS
    # ══════════════════════════════════════════════════════════

    async def get_documents(self, query: DocumentQueryRequest) -> list[Document]:
        validate_document_query(query)
        documents = await self.gateway.get_documents(query)
        logger.info(f"Issued documents for {query.CompanyNit} [{query.InitialDate}..{query.FinalDate}]: {len(documents)}")
        return documents

    async def get_document_by_number(self, query: DocumentByNumberRequest) -> list[Document]:
        validate_document_by_number_query(query)
        return await self.gateway.get_document_by_number(query)

    async def get_received_documents(self, query: DocumentQueryRequest) -> list[Document]:
        validate_document_query(query)
        documents = await self.gateway.get_received_documents(query)
        logger.info(f"Received documents for {query.CompanyNit} [{query.InitialDate}..{query.FinalDate}]: {len(documents)}")
        return documents

    async def find_received_by_cufe(self, cufe: str, nit: str = "",
                                    fecha: Optional[str] = None) -> Optional[Document]:
        """Look a received document up by CUFE. `fecha` narrows the query to one day."""
        query = DocumentQueryRequest(CompanyNit=nit, InitialDate=fecha or "", FinalDate=fecha or "")
        documents = await self.get_received_documents(query)
        for doc in documents:
            if doc.cufe == cufe:
                return doc
        logger.warning(
            f"CUFE {cufe} not among {len(documents)} received documents (nit={nit}, fecha={fecha}); "
            f"first: {[d.cufe for d in documents[:5]]}"
        )
        return None

    async def fetch_signed_pdf(self, ofe_identificacion: str, prefijo: str,
                               consecutivo: str) -> SearchEstadosResult:
        documento = prefijo.strip() + consecutivo.strip()
        logger.debug(f"Downloading PDF from Numrot: ofe={ofe_identificacion}, documento={documento}")
        return await self.gateway.search_estados_dian(ofe_identificacion, documento)
