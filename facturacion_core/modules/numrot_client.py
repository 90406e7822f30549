"""
FACTURACION-CORE — Module 3: NumrotClient
Gateway client for the Numrot DIAN provider.

Operations:
- get_resolutions          GET  /api/Resoluciones/{nit}
- get_documents            POST {radian}/api/Radian/GetInfoDocument
- get_document_by_number   POST {radian}/api/Radian/GetDocumentByNumber
- get_received_documents   POST {radian}/api/Radian/DocumentsReceived
- search_estados_dian      GET  /api/searchestadosdian/{nit}/{doc}
- register_event           POST {radian}/api/Radian/SetEvent
- register_document        POST /api/SendDIAN/Json/Pdf (FC/NC/ND), /api/documentSinc (DS)

Every failure is raised as NumrotError whose message starts with one of:
  execute request | unexpected status code | unmarshal response |
  marshal request | authentication failed | document not found |
  provider error | numrot API error
The HTTP error handlers classify on those prefixes.
"""

import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, Optional

import httpx
from aiobreaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerListener

from facturacion_core.core.config import get_numrot_url, settings
from facturacion_core.core.errors import CounterpartyError, NumrotAuthError, NumrotError
from facturacion_core.modules.numrot_payload import NumrotPayloadBuilder
from facturacion_core.schemas.models import (
    RADIAN_CODES, Document, DocumentByNumberRequest, DocumentQueryRequest,
    DocumentRegistrationResponse, DocumentsByType, EventRegistrationResult, EventRequest,
    EventResult, EventType, FailedDocument, OpenETLDocument, ProcessedDocument,
    Resolution, SearchEstadosResult,
)
from facturacion_core.utils.document_helpers import (
    extract_prefix_and_consecutive, normalize_nit, parse_date, processing_stamp,
    synthesize_lote,
)

logger = logging.getLogger(__name__)

DEFAULT_RESOLUTION_START = "2019-01-19"
DEFAULT_RESOLUTION_END = "2030-01-19"
DEFAULT_RESOLUTION_FROM = 1
DEFAULT_RESOLUTION_TO = 5000000

RESOLUTIONS_OK = "100"
NO_RESULTS_MESSAGE = "Response received but no processed or failed documents"
CIRCUIT_OPEN_MESSAGE = "provider error: circuit breaker is open - too many failures detected"

MSG_ALL_PROCESSED = "Documentos procesados exitosamente"
MSG_ALL_FAILED = "Error al procesar documentos"
MSG_PARTIAL = "Algunos documentos fueron procesados, otros fallaron"
MSG_COMPLETED = "Procesamiento completado"


def build_batch_message(processed: int, failed: int) -> str:
    if processed > 0 and failed == 0:
        return MSG_ALL_PROCESSED
    if failed > 0 and processed == 0:
        return MSG_ALL_FAILED
    if processed > 0 and failed > 0:
        return MSG_PARTIAL
    return MSG_COMPLETED


def _as_list(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def _as_int(value) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


class FailureRateListener(CircuitBreakerListener):
    """
    Opens the breaker when the failure rate since the last state change
    reaches `threshold`, once at least `min_requests` calls were seen.
    Consecutive failures are handled by the breaker's own fail_max.
    """

    def __init__(self, threshold: float, min_requests: int):
        self.threshold = threshold
        self.min_requests = min_requests
        self.total = 0
        self.failures = 0

    def state_change(self, breaker, old, new):
        self.total = 0
        self.failures = 0

    def success(self, breaker):
        self.total += 1

    def failure(self, breaker, exception):
        self.total += 1
        self.failures += 1
        if self.total >= self.min_requests and self.failures / self.total >= self.threshold:
            logger.warning(
                f"Numrot failure rate {self.failures}/{self.total} reached, opening circuit breaker"
            )
            breaker.open()


def build_circuit_breaker(config) -> CircuitBreaker:
    return CircuitBreaker(
        fail_max=config.numrot_circuit_max_failures,
        timeout_duration=timedelta(seconds=config.numrot_circuit_cooldown),
        listeners=[FailureRateListener(config.numrot_circuit_failure_rate, config.numrot_circuit_max_failures)],
    )


class NumrotClient:
    """
    Authenticated client for the Numrot gateway.

    Usage:
        client = NumrotClient(traced_client, NumrotAuthManager(traced_client))
        response = await client.register_document(DocumentsByType(FC=[doc]))
    """

    def __init__(self, http, auth, config=None, counterparty_store=None,
                 builder: NumrotPayloadBuilder = None):
        self.http = http
        self.auth = auth
        self.config = config or settings
        self.counterparty_store = counterparty_store
        self.builder = builder or NumrotPayloadBuilder(self.config)
        self._semaphore = asyncio.Semaphore(self.config.document_max_concurrent_requests)
        self.breaker = build_circuit_breaker(self.config)

    # ─────────────────────────────────────────────────────────────
    # TRANSPORT HELPERS
    # ─────────────────────────────────────────────────────────────

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Numrot request failed: {method} {url}: {e!r}")
            raise NumrotError(f"execute request: {e}", status_code=502) from e

    async def _bearer_headers(self) -> dict[str, str]:
        try:
            bearer = await self.auth.get_bearer()
        except NumrotError as e:
            raise NumrotAuthError(f"get authentication token: {e.message}", status_code=502) from e
        return {
            "Authorization": bearer,
            "Content-Type": "application/json",
            "Accept-Encoding": "gzip",
        }

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Failed to decode Numrot response: {e}, body={response.text[:500]}")
            raise NumrotError(f"unmarshal response: {e}", status_code=502) from e

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        """The `error` field of a JSON error body, else the raw body."""
        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return response.text

    def _require_radian_credentials(self, purpose: str) -> None:
        if not self.config.numrot_key or not self.config.numrot_secret:
            raise NumrotError(f"key and secret are required for {purpose}", status_code=502)

    # ─────────────────────────────────────────────────────────────
    # RESOLUTIONS
    # ─────────────────────────────────────────────────────────────

    async def get_resolutions(self, nit: str) -> list[Resolution]:
        """Numbering resolutions of an issuer. Invalid entries are skipped."""
        if not self.config.numrot_resolutions_enabled:
            return self._hardcoded_resolutions(nit)

        headers = await self._bearer_headers()
        url = get_numrot_url("resoluciones", self.config, nit=normalize_nit(nit))
        response = await self._send("GET", url, headers=headers)

        if response.status_code == 401:
            self.auth.clear_token()
            logger.warning("Numrot token expired or invalid, cache cleared")
            raise NumrotAuthError("authentication failed: token expired or invalid", status_code=502)
        if response.status_code != 200:
            raise NumrotError(f"unexpected status code {response.status_code}: {response.text}", status_code=502)

        data = self._decode(response)
        code = str(data.get("OperationCode", ""))
        if code != RESOLUTIONS_OK:
            raise NumrotError(
                f"numrot API error: {data.get('OperationDescription', '')} (code: {code})",
                status_code=502,
            )

        resolutions = []
        for entry in data.get("NumberRangeResponse") or []:
            try:
                for field in ("ResolutionDate", "ValidDateFrom", "ValidDateTo"):
                    parse_date(str(entry.get(field, ""))[:10])
            except ValueError as e:
                logger.warning(f"Skipping resolution {entry.get('ResolutionNumber')}: {e}")
                continue
            resolutions.append(Resolution(
                resolution_number=str(entry.get("ResolutionNumber", "")),
                resolution_date=str(entry.get("ResolutionDate"))[:10],
                prefix=entry.get("Prefix") or "",
                from_number=_as_int(entry.get("FromNumber")),
                to_number=_as_int(entry.get("ToNumber")),
                valid_date_from=str(entry.get("ValidDateFrom"))[:10],
                valid_date_to=str(entry.get("ValidDateTo"))[:10],
            ))
        return resolutions

    def _hardcoded_resolutions(self, nit: str) -> list[Resolution]:
        c = self.config
        if not c.numrot_hardcoded_invoice_auth or not c.numrot_hardcoded_prefix:
            logger.warning(f"Resolutions disabled without hardcoded values, nit={nit}")
            return []

        def _date(value: str, default: str) -> str:
            try:
                parse_date(value)
                return value
            except ValueError:
                return default

        return [Resolution(
            resolution_number=c.numrot_hardcoded_invoice_auth,
            prefix=c.numrot_hardcoded_prefix,
            from_number=_as_int(c.numrot_hardcoded_from) or DEFAULT_RESOLUTION_FROM,
            to_number=_as_int(c.numrot_hardcoded_to) or DEFAULT_RESOLUTION_TO,
            valid_date_from=_date(c.numrot_hardcoded_start_date, DEFAULT_RESOLUTION_START),
            valid_date_to=_date(c.numrot_hardcoded_end_date, DEFAULT_RESOLUTION_END),
        )]

    # ─────────────────────────────────────────────────────────────
    # DOCUMENT QUERIES (Radian)
    # ─────────────────────────────────────────────────────────────

    async def get_documents(self, query: DocumentQueryRequest) -> list[Document]:
        self._require_radian_credentials("document queries")
        data = await self._radian_query("radian_documents", query.model_dump())
        return self._map_documents(data, self._issued_to_document)

    async def get_document_by_number(self, query: DocumentByNumberRequest) -> list[Document]:
        self._require_radian_credentials("document queries")
        data = await self._radian_query("radian_by_number", query.model_dump())
        return self._map_documents(data, self._issued_to_document)

    async def get_received_documents(self, query: DocumentQueryRequest) -> list[Document]:
        self._require_radian_credentials("document queries")
        data = await self._radian_query("radian_received", query.model_dump())
        items = data.get("Data") or [] if data else []
        documents = self._map_documents(data, self._received_to_document)
        if items and not documents:
            raise NumrotError(f"all {len(items)} documents failed transformation", status_code=502)
        return documents

    async def _radian_query(self, service: str, params: dict) -> Optional[dict]:
        body = {"Key": self.config.numrot_key, "Secret": self.config.numrot_secret, **params}
        url = get_numrot_url(service, self.config)
        response = await self._send("POST", url, json=body, headers={"Content-Type": "application/json"})

        if response.status_code == 204:
            return None
        if response.status_code != 200:
            raise NumrotError(f"unexpected status code {response.status_code}: {response.text}", status_code=502)

        data = self._decode(response)
        code = _as_int(data.get("Code"))
        if code == 204:
            return None
        if code != 200:
            raise NumrotError(f"numrot API error: {data.get('Message', '')} (code: {code})", status_code=502)
        return data

    @staticmethod
    def _map_documents(data: Optional[dict], transform) -> list[Document]:
        if not data:
            return []
        documents = []
        for item in data.get("Data") or []:
            try:
                documents.append(transform(item))
            except ValueError as e:
                logger.warning(f"Skipping document from Numrot: {e}")
        return documents

    @staticmethod
    def _issued_to_document(item: dict) -> Document:
        numero = str(item.get("NumeroFactura") or "")
        fecha = str(item.get("FechaEmision") or "")[:10]
        parse_date(fecha)
        cufe = item.get("CUFE") or ""
        if not cufe:
            raise ValueError(f"missing required field: CUFE (document number: {numero})")
        return Document(
            ofe=item.get("EmisorNit") or "",
            proveedor=item.get("EmisorNombre") or "",
            tipo=item.get("TipoFactura") or "",
            prefijo="",
            consecutivo=numero,
            cufe=cufe,
            fecha=fecha,
            hora=item.get("HoraEmision") or "",
            valor=float(item.get("TotalFactura") or 0),
            marca=False,
            urlPDF=item.get("UrlPDF") or None,
            urlXML=item.get("UrlXML") or None,
        )

    @staticmethod
    def _received_to_document(item: dict) -> Document:
        for field in ("ofe", "proveedor", "tipo", "consecutivo", "cufe", "fecha", "hora", "valor"):
            if not item.get(field):
                raise ValueError(f"missing required field: {field}")
        try:
            parse_date(item["fecha"])
        except ValueError as e:
            raise ValueError(f"parse fecha [{item['fecha']}]: expected format YYYY-MM-DD") from e
        try:
            valor = float(item["valor"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"parse valor [{item['valor']}]: invalid numeric format") from e
        return Document(
            ofe=item["ofe"], proveedor=item["proveedor"], tipo=item["tipo"],
            prefijo=item.get("prefijo") or "", consecutivo=item["consecutivo"],
            cufe=item["cufe"], fecha=item["fecha"], hora=item["hora"], valor=valor,
            marca=False, urlPDF=item.get("UrlPDF") or None, urlXML=item.get("UrlXML") or None,
        )

    # ─────────────────────────────────────────────────────────────
    # PDF / STATUS LOOKUP
    # ─────────────────────────────────────────────────────────────

    async def search_estados_dian(self, nit: str, documento: str) -> SearchEstadosResult:
        """Status of an issued document, including the signed XML and PDF."""
        headers = await self._bearer_headers()
        url = get_numrot_url("search_estados", self.config, nit=normalize_nit(nit), documento=documento)
        response = await self._send(
            "GET", url, headers=headers, params={"includeXml": "true", "includePdf": "true"},
        )

        if response.status_code == 401:
            self.auth.clear_token()
            raise NumrotAuthError("authentication failed: token expired", status_code=502)
        if response.status_code == 404:
            raise NumrotError(f"document not found: {documento}", status_code=404)
        if response.status_code != 200:
            raise NumrotError(f"unexpected status code {response.status_code}: {response.text}", status_code=502)

        result = SearchEstadosResult(**self._decode(response))
        if result.StatusCode and result.StatusCode != "200":
            detail = "; ".join(result.ErrorMessage) or result.StatusDescription or result.StatusMessage
            raise NumrotError(f"provider error: {detail}", status_code=502)
        if not result.Uuid and not result.Document:
            raise NumrotError(f"document not found: {documento}", status_code=404)
        return result

    # ─────────────────────────────────────────────────────────────
    # RADIAN EVENTS
    # ─────────────────────────────────────────────────────────────

    async def register_event(self, event: EventRequest, emisor_nit: str,
                             razon_social: str) -> EventRegistrationResult:
        """
        Register an ACUSE/RECIBOBIEN/ACEPTACION/RECLAMO event for an issued document.
        The event must already be validated; FechaGeneracionEvento is YYYY-MM-DD HH:MM:SS.
        """
        self._require_radian_credentials("event registration")
        try:
            radian_code = RADIAN_CODES[EventType(event.EventType)]
        except ValueError as e:
            raise NumrotError(f"invalid event type: {event.EventType}", status_code=400) from e

        body = {
            "Key": self.config.numrot_key,
            "Secret": self.config.numrot_secret,
            "EmisorNit": emisor_nit,
            "RazonSocial": razon_social,
            "DocumentoNumeroCompleto": event.DocumentoNumeroCompleto,
            "CodigoRadian": [radian_code],
            "FechaGeneracionEvento": event.FechaGeneracionEvento,
            "NombreGenerador": event.NombreGenerador,
            "ApellidoGenerador": event.ApellidoGenerador,
            "IdentificacionGenerador": event.IdentificacionGenerador,
        }
        if event.CodigoRechazo:
            body["CodigoRechazo"] = event.CodigoRechazo

        logger.info(
            f"Registering Radian event {event.EventType} ({radian_code}) "
            f"for document {event.DocumentoNumeroCompleto}"
        )
        url = get_numrot_url("radian_event", self.config)
        response = await self._send("POST", url, json=body, headers={"Content-Type": "application/json"})

        if response.status_code == 400:
            raise NumrotError(f"document not found: {self._error_detail(response)}", status_code=404)
        if response.status_code != 200:
            raise NumrotError(f"unexpected status code {response.status_code}: {response.text}", status_code=502)

        data = self._decode(response)
        return EventRegistrationResult(
            Code=str(data.get("Codigo", "")),
            NumeroDocumento=str(data.get("NumeroDocumento") or ""),
            Resultado=[
                EventResult(
                    TipoEvento=str(r.get("TipoEvento") or ""),
                    Mensaje=str(r.get("Mensaje") or ""),
                    MensajeError=str(r.get("MensajeError") or ""),
                    CodigoRespuesta=str(r.get("CodigoRespuesta") or ""),
                )
                for r in data.get("Resultado") or []
            ],
            MensajeError=str(data.get("MensajeError") or ""),
        )

    # ─────────────────────────────────────────────────────────────
    # DOCUMENT REGISTRATION
    # ─────────────────────────────────────────────────────────────

    async def register_document(self, batch: DocumentsByType) -> DocumentRegistrationResponse:
        """
        Send every document of the (single) non-empty type to Numrot.

        One upstream call per document, through the circuit breaker. Documents
        are sent in sub-batches of DOCUMENT_BATCH_SIZE, at most
        concurrent_batch_limit sub-batches at a time, and never more than
        DOCUMENT_MAX_CONCURRENT_REQUESTS calls in flight.
        A single document raises its error; with several, each failure becomes
        a documentos_fallidos entry and results keep the input order.
        """
        types = batch.non_empty_types()
        if not types:
            raise NumrotError("no documents provided", status_code=400)
        document_type = types[0]
        documents: list[OpenETLDocument] = getattr(batch, document_type)

        if len(documents) == 1:
            return await self._register_protected(documents[0], document_type)

        size = self.config.document_batch_size
        chunks = [documents[i:i + size] for i in range(0, len(documents), size)]
        batch_gate = asyncio.Semaphore(self.config.concurrent_batch_limit)

        async def run_chunk(chunk: list[OpenETLDocument]) -> list:
            async with batch_gate:
                return await asyncio.gather(*(self._register_guarded(doc, document_type) for doc in chunk))

        logger.info(
            f"Registering {len(documents)} {document_type} documents in {len(chunks)} sub-batches"
        )
        chunk_outcomes = await asyncio.gather(*(run_chunk(chunk) for chunk in chunks))
        outcomes = [outcome for chunk in chunk_outcomes for outcome in chunk]

        processed: list[ProcessedDocument] = []
        failed: list[FailedDocument] = []
        for doc, outcome in zip(documents, outcomes):
            if isinstance(outcome, Exception):
                fecha, hora = processing_stamp()
                failed.append(FailedDocument(
                    documento=document_type, consecutivo=doc.cdo_consecutivo,
                    prefijo=doc.rfa_prefijo, errors=[str(outcome)],
                    fecha_procesamiento=fecha, hora_procesamiento=hora,
                ))
                continue
            if not outcome.documentos_procesados and not outcome.documentos_fallidos:
                fecha, hora = processing_stamp()
                failed.append(FailedDocument(
                    documento=document_type, consecutivo=doc.cdo_consecutivo,
                    prefijo=doc.rfa_prefijo, errors=[NO_RESULTS_MESSAGE],
                    fecha_procesamiento=fecha, hora_procesamiento=hora,
                ))
                continue
            processed.extend(outcome.documentos_procesados)
            failed.extend(outcome.documentos_fallidos)

        if processed:
            first = processed[0]
            lote = f"lote-{first.fecha_procesamiento}-{first.hora_procesamiento}"
        else:
            lote = synthesize_lote()

        logger.info(
            f"Numrot batch finished: type={document_type}, processed={len(processed)}, failed={len(failed)}"
        )
        return DocumentRegistrationResponse(
            message=build_batch_message(len(processed), len(failed)),
            lote=lote,
            documentos_procesados=processed,
            documentos_fallidos=failed,
        )

    async def _register_guarded(self, doc: OpenETLDocument, document_type: str):
        async with self._semaphore:
            try:
                return await self._register_protected(doc, document_type)
            except Exception as e:
                logger.warning(
                    f"Document {doc.rfa_prefijo}{doc.cdo_consecutivo} failed against Numrot: {e}"
                )
                return e

    async def _register_protected(self, doc: OpenETLDocument, document_type: str) -> DocumentRegistrationResponse:
        try:
            return await self.breaker.call_async(self._register_single, doc, document_type)
        except CircuitBreakerError as e:
            logger.error(f"Numrot circuit breaker open, {doc.rfa_prefijo}{doc.cdo_consecutivo} not sent: {e}")
            raise NumrotError(CIRCUIT_OPEN_MESSAGE, status_code=502) from e

    async def _register_single(self, doc: OpenETLDocument, document_type: str) -> DocumentRegistrationResponse:
        headers = await self._bearer_headers()
        acquirer = await self._lookup_acquirer(doc) if document_type != "DS" else None

        try:
            payload = self.builder.build(doc, document_type, acquirer)
            content = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise NumrotError(f"marshal request: {e}", status_code=502) from e

        if document_type == "DS":
            url = get_numrot_url(
                "document_sinc", self.config,
                nit=normalize_nit(doc.adq_identificacion),
                documento=doc.rfa_prefijo + doc.cdo_consecutivo,
            )
        else:
            url = get_numrot_url("send_dian", self.config)

        logger.info(f"Sending {document_type} {doc.rfa_prefijo}{doc.cdo_consecutivo} to Numrot")
        response = await self._send("POST", url, content=content, headers=headers)

        if response.status_code == 401:
            self.auth.clear_token()
            logger.warning("Numrot token expired or invalid, cache cleared")
            raise NumrotAuthError("authentication failed: token expired or invalid", status_code=502)
        if response.status_code != 200:
            raise NumrotError(f"unexpected status code {response.status_code}: {response.text}", status_code=502)

        return self.parse_send_response(self._decode(response), [doc], document_type)

    async def _lookup_acquirer(self, doc: OpenETLDocument):
        if self.counterparty_store is None:
            return None
        try:
            return await self.counterparty_store.find_acquirer(doc.ofe_identificacion, doc.adq_identificacion)
        except CounterpartyError as e:
            logger.warning(f"Acquirer lookup for payload contact failed, continuing without it: {e}")
            return None

    # ── Response parsing ──

    def parse_send_response(self, data: Any, documents: list[OpenETLDocument],
                            document_type: str) -> DocumentRegistrationResponse:
        """
        Accepts the three shapes Numrot answers with: one document object
        (StatusCode), an array of them, or the legacy
        {message, lote, documentos_procesados, documentos_fallidos}.
        """
        if isinstance(data, dict) and data.get("StatusCode") not in (None, ""):
            entries = [data]
        elif isinstance(data, list) and data:
            entries = data
        elif isinstance(data, dict) and ("documentos_procesados" in data or "documentos_fallidos" in data):
            response = DocumentRegistrationResponse(**data)
            response.lote = response.lote or synthesize_lote()
            return response
        else:
            raise NumrotError("unmarshal response: unrecognized SendDIAN response format", status_code=502)

        fecha, hora = processing_stamp()
        processed: list[ProcessedDocument] = []
        failed: list[FailedDocument] = []
        lote = ""

        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise NumrotError("unmarshal response: document entry is not an object", status_code=502)
            lote = lote or str(entry.get("TrackId") or entry.get("Uuid") or "")
            number = str(entry.get("DocumentNumber") or "")
            prefijo, consecutivo = self._resolve_document_number(number, documents, index)

            if _as_int(entry.get("StatusCode")) != 200:
                errors = _as_list(entry.get("ErrorMessage")) + _as_list(entry.get("ErrorReason")) \
                    + _as_list(entry.get("Warnings"))
                errors = errors or ["Error desconocido"]
                logger.warning(f"Document {number} rejected by Numrot: {errors}")
                failed.append(FailedDocument(
                    documento=document_type, consecutivo=consecutivo, prefijo=prefijo,
                    errors=errors, fecha_procesamiento=fecha, hora_procesamiento=hora,
                ))
                continue

            cdo_id = _as_int(entry.get("cdo_id")) or _as_int(entry.get("TrackId")) or _as_int(consecutivo)
            processed.append(ProcessedDocument(
                cdo_id=cdo_id, rfa_prefijo=prefijo, cdo_consecutivo=consecutivo,
                fecha_procesamiento=fecha, hora_procesamiento=hora,
                xml_base64=entry.get("Document") or None,
                pdf_base64=entry.get("Pdfdocument") or None,
            ))
            logger.info(f"Document {number} processed by Numrot")

        return DocumentRegistrationResponse(
            message=build_batch_message(len(processed), len(failed)),
            lote=lote or synthesize_lote(),
            documentos_procesados=processed,
            documentos_fallidos=failed,
        )

    @staticmethod
    def _resolve_document_number(number: str, documents: list[OpenETLDocument],
                                 index: int) -> tuple[str, str]:
        prefijo, consecutivo = extract_prefix_and_consecutive(number)
        if prefijo and consecutivo:
            return prefijo, consecutivo
        for doc in documents:
            if doc.rfa_prefijo + doc.cdo_consecutivo == number:
                return doc.rfa_prefijo, doc.cdo_consecutivo
        if 0 <= index < len(documents):
            return documents[index].rfa_prefijo, documents[index].cdo_consecutivo
        if documents:
            return documents[0].rfa_prefijo, documents[0].cdo_consecutivo
        return number, ""

