"""
streaming.py — Response framing for POST /registrar-documentos.

Location: facturacion_core/services/streaming.py

Streaming (DOCUMENT_STREAMING_ENABLED=true), status 200, chunked:
    {
      "streaming": true,
      "total_documents": N,
      "results": [
    {"index": 0, "prefijo": "SETT", "consecutivo": "1", "status": "processed", ...},
    {"index": 1, ..., "status": "failed", "errors": [...]}
      ],
      "summary": {"total": N, "processed": P, "failed": F, "lote": "...", "message": "..."}
    }
Each document is validated and goes through the coordinator alone; its
result is written as soon as it is known, in input order. A document that
fails validation becomes a failed result and the rest still go out.

Buffered: the same per-document calls under up to 10 concurrent workers,
merged into one DocumentRegistrationResponse; 400 when anything failed.

A single-document batch is dispatched before any byte is written, so its
validation and gateway errors reach the HTTP error handlers (400, 502...).

HTTP_WRITE_TIMEOUT_MASSIVE bounds the whole dispatch: documents still
pending when it expires are reported as failed.
"""

import asyncio
import json
import logging
import time
from typing import AsyncIterator, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, StreamingResponse

from facturacion_core.core.config import settings
from facturacion_core.modules.numrot_client import NO_RESULTS_MESSAGE, build_batch_message
from facturacion_core.schemas.models import (
    DocumentRegistrationResponse, DocumentsByType, FailedDocument, OpenETLDocument,
)
from facturacion_core.services.document_validator import select_document_type
from facturacion_core.services.result_aggregator import ResultAggregator
from facturacion_core.utils.document_helpers import processing_stamp

logger = logging.getLogger(__name__)

BUFFERED_MAX_WORKERS = 10
TIMEOUT_MESSAGE = "tiempo máximo de procesamiento de la petición excedido"


def fallback_lote() -> str:
    return f"lote-{int(time.time())}"


class RegistrationResponder:
    """
    Usage:
        responder = RegistrationResponder(document_service)
        return await responder.respond(batch, request)
    """

    def __init__(self, service, config=None):
        self.service = service
        self.config = config or settings

    async def respond(self, batch: DocumentsByType, request: Optional[Request] = None):
        """
        Shape errors (no type, several types) are a plain 400. Per-document
        validation only short-circuits a single-document batch.
        """
        document_type, documents = select_document_type(batch)

        if len(documents) == 1:
            return await self.respond_single(documents[0], document_type, request)

        if not self.config.document_streaming_enabled:
            logger.info("Streaming disabled, processing documents individually")
            return await self.buffered(documents, document_type)

        return StreamingResponse(
            self.stream(documents, document_type, request),
            media_type="application/json",
        )

    async def respond_single(self, doc: OpenETLDocument, document_type: str,
                             request: Optional[Request] = None):
        self.service.validator.validate(doc, document_type, 0)
        response = await self._register_one(doc, document_type)

        if not self.config.document_streaming_enabled:
            status_code = 400 if response.documentos_fallidos else 200
            return JSONResponse(status_code=status_code, content=response.model_dump())

        return StreamingResponse(
            self.stream([doc], document_type, request, ready={0: self.describe(0, doc, response)}),
            media_type="application/json",
        )

    # ─────────────────────────────────────────────────────────────
    # PER-DOCUMENT DISPATCH
    # ─────────────────────────────────────────────────────────────

    async def _register_one(self, doc: OpenETLDocument, document_type: str) -> DocumentRegistrationResponse:
        return await self.service.register_document(DocumentsByType.single(document_type, [doc]))

    async def _validated_register(self, index: int, doc: OpenETLDocument,
                                  document_type: str) -> DocumentRegistrationResponse:
        self.service.validator.validate(doc, document_type, index)
        return await self._register_one(doc, document_type)

    @staticmethod
    def describe(index: int, doc: OpenETLDocument, response: DocumentRegistrationResponse) -> tuple[dict, str]:
        """Returns (result object, lote). lote is empty unless the document was processed."""
        result = {"index": index, "prefijo": doc.rfa_prefijo, "consecutivo": doc.cdo_consecutivo}
        if response.documentos_procesados:
            first = response.documentos_procesados[0]
            result.update(
                status="processed", cdo_id=first.cdo_id,
                fecha_procesamiento=first.fecha_procesamiento,
                hora_procesamiento=first.hora_procesamiento,
            )
            return result, response.lote
        if response.documentos_fallidos:
            result.update(status="failed", errors=response.documentos_fallidos[0].errors)
        else:
            result.update(status="failed", errors=[NO_RESULTS_MESSAGE])
        return result, ""

    async def process_one(self, index: int, doc: OpenETLDocument, document_type: str,
                          timeout: Optional[float] = None) -> tuple[dict, str]:
        try:
            response = await asyncio.wait_for(self._validated_register(index, doc, document_type), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Document {index + 1} ({doc.rfa_prefijo}{doc.cdo_consecutivo}) timed out")
            return self._failed(index, doc, TIMEOUT_MESSAGE), ""
        except Exception as e:
            logger.warning(f"Document {index + 1} ({doc.rfa_prefijo}{doc.cdo_consecutivo}) failed: {e}")
            return self._failed(index, doc, str(e)), ""
        return self.describe(index, doc, response)

    @staticmethod
    def _failed(index: int, doc: OpenETLDocument, error: str) -> dict:
        return {
            "index": index, "prefijo": doc.rfa_prefijo, "consecutivo": doc.cdo_consecutivo,
            "status": "failed", "error": error,
        }

    # ─────────────────────────────────────────────────────────────
    # STREAMING
    # ─────────────────────────────────────────────────────────────

    async def stream(self, documents: list[OpenETLDocument], document_type: str,
                     request: Optional[Request] = None,
                     ready: Optional[dict[int, tuple[dict, str]]] = None) -> AsyncIterator[str]:
        """`ready` holds results already computed, by index."""
        total = len(documents)
        processed = failed = 0
        lote = ""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.http_write_timeout_massive

        yield f'{{\n  "streaming": true,\n  "total_documents": {total},\n  "results": [\n'

        for index, doc in enumerate(documents):
            if ready and index in ready:
                result, doc_lote = ready[index]
            else:
                remaining = deadline - loop.time()
                if remaining > 0:
                    result, doc_lote = await self.process_one(index, doc, document_type, remaining)
                else:
                    result, doc_lote = self._failed(index, doc, TIMEOUT_MESSAGE), ""

            if result["status"] == "processed":
                processed += 1
                lote = lote or doc_lote
            else:
                failed += 1

            separator = ",\n" if index > 0 else ""
            yield separator + json.dumps(result, ensure_ascii=False)

            if request is not None and await request.is_disconnected():
                logger.warning(
                    f"Client disconnected during streaming: processed={processed}, failed={failed}, "
                    f"remaining={total - index - 1}"
                )
                return

        summary = {
            "total": total,
            "processed": processed,
            "failed": failed,
            "lote": lote or fallback_lote(),
            "message": build_batch_message(processed, failed),
        }
        yield '\n  ],\n  "summary": ' + json.dumps(summary, ensure_ascii=False) + "\n}\n"
        logger.info(f"Streaming registration completed: total={total}, processed={processed}, failed={failed}")

    # ─────────────────────────────────────────────────────────────
    # BUFFERED
    # ─────────────────────────────────────────────────────────────

    async def buffered(self, documents: list[OpenETLDocument], document_type: str) -> JSONResponse:
        aggregator = ResultAggregator(total_documents=len(documents))
        lotes: list[str] = []
        queue: asyncio.Queue = asyncio.Queue()
        pending: dict[int, OpenETLDocument] = {}
        for index, doc in enumerate(documents):
            queue.put_nowait((index, doc))
            pending[index] = doc

        def add_failure(doc: OpenETLDocument, error: str) -> None:
            fecha, hora = processing_stamp()
            aggregator.add_failed(FailedDocument(
                documento=document_type, consecutivo=doc.cdo_consecutivo,
                prefijo=doc.rfa_prefijo, errors=[error],
                fecha_procesamiento=fecha, hora_procesamiento=hora,
            ))

        async def worker(worker_id: int):
            while not queue.empty():
                index, doc = queue.get_nowait()
                try:
                    response = await self._validated_register(index, doc, document_type)
                except Exception as e:
                    pending.pop(index, None)
                    add_failure(doc, str(e))
                    continue
                pending.pop(index, None)
                aggregator.extend(response.documentos_procesados, response.documentos_fallidos)
                if response.lote:
                    lotes.append(response.lote)

        workers = min(BUFFERED_MAX_WORKERS, len(documents))
        try:
            await asyncio.wait_for(
                asyncio.gather(*(worker(i) for i in range(workers))),
                self.config.http_write_timeout_massive,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Buffered registration timed out with {len(pending)} documents unfinished")
            for doc in pending.values():
                add_failure(doc, TIMEOUT_MESSAGE)

        processed, failed = aggregator.results()
        consolidated = DocumentRegistrationResponse(
            message=build_batch_message(len(processed), len(failed)),
            lote=lotes[0] if lotes else fallback_lote(),
            documentos_procesados=processed,
            documentos_fallidos=failed,
        )

        stats = aggregator.stats()
        if failed:
            logger.warning(f"Documents failed during registration: {stats}")
            status_code = 400
        else:
            logger.info(f"Documents processed successfully: {stats}")
            status_code = 200
        return JSONResponse(status_code=status_code, content=consolidated.model_dump())
