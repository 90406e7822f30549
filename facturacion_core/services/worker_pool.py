"""
worker_pool.py — Bounded concurrent enrichment of a document batch.

Location: facturacion_core/services/worker_pool.py

Flow:
1. All documents are queued as jobs (index, document)
2. `worker_count` asyncio tasks pull jobs, look the counterparty up and enrich
3. Results are collected until every job answered or the pool is stopped

Per-pool memoization:
- counterparty cache, key "ofe:adq" (FC/NC/ND) or "adq:ofe" (DS), normalized NITs
- resolution cache, key "baseNit:number:prefix"
Concurrent jobs with the same key share a single lookup. The caches die
with the pool.
"""

import asyncio
import logging
from typing import Optional

from facturacion_core.core.config import settings
from facturacion_core.schemas.models import FailedDocument, OpenETLDocument, Resolution
from facturacion_core.services.document_enricher import DocumentEnricher, EnrichmentError
from facturacion_core.utils.document_helpers import normalize_nit, processing_stamp

logger = logging.getLogger(__name__)


class CachedCounterpartyLookup:
    """
    Memoizing view over a CounterpartyStore.

    The first caller for a key starts the lookup; later callers await the
    same task. Failed lookups are evicted so they are not cached.
    """

    def __init__(self, store):
        self.store = store
        self._acquirers: dict[str, asyncio.Task] = {}
        self._providers: dict[str, asyncio.Task] = {}

    async def find_acquirer(self, ofe: str, adq: str):
        key = f"{normalize_nit(ofe)}:{normalize_nit(adq)}"
        return await self._memoized(self._acquirers, key, lambda: self.store.find_acquirer(ofe, adq))

    async def find_provider(self, ofe: str, pro: str):
        key = f"{normalize_nit(ofe)}:{normalize_nit(pro)}"
        return await self._memoized(self._providers, key, lambda: self.store.find_provider(ofe, pro))

    @staticmethod
    async def _memoized(cache: dict, key: str, factory):
        task = cache.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            cache[key] = task
        try:
            return await asyncio.shield(task)
        except Exception:
            if cache.get(key) is task:
                del cache[key]
            raise


class DocumentWorkerPool:
    """
    Usage:
        pool = DocumentWorkerPool(worker_count=10, store=counterparty_store, gateway=numrot_client)
        valid, failed = await pool.process_documents(documents, "FC")
    """

    def __init__(self, worker_count: int = None, store=None, gateway=None,
                 enricher: DocumentEnricher = None, config=None):
        self.config = config or settings
        self.worker_count = max(1, worker_count or self.config.document_worker_pool_size)
        self.lookup = CachedCounterpartyLookup(store) if store is not None else None
        self.gateway = gateway
        self.enricher = enricher or DocumentEnricher(self.config)
        self._resolutions: dict[str, asyncio.Task] = {}
        self._stopped = asyncio.Event()

    def stop(self) -> None:
        """Stop delivering results; process_documents returns what it has."""
        self._stopped.set()

    async def process_documents(self, documents: list[OpenETLDocument],
                                document_type: str) -> tuple[list[OpenETLDocument], list[FailedDocument]]:
        """
        Enrich every document concurrently.

        Returns (valid_documents, failed_documents). Both lists are always
        present; result order follows completion, not input.
        """
        valid: list[OpenETLDocument] = []
        failed: list[FailedDocument] = []
        if not documents:
            return valid, failed

        fecha, hora = processing_stamp()
        capacity = 2 * self.worker_count
        jobs: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        results: asyncio.Queue = asyncio.Queue(maxsize=capacity)

        workers = [
            asyncio.create_task(self._worker(i, jobs, results, document_type))
            for i in range(min(self.worker_count, len(documents)))
        ]
        feeder = asyncio.create_task(self._feed(jobs, documents, len(workers)))
        stop_waiter = asyncio.create_task(self._stopped.wait())

        try:
            received = 0
            while received < len(documents):
                getter = asyncio.create_task(results.get())
                done, _ = await asyncio.wait({getter, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    logger.warning(
                        f"Worker pool stopped with {received}/{len(documents)} results collected"
                    )
                    break
                index, doc, error = getter.result()
                received += 1
                if error is None:
                    valid.append(doc)
                else:
                    failed.append(FailedDocument(
                        documento=document_type, consecutivo=doc.cdo_consecutivo,
                        prefijo=doc.rfa_prefijo, errors=[error],
                        fecha_procesamiento=fecha, hora_procesamiento=hora,
                    ))
        finally:
            stop_waiter.cancel()
            feeder.cancel()
            for worker in workers:
                worker.cancel()
            await asyncio.gather(feeder, *workers, return_exceptions=True)

        logger.info(
            f"Worker pool finished: type={document_type}, valid={len(valid)}, failed={len(failed)}, "
            f"workers={len(workers)}"
        )
        return valid, failed

    @staticmethod
    async def _feed(jobs: asyncio.Queue, documents: list[OpenETLDocument], worker_count: int) -> None:
        for index, doc in enumerate(documents):
            await jobs.put((index, doc))
        for _ in range(worker_count):
            await jobs.put(None)

    async def _worker(self, worker_id: int, jobs: asyncio.Queue, results: asyncio.Queue,
                      document_type: str) -> None:
        while True:
            job = await jobs.get()
            if job is None:
                return
            index, doc = job
            try:
                enriched = await self._process(doc, document_type, index)
                outcome = (index, enriched, None)
            except EnrichmentError as e:
                outcome = (index, doc, e.message)
            except Exception as e:
                logger.exception(f"Worker {worker_id} crashed on document {index + 1}: {e}")
                outcome = (index, doc, f"Error interno procesando documento: {e}")
            await results.put(outcome)

    async def _process(self, doc: OpenETLDocument, document_type: str, index: int) -> OpenETLDocument:
        doc = await self.enricher.enrich(doc, document_type, self.lookup)
        if self.gateway is None or not self.enricher.needs_resolution(doc, document_type):
            return doc

        try:
            resolution = await self._find_resolution(doc.ofe_identificacion, doc.rfa_resolucion, doc.rfa_prefijo)
        except EnrichmentError:
            if document_type == "FC":
                raise
            logger.debug(f"Optional resolution not found for {document_type} document {index + 1}")
            return doc

        self.enricher.apply_resolution(doc, resolution)
        if document_type == "FC":
            self.enricher.check_resolution_range(doc, resolution, index)
        return doc

    async def _find_resolution(self, ofe: str, number: str, prefix: str) -> Resolution:
        base_nit = normalize_nit(ofe)
        key = f"{base_nit}:{number}:{prefix}"
        resolution = await CachedCounterpartyLookup._memoized(
            self._resolutions, key, lambda: self._query_resolution(base_nit, number, prefix, ofe),
        )
        return resolution

    async def _query_resolution(self, base_nit: str, number: str, prefix: str, ofe: str) -> Resolution:
        try:
            resolutions = await self.gateway.get_resolutions(base_nit)
        except Exception as e:
            raise EnrichmentError(f"error al consultar resoluciones para OFE [{base_nit}]: {e}") from e
        match: Optional[Resolution] = next(
            (r for r in resolutions if r.resolution_number == number and r.prefix == prefix), None,
        )
        if match is None:
            raise EnrichmentError(f"resolución [{number}] con prefijo [{prefix}] no encontrada para el OFE [{ofe}]")
        return match
