"""
result_aggregator.py — Thread-safe collection of per-document outcomes.

Location: facturacion_core/services/result_aggregator.py
"""

import threading
import time

from facturacion_core.schemas.models import FailedDocument, ProcessedDocument


class ResultAggregator:
    """
    Collects processed/failed documents from concurrent producers.

    Usage:
        aggregator = ResultAggregator(total_documents=len(docs))
        aggregator.add_processed(doc)
        processed, failed = aggregator.results()
        logger.info(f"Batch stats: {aggregator.stats()}")
    """

    def __init__(self, total_documents: int):
        self.total_documents = total_documents
        self._processed: list[ProcessedDocument] = []
        self._failed: list[FailedDocument] = []
        self._lock = threading.Lock()
        self._started = time.perf_counter()

    def add_processed(self, doc: ProcessedDocument) -> None:
        with self._lock:
            self._processed.append(doc)

    def add_failed(self, doc: FailedDocument) -> None:
        with self._lock:
            self._failed.append(doc)

    def extend(self, processed: list[ProcessedDocument], failed: list[FailedDocument]) -> None:
        with self._lock:
            self._processed.extend(processed)
            self._failed.extend(failed)

    def results(self) -> tuple[list[ProcessedDocument], list[FailedDocument]]:
        with self._lock:
            return list(self._processed), list(self._failed)

    def stats(self) -> dict:
        with self._lock:
            processed, failed = len(self._processed), len(self._failed)
        duration = time.perf_counter() - self._started
        return {
            "total": self.total_documents,
            "processed": processed,
            "failed": failed,
            "duration_ms": int(duration * 1000),
            "throughput": round(processed / duration, 2) if duration > 0 else 0.0,
            "success_rate": round(processed / self.total_documents * 100, 2) if self.total_documents else 0.0,
        }
