"""
FACTURACION-CORE — Module 2: TracedClient
Outbound HTTP client for the Numrot gateway with tracing and audit.

Every call:
1. Tags the request with X-Correlation-ID from the current context
2. Logs provider_request / provider_response with secrets redacted
3. Hands an audit record to the AuditDispatcher, which persists it from a
   detached task with its own 10s ceiling. The task is not tied to the
   inbound request, so the row is written even after the caller's
   request has been cancelled or has already responded.
"""

import asyncio
import logging
import time

import httpx

from facturacion_core.core.config import settings
from facturacion_core.core.context import CORRELATION_HEADER, get_correlation_id
from facturacion_core.schemas.models import ProviderAuditLog
from facturacion_core.services.sanitizer import sanitize_body, sanitize_headers, sanitize_url

logger = logging.getLogger(__name__)

AUDIT_SAVE_TIMEOUT_SECONDS = 10.0
MAX_CONNECTIONS_CAP = 100
KEEPALIVE_EXPIRY_SECONDS = 90.0
CONNECT_TIMEOUT_SECONDS = 10.0
MIN_READ_TIMEOUT_SECONDS = 60.0


# ─────────────────────────────────────────────────────────────
# AUDIT DISPATCH
# ─────────────────────────────────────────────────────────────

class AuditDispatcher:
    """
    Fire-and-forget persistence of audit records.

    Tasks are kept in a set until they finish so they are not garbage
    collected mid-flight; drain() waits for the pending ones on shutdown.
    """

    def __init__(self, repository, timeout: float = AUDIT_SAVE_TIMEOUT_SECONDS):
        self.repository = repository
        self.timeout = timeout
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, record: ProviderAuditLog) -> asyncio.Task:
        task = asyncio.create_task(self._persist(record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _persist(self, record: ProviderAuditLog) -> None:
        try:
            await asyncio.wait_for(self.repository.save(record), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Audit log persistence timed out after {self.timeout}s: "
                f"correlation_id={record.correlation_id}, operation={record.operation}"
            )
            return
        except Exception as e:
            logger.exception(
                f"Failed to persist audit log: correlation_id={record.correlation_id}, "
                f"provider={record.provider}, operation={record.operation}, "
                f"url={record.request_url}, status={record.response_status}: {e}"
            )
            return
        logger.debug(
            f"Audit log persisted: correlation_id={record.correlation_id}, "
            f"operation={record.operation}, duration_ms={record.duration_ms}"
        )

    async def drain(self) -> None:
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} pending audit write(s)")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ─────────────────────────────────────────────────────────────
# TRACED CLIENT
# ─────────────────────────────────────────────────────────────

def build_http_client(config=None, transport: httpx.AsyncBaseTransport = None) -> httpx.AsyncClient:
    """Pooled AsyncClient sized from NUMROT_MAX_CONNS_PER_HOST and NUMROT_API_TIMEOUT."""
    config = config or settings
    max_connections = min(config.numrot_max_conns_per_host or 50, MAX_CONNECTIONS_CAP)
    api_timeout = float(config.numrot_api_timeout)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            api_timeout,
            connect=CONNECT_TIMEOUT_SECONDS,
            read=max(api_timeout, MIN_READ_TIMEOUT_SECONDS),
        ),
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
            keepalive_expiry=KEEPALIVE_EXPIRY_SECONDS,
        ),
        transport=transport,
    )


def extract_operation(request: httpx.Request, provider: str) -> str:
    """Last path segment, capitalized. Falls back to METHOD_provider."""
    segments = [s for s in request.url.path.strip("/").split("/") if s]
    if segments:
        operation = segments[-1]
        return operation[:1].upper() + operation[1:]
    return f"{request.method}_{provider}"


class TracedClient:
    """
    Wraps httpx.AsyncClient with logging and audit.

    Usage:
        client = TracedClient(provider="numrot", auditor=AuditDispatcher(repo))
        response = await client.request("POST", url, json=payload, headers=headers)
    """

    def __init__(self, config=None, provider: str = "numrot", auditor: AuditDispatcher = None,
                 http_client: httpx.AsyncClient = None):
        self.config = config or settings
        self.provider = provider
        self.auditor = auditor
        self.audit_enabled = self.config.audit_enabled
        self.log_request_body = self.config.audit_log_request_body
        self.log_response_body = self.config.audit_log_response_body
        self.max_body_size = self.config.audit_max_body_size or 102400
        self._client = http_client or build_http_client(self.config)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send one request. Accepts the keyword arguments of httpx build_request
        (json, content, params, headers).

        Raises:
            httpx.HTTPError: transport failures, after they have been logged and audited
        """
        request = self._client.build_request(method, url, **kwargs)
        correlation_id = get_correlation_id()
        if correlation_id:
            request.headers[CORRELATION_HEADER] = correlation_id

        operation = extract_operation(request, self.provider)
        request_body = request.read()
        self._log_request(correlation_id, operation, request, request_body)

        start = time.perf_counter()
        response = None
        error = None
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as e:
            error = e
        duration_ms = int((time.perf_counter() - start) * 1000)

        response_body = response.content if response is not None else b""
        self._log_response(correlation_id, operation, request, response, error, duration_ms, response_body)
        self._audit(correlation_id, operation, request, response, error, duration_ms,
                    request_body, response_body)

        if error is not None:
            raise error
        return response

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Logging ──

    def _log_request(self, correlation_id, operation, request, body):
        message = (
            f"provider_request correlation_id={correlation_id} provider={self.provider} "
            f"operation={operation} method={request.method} url={sanitize_url(str(request.url))}"
        )
        if self.log_request_body and body:
            message += f" request_body={sanitize_body(body, self.max_body_size)}"
        logger.info(message)

    def _log_response(self, correlation_id, operation, request, response, error, duration_ms, body):
        message = (
            f"correlation_id={correlation_id} provider={self.provider} operation={operation} "
            f"method={request.method} url={sanitize_url(str(request.url))} duration_ms={duration_ms}"
        )
        if error is not None:
            logger.error(f"provider_request_failed {message} error={error!r}")
            return

        message += f" status={response.status_code} response_size_bytes={len(body)}"
        if self.log_response_body and body:
            message += f" response_body={sanitize_body(body, self.max_body_size)}"

        if response.status_code >= 500:
            logger.error(f"provider_response {message}")
        elif response.status_code >= 400:
            logger.warning(f"provider_response {message}")
        else:
            logger.info(f"provider_response {message}")

    # ── Audit ──

    def _audit(self, correlation_id, operation, request, response, error, duration_ms,
               request_body, response_body):
        if not self.audit_enabled or self.auditor is None:
            reason = "audit disabled in configuration" if not self.audit_enabled else "audit repository not available"
            logger.debug(f"Audit log skipped: operation={operation}, reason={reason}")
            return

        if not correlation_id:
            correlation_id = f"audit-{time.time_ns()}"
            logger.warning(
                f"Missing correlation ID, generated fallback: fallback_id={correlation_id}, "
                f"operation={operation}"
            )

        record = ProviderAuditLog(
            correlation_id=correlation_id,
            provider=self.provider,
            operation=operation,
            request_method=request.method,
            request_url=sanitize_url(str(request.url)),
            request_headers=sanitize_headers(request.headers),
            request_body=sanitize_body(request_body, self.max_body_size),
            duration_ms=duration_ms,
        )
        if response is not None:
            record.response_status = response.status_code
            record.response_headers = sanitize_headers(response.headers)
            record.response_body = sanitize_body(response_body, self.max_body_size)
        if error is not None:
            record.error_message = str(error) or repr(error)

        self.auditor.dispatch(record)
