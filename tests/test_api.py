"""
HTTP surface tests with FastAPI's TestClient. Services are replaced through
dependency overrides; nothing reaches Numrot or Supabase.
"""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from facturacion_core.core.config import settings
from facturacion_core.core.context import CORRELATION_HEADER
from facturacion_core.core.errors import (
    ConfigurationError, CounterpartyError, NumrotAuthError, NumrotError,
)
from facturacion_core.dependencies import (
    get_document_service, get_event_service, get_registration_responder,
    require_audit_repository, require_counterparty_store,
)
from facturacion_core.main import app
from facturacion_core.schemas.models import (
    Acquirer, Document, DocumentRegistrationResponse, EventRegistrationResult,
    ProcessedDocument, ProviderAuditLog, SearchEstadosResult,
)
from facturacion_core.services import auth_middleware
from facturacion_core.services.document_service import DocumentService
from facturacion_core.services.event_service import EventService
from facturacion_core.services.streaming import RegistrationResponder


class StubGateway:
    def __init__(self):
        self.received = [
            Document(cufe="cufe-1", consecutivo="1", urlPDF="https://pdf/1", urlXML="https://xml/1"),
            Document(cufe="cufe-2", consecutivo="2", urlPDF="https://pdf/2"),
        ]
        self.error = None
        self.delay = 0.0

    async def register_document(self, batch):
        doc = getattr(batch, batch.non_empty_types()[0])[0]
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return DocumentRegistrationResponse(lote="track-1", documentos_procesados=[
            ProcessedDocument(cdo_id=1, rfa_prefijo=doc.rfa_prefijo, cdo_consecutivo=doc.cdo_consecutivo),
        ])

    async def get_documents(self, query):
        if self.error:
            raise self.error
        return self.received[:1]

    async def get_document_by_number(self, query):
        return self.received[:1]

    async def get_received_documents(self, query):
        if self.error:
            raise self.error
        return self.received

    async def search_estados_dian(self, nit, documento):
        if self.error:
            raise self.error
        return SearchEstadosResult(Uuid="u", Document="JVBERi0=" if documento == "SETT1" else "")


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def client(config, gateway):
    service = DocumentService(gateway, config=config)
    app.dependency_overrides[get_document_service] = lambda: service
    app.dependency_overrides[get_registration_responder] = lambda: RegistrationResponder(service, config)
    app.dependency_overrides[get_event_service] = lambda: EventService(gateway, config)
    yield TestClient(app)
    app.dependency_overrides.clear()


def registration_body(make_document, count=1, **overrides):
    docs = [make_document(cdo_consecutivo=str(i), **overrides).model_dump(exclude_none=True)
            for i in range(1, count + 1)]
    return {"documentos": {"FC": docs}}


# ─────────────────────────────────────────────────────────────
# SYSTEM
# ─────────────────────────────────────────────────────────────


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.headers[CORRELATION_HEADER]

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={CORRELATION_HEADER: "abc-123"})
        assert response.headers[CORRELATION_HEADER] == "abc-123"


# ─────────────────────────────────────────────────────────────
# REGISTRATION
# ─────────────────────────────────────────────────────────────


class TestRegistrarDocumentos:
    def test_streaming_response(self, client, make_document):
        response = client.post("/api/v1/registrar-documentos", json=registration_body(make_document, 2))
        assert response.status_code == 200
        body = response.json()
        assert body["streaming"] is True
        assert [r["status"] for r in body["results"]] == ["processed", "processed"]
        assert body["summary"]["lote"] == "track-1"

    def test_buffered_failure_is_400(self, client, gateway, config, make_document):
        config.document_streaming_enabled = False
        gateway.error = NumrotError("execute request: timeout")
        response = client.post("/api/v1/registrar-documentos", json=registration_body(make_document, 2))
        assert response.status_code == 400
        assert [f["errors"] for f in response.json()["documentos_fallidos"]] == [["execute request: timeout"]] * 2

    @pytest.mark.parametrize("streaming", [True, False])
    def test_single_document_authentication_failure_is_502(self, client, gateway, config,
                                                            make_document, streaming):
        config.document_streaming_enabled = streaming
        gateway.error = NumrotAuthError("numrot authentication failed: authentication failed with status 401: no")
        response = client.post("/api/v1/registrar-documentos", json=registration_body(make_document))
        assert response.status_code == 502
        assert response.json() == {"message": "Error de Autenticación",
                                   "errors": ["Error de autenticación con el proveedor"]}

    def test_stale_document_does_not_block_the_batch(self, client, make_document):
        docs = [make_document(cdo_consecutivo="1"),
                make_document(cdo_consecutivo="2", cdo_fecha="2000-01-01")]
        body = {"documentos": {"FC": [d.model_dump(exclude_none=True) for d in docs]}}
        response = client.post("/api/v1/registrar-documentos", json=body)

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["status"] for r in results] == ["processed", "failed"]
        assert results[1]["error"].startswith("document 2: cdo_fecha must be today")
        assert "FAD09e" in results[1]["error"]
        assert response.json()["summary"]["processed"] == 1

    def test_request_ceiling(self, client, gateway, config, make_document, monkeypatch):
        config.document_streaming_enabled = False
        gateway.delay = 0.3
        monkeypatch.setattr(settings, "http_write_timeout_massive", 0.05)
        response = client.post("/api/v1/registrar-documentos", json=registration_body(make_document))
        assert response.status_code == 504
        assert response.json()["message"] == "Tiempo de Espera Agotado"

    def test_validation_error(self, client, make_document):
        response = client.post("/api/v1/registrar-documentos",
                               json=registration_body(make_document, cdo_fecha="2000-01-01"))
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Error de Validación"
        assert "document 1: cdo_fecha must be today" in body["errors"][0]

    def test_empty_batch(self, client):
        response = client.post("/api/v1/registrar-documentos", json={"documentos": {}})
        assert response.status_code == 400
        assert response.json()["errors"] == ["no documents provided"]

    def test_malformed_body(self, client):
        response = client.post("/api/v1/registrar-documentos", content=b"{not json",
                               headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["errors"] == ["El cuerpo de la petición no es válido"]


# ─────────────────────────────────────────────────────────────
# FACTURAS
# ─────────────────────────────────────────────────────────────


QUERY = {"CompanyNit": "860011153", "InitialDate": "2026-01-01", "FinalDate": "2026-01-31"}


class TestFacturas:
    def test_issued(self, client):
        response = client.post("/api/v1/facturas", json=QUERY)
        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_query_validation(self, client):
        response = client.post("/api/v1/facturas", json={**QUERY, "CompanyNit": ""})
        assert response.status_code == 400
        assert response.json()["errors"] == ["company nit is required"]

    def test_gateway_failure(self, client, gateway):
        gateway.error = NumrotError("unexpected status code 503: busy")
        response = client.post("/api/v1/facturas", json=QUERY)
        assert response.status_code == 502
        assert response.json()["errors"] == ["Servicio del proveedor no disponible"]

    def test_missing_credentials(self, client, gateway):
        gateway.error = NumrotError("key and secret are required for document queries")
        response = client.post("/api/v1/facturas", json=QUERY)
        assert response.status_code == 502
        assert response.json()["message"] == "Error de Configuración"

    def test_received_with_download(self, client):
        response = client.post("/api/v1/facturas/received?download=1", json=QUERY)
        assert response.json() == {"mensaje": "Exitoso", "status": 200, "urlPDF": "https://pdf/1",
                                   "urlXML": "https://xml/1", "cufe": "cufe-1"}

    def test_by_number(self, client):
        response = client.post("/api/v1/facturas/by-number", json={
            "CompanyNit": "860011153", "DocumentNumber": "SETT1", "SupplierNit": "900123456"})
        assert response.status_code == 200


class TestDownload:
    def test_found(self, client):
        response = client.get("/api/v1/facturas/download",
                              params={"cufe": "cufe-2", "fecha": "2026-01-05", "nit": "860011153"})
        assert response.status_code == 200
        assert response.json()["urlPDF"] == "https://pdf/2"

    def test_post_body(self, client):
        response = client.post("/api/v1/facturas/download?fecha=2026-01-05&nit=860011153",
                               json={"id": "cufe-1"})
        assert response.json()["cufe"] == "cufe-1"

    def test_not_found(self, client):
        response = client.get("/api/v1/facturas/download",
                              params={"cufe": "nope", "fecha": "2026-01-05", "nit": "860011153"})
        assert response.status_code == 404
        assert response.json()["mensaje"] == "Error en la peticion"

    def test_missing_cufe(self, client):
        response = client.get("/api/v1/facturas/download")
        assert response.status_code == 400
        assert response.json()["errors"] == ["id (cufe) es requerido"]

    def test_without_date(self, client):
        response = client.get("/api/v1/facturas/download", params={"cufe": "cufe-1", "nit": "860011153"})
        assert response.status_code == 404
        assert response.json() == {"mensaje": "Error en la peticion", "status": 404,
                                   "urlPDF": None, "urlXML": None}

    def test_upstream_failure(self, client, gateway):
        gateway.error = NumrotError("execute request: timeout")
        response = client.get("/api/v1/facturas/download",
                              params={"cufe": "cufe-1", "fecha": "2026-01-05", "nit": "860011153"})
        assert response.status_code == 502


class TestPdf:
    def form(self, **overrides):
        data = {"ofe_identificacion": "860011153", "prefijo": "SETT", "consecutivo": "1"}
        data.update(overrides)
        return data

    def test_pdf(self, client):
        response = client.post("/api/v1/facturas/pdf", data=self.form())
        assert response.json() == {"data": {"pdf": "JVBERi0="}}

    def test_missing_field(self, client):
        response = client.post("/api/v1/facturas/pdf", data=self.form(prefijo=""))
        assert response.status_code == 400
        assert response.json()["errors"] == ["prefijo es requerido"]

    def test_document_not_found(self, client, gateway):
        gateway.error = NumrotError("document not found: SETT1", status_code=404)
        response = client.post("/api/v1/facturas/pdf", data=self.form())
        assert response.status_code == 404
        assert response.json()["message"] == "Documento No Encontrado"

    def test_pdf_missing_in_response(self, client):
        response = client.post("/api/v1/facturas/pdf", data=self.form(consecutivo="2"))
        assert response.status_code == 404
        assert response.json()["message"] == "PDF No Encontrado"

    def test_provider_error(self, client, gateway):
        gateway.error = NumrotError("provider error: DIAN caido")
        response = client.post("/api/v1/facturas/pdf", data=self.form())
        assert response.status_code == 502


# ─────────────────────────────────────────────────────────────
# EVENTOS
# ─────────────────────────────────────────────────────────────


EVENT = {
    "EventType": "ACUSE", "DocumentoNumeroCompleto": "SETT1", "NombreGenerador": "Ana",
    "ApellidoGenerador": "Gomez", "IdentificacionGenerador": "1020",
    "FechaGeneracionEvento": "2026-01-10 10:00:00",
}


class TestEventos:
    def test_success(self, client, gateway):
        gateway.register_event = AsyncMock(return_value=EventRegistrationResult(Code="200"))
        response = client.post("/api/v1/eventos", json=EVENT)
        assert response.status_code == 200
        assert response.json()["data"]["Code"] == "200"

    def test_invalid_event_type(self, client):
        response = client.post("/api/v1/eventos", json={**EVENT, "EventType": "X"})
        assert response.status_code == 400
        assert response.json()["errors"] == ["invalid event type: X"]

    def test_configuration_error(self, client, gateway):
        gateway.register_event = AsyncMock(side_effect=ConfigurationError("boom"))
        response = client.post("/api/v1/eventos", json=EVENT)
        assert response.status_code == 500
        assert response.json()["message"] == "Error de Configuración"

    def test_document_not_found(self, client, gateway):
        gateway.register_event = AsyncMock(side_effect=NumrotError("document not found: SETT1"))
        response = client.post("/api/v1/eventos", json=EVENT)
        assert response.status_code == 404


# ─────────────────────────────────────────────────────────────
# CONTRAPARTES Y AUDITORIA
# ─────────────────────────────────────────────────────────────


class TestCounterparties:
    def test_without_database(self, client):
        assert not settings.database_configured
        response = client.get("/api/v1/adquirentes")
        assert response.status_code == 503
        assert response.json()["errors"] == ["La base de datos no está configurada"]

    def test_get_acquirer(self, client):
        store = MagicMock()
        store.get_acquirer = AsyncMock(return_value=Acquirer(adq_identificacion="900123456"))
        app.dependency_overrides[require_counterparty_store] = lambda: store
        response = client.get("/api/v1/adquirentes/860011153/900123456")
        assert response.status_code == 200
        assert response.json()["adq_identificacion"] == "900123456"

    def test_conflict(self, client):
        store = MagicMock()
        store.create_acquirer = AsyncMock(side_effect=CounterpartyError("el Adquiriente [1] ya existe"))
        app.dependency_overrides[require_counterparty_store] = lambda: store
        response = client.post("/api/v1/adquirentes", json={"adq_identificacion": "1"})
        assert response.status_code == 409
        assert response.json()["message"] == "Conflicto"

    def test_store_failure_is_500(self, client):
        store = MagicMock()
        store.list_providers = AsyncMock(side_effect=CounterpartyError("list provider: down", 500))
        app.dependency_overrides[require_counterparty_store] = lambda: store
        response = client.get("/api/v1/proveedores")
        assert response.status_code == 500

    def test_per_page_limit(self, client):
        app.dependency_overrides[require_counterparty_store] = lambda: MagicMock()
        response = client.get("/api/v1/adquirentes", params={"per_page": 500})
        assert response.status_code == 400


class TestAuditoria:
    def test_trail(self, client):
        repository = MagicMock()
        repository.find_by_correlation_id = AsyncMock(return_value=[ProviderAuditLog(
            correlation_id="abc", provider="numrot", operation="Token",
            request_method="POST", request_url="https://numrot.test/v2/api/Token",
        )])
        app.dependency_overrides[require_audit_repository] = lambda: repository
        response = client.get("/api/v1/auditoria/abc")
        assert response.status_code == 200
        assert response.json()[0]["operation"] == "Token"
        repository.find_by_correlation_id.assert_awaited_with("abc")


class TestAuthGuard:
    def test_rejects_missing_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "auth_enabled", True)
        monkeypatch.setattr(settings, "jwt_issuer_uri", "https://auth.test")
        authenticator = auth_middleware.JWTAuthenticator(settings, jwk_client=MagicMock())
        monkeypatch.setattr(auth_middleware, "get_authenticator", lambda: authenticator)

        response = client.post("/api/v1/facturas", json=QUERY)
        assert response.status_code == 401
        assert response.json() == {"message": "Error de Autenticación",
                                   "errors": ["Credenciales de acceso no válidas"]}

        assert client.get("/health").status_code == 200

    def test_key_lookup_runs_outside_event_loop(self, client, monkeypatch):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        in_loop = []

        class RecordingJWKClient:
            def get_signing_key_from_jwt(self, token):
                try:
                    asyncio.get_running_loop()
                    in_loop.append(True)
                except RuntimeError:
                    in_loop.append(False)
                return MagicMock(key=key.public_key())

        monkeypatch.setattr(settings, "auth_enabled", True)
        monkeypatch.setattr(settings, "jwt_issuer_uri", "https://auth.test")
        authenticator = auth_middleware.JWTAuthenticator(settings, jwk_client=RecordingJWKClient())
        monkeypatch.setattr(auth_middleware, "get_authenticator", lambda: authenticator)
        token = jwt.encode({"iss": "https://auth.test", "sub": "svc", "exp": int(time.time()) + 300},
                           key, algorithm="RS256")

        response = client.post("/api/v1/facturas", json=QUERY, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert in_loop == [False]
