"""
Tests for the registration pipeline: validation, enrichment, worker pool
and the document service that ties them to the gateway.
"""

import asyncio

import pytest

from facturacion_core.core.errors import CounterpartyError, DocumentValidationError, NumrotError
from facturacion_core.modules.numrot_client import build_batch_message
from facturacion_core.schemas.models import (
    Acquirer, Document, DocumentByNumberRequest, DocumentQueryRequest, DocumentRegistrationResponse,
    DocumentsByType, ProcessedDocument, Provider, Resolution,
)
from facturacion_core.services.document_enricher import DocumentEnricher, EnrichmentError
from facturacion_core.services.document_service import (
    ALL_FAILED_MESSAGE, DocumentService, validate_document_by_number_query, validate_document_query,
)
from facturacion_core.services.document_validator import DocumentValidator, select_document_type
from facturacion_core.services.worker_pool import CachedCounterpartyLookup, DocumentWorkerPool
from facturacion_core.utils.document_helpers import today_bogota


ACQUIRER = Acquirer(
    ofe_identificacion="860011153", adq_identificacion="900123456",
    adq_razon_social="Cliente SAS", tdo_codigo="31", toj_codigo="1", pai_codigo="CO",
    adq_direccion="CL 10", adq_direccion_domicilio_fiscal="CL 20 Fiscal",
    mun_codigo="001", mun_nombre="Medellin", dep_codigo="05", dep_nombre="Antioquia",
)

RESOLUTION = Resolution(
    resolution_number="18760000001", prefix="SETT", from_number=1, to_number=10000,
    valid_date_from="2020-01-01", valid_date_to="2099-12-31",
)


class FakeStore:
    def __init__(self, acquirers=None, providers=None, delay=0.0, error=None):
        self.acquirers = acquirers or {}
        self.providers = providers or {}
        self.delay = delay
        self.error = error
        self.acquirer_calls = 0
        self.provider_calls = 0

    async def find_acquirer(self, ofe, adq):
        self.acquirer_calls += 1
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.acquirers.get((ofe, adq))

    async def find_provider(self, ofe, pro):
        self.provider_calls += 1
        await asyncio.sleep(self.delay)
        return self.providers.get((ofe, pro))


class FakeGateway:
    def __init__(self, resolutions=None, resolution_error=None):
        self.resolutions = [RESOLUTION] if resolutions is None else resolutions
        self.resolution_error = resolution_error
        self.resolution_calls = 0
        self.sent: list[DocumentsByType] = []

    async def get_resolutions(self, nit):
        self.resolution_calls += 1
        await asyncio.sleep(0)
        if self.resolution_error:
            raise self.resolution_error
        return self.resolutions

    async def register_document(self, batch):
        self.sent.append(batch)
        docs = getattr(batch, batch.non_empty_types()[0])
        processed = [ProcessedDocument(cdo_id=int(d.cdo_consecutivo), rfa_prefijo=d.rfa_prefijo,
                                       cdo_consecutivo=d.cdo_consecutivo,
                                       fecha_procesamiento="2026-01-15", hora_procesamiento="10:00:00")
                     for d in docs]
        return DocumentRegistrationResponse(
            message=build_batch_message(len(processed), 0), lote="lote-x",
            documentos_procesados=processed, documentos_fallidos=None,
        )


def known_acquirer_store(**kwargs):
    return FakeStore(acquirers={("860011153", "900123456"): ACQUIRER}, **kwargs)


# ─────────────────────────────────────────────────────────────
# VALIDATION
# ─────────────────────────────────────────────────────────────


class TestSelectDocumentType:
    def test_empty(self):
        with pytest.raises(DocumentValidationError, match="no documents provided"):
            select_document_type(DocumentsByType())

    def test_mixed_types(self, make_document):
        batch = DocumentsByType(FC=[make_document()], NC=[make_document(tde_codigo="91")])
        with pytest.raises(DocumentValidationError, match="only one document type"):
            select_document_type(batch)

    def test_single_type(self, make_document):
        assert select_document_type(DocumentsByType(ND=[make_document()]))[0] == "ND"


class TestDocumentValidator:
    validator = DocumentValidator(today=lambda: "2026-01-15")

    def check(self, doc, document_type="FC", index=0):
        self.validator.validate(doc, document_type, index)

    def test_valid(self, make_document):
        self.check(make_document(cdo_fecha="2026-01-15"))

    def test_required_field_with_position(self, make_document):
        with pytest.raises(DocumentValidationError, match="document 3: mon_codigo is required"):
            self.check(make_document(cdo_fecha="2026-01-15", mon_codigo=None), index=2)

    def test_resolution_optional_for_notes(self, make_document):
        self.check(make_document(cdo_fecha="2026-01-15", tde_codigo="91", rfa_resolucion=""), "NC")
        with pytest.raises(DocumentValidationError, match="rfa_resolucion is required"):
            self.check(make_document(cdo_fecha="2026-01-15", rfa_resolucion=""), "FC")

    def test_date_must_be_today(self, make_document):
        with pytest.raises(DocumentValidationError, match="FAD09e"):
            self.check(make_document(cdo_fecha="2026-01-14"))

    def test_date_format(self, make_document):
        with pytest.raises(DocumentValidationError, match="invalid cdo_fecha format"):
            self.check(make_document(cdo_fecha="15-01-2026"))

    def test_time_format(self, make_document):
        with pytest.raises(DocumentValidationError, match="invalid cdo_hora format"):
            self.check(make_document(cdo_fecha="2026-01-15", cdo_hora="2pm"))

    def test_items_required(self, make_document):
        with pytest.raises(DocumentValidationError, match="at least one item"):
            self.check(make_document(cdo_fecha="2026-01-15", items=[]))

    def test_due_date_before_issue(self, make_document):
        with pytest.raises(DocumentValidationError, match="must be on or after"):
            self.check(make_document(cdo_fecha="2026-01-15", cdo_vencimiento="2026-01-01"))

    def test_tde_codigo_must_match_array(self, make_document):
        with pytest.raises(DocumentValidationError, match="does not match document type NC"):
            self.check(make_document(cdo_fecha="2026-01-15", tde_codigo="01"), "NC")

    def test_ds_operation_code(self, make_document):
        doc = make_document(cdo_fecha="2026-01-15", tde_codigo="05", top_codigo="20")
        with pytest.raises(DocumentValidationError, match='top_codigo must be "10"'):
            self.check(doc, "DS")


class TestQueryValidation:
    def test_valid(self):
        validate_document_query(DocumentQueryRequest(
            CompanyNit="860011153", InitialDate="2026-01-01", FinalDate="2026-01-01"))

    @pytest.mark.parametrize("query, message", [
        ({"InitialDate": "2026-01-01", "FinalDate": "2026-01-02"}, "company nit is required"),
        ({"CompanyNit": "123", "InitialDate": "2026-01-01", "FinalDate": "2026-01-02"}, "invalid company nit"),
        ({"CompanyNit": "860011153", "FinalDate": "2026-01-02"}, "initial date is required"),
        ({"CompanyNit": "860011153", "InitialDate": "2026-01-01"}, "final date is required"),
        ({"CompanyNit": "860011153", "InitialDate": "01/01/2026", "FinalDate": "2026-01-02"},
         "invalid initial date format"),
        ({"CompanyNit": "860011153", "InitialDate": "2026-02-01", "FinalDate": "2026-01-02"},
         "before or equal"),
    ])
    def test_invalid(self, query, message):
        with pytest.raises(DocumentValidationError, match=message):
            validate_document_query(DocumentQueryRequest(**query))

    def test_by_number_requires_supplier(self):
        with pytest.raises(DocumentValidationError, match="supplier nit is required"):
            validate_document_by_number_query(DocumentByNumberRequest(
                CompanyNit="860011153", DocumentNumber="SETT1"))


# ─────────────────────────────────────────────────────────────
# ENRICHMENT
# ─────────────────────────────────────────────────────────────


class TestDocumentEnricher:
    def test_fills_missing_acquirer_fields_and_ofe(self, config, make_document):
        enricher = DocumentEnricher(config)
        doc = make_document(adq_razon_social="Nombre enviado")
        result = asyncio.run(enricher.enrich(doc, "FC", known_acquirer_store()))

        assert result.adq_razon_social == "Nombre enviado"
        assert result.adq_direccion == "CL 20 Fiscal"
        assert result.adq_municipio_nombre == "Medellin"
        assert result.adq_pais_codigo == "CO"
        assert result.adq_pais_nombre == "Colombia"
        assert result.ofe_razon_social == config.ofe_razon_social
        assert result.cdo_ambiente == "2"
        assert doc.adq_direccion is None

    def test_acquirer_not_found(self, config, make_document):
        with pytest.raises(EnrichmentError, match=r"Adquiriente \[900123456\].*no encontrado"):
            asyncio.run(DocumentEnricher(config).enrich(make_document(), "FC", FakeStore()))

    def test_lookup_failure(self, config, make_document):
        store = FakeStore(error=CounterpartyError("find acquirer: timeout", status_code=500))
        with pytest.raises(EnrichmentError, match="Error al buscar adquiriente"):
            asyncio.run(DocumentEnricher(config).enrich(make_document(), "FC", store))

    def test_ds_uses_inverted_provider_keys(self, config, make_document):
        store = FakeStore(providers={("860011153", "900555111"): Provider(
            ofe_identificacion="860011153", pro_identificacion="900555111",
            pro_nombre_comercial="Prov", pai_codigo="CO", mun_codigo="001",
        )})
        doc = make_document(tde_codigo="05", adq_identificacion="860011153-6",
                            ofe_identificacion="900555111")
        result = asyncio.run(DocumentEnricher(config).enrich(doc, "DS", store))
        assert result.adq_razon_social == "Prov"
        assert result.adq_municipio_codigo == "001"

    def test_provider_not_found(self, config, make_document):
        doc = make_document(tde_codigo="05")
        with pytest.raises(EnrichmentError, match="Proveedor no encontrado"):
            asyncio.run(DocumentEnricher(config).enrich(doc, "DS", FakeStore()))

    def test_keeps_explicit_environment(self, config, make_document):
        result = asyncio.run(DocumentEnricher(config).enrich(make_document(cdo_ambiente="1"), "FC"))
        assert result.cdo_ambiente == "1"

    def test_needs_resolution(self, make_document):
        assert DocumentEnricher.needs_resolution(make_document(), "FC")
        assert not DocumentEnricher.needs_resolution(make_document(rfa_resolucion=""), "NC")
        complete = make_document(rfa_fecha_inicio="2020-01-01", rfa_fecha_fin="2030-01-01",
                                 rfa_numero_inicio="1", rfa_numero_fin="10")
        assert not DocumentEnricher.needs_resolution(complete, "FC")

    def test_resolution_range(self, make_document):
        with pytest.raises(EnrichmentError, match="fuera del rango autorizado"):
            DocumentEnricher.check_resolution_range(make_document(cdo_consecutivo="20000"), RESOLUTION, 0)
        expired = RESOLUTION.model_copy(update={"valid_date_to": "2021-01-01"})
        with pytest.raises(EnrichmentError, match="fuera de la vigencia"):
            DocumentEnricher.check_resolution_range(make_document(), expired, 0)


# ─────────────────────────────────────────────────────────────
# WORKER POOL
# ─────────────────────────────────────────────────────────────


class TestCachedCounterpartyLookup:
    def test_concurrent_lookups_hit_store_once(self):
        store = known_acquirer_store(delay=0.01)
        lookup = CachedCounterpartyLookup(store)

        async def run():
            return await asyncio.gather(*(
                lookup.find_acquirer("860011153", "900123456") for _ in range(20)
            ))

        results = asyncio.run(run())
        assert all(r is ACQUIRER for r in results)
        assert store.acquirer_calls == 1

    def test_failures_are_not_cached(self):
        store = FakeStore(error=CounterpartyError("down", status_code=500))
        lookup = CachedCounterpartyLookup(store)

        async def run():
            for _ in range(2):
                with pytest.raises(CounterpartyError):
                    await lookup.find_acquirer("1", "2")

        asyncio.run(run())
        assert store.acquirer_calls == 2

    def test_failed_waiter_keeps_newer_entry(self):
        async def run():
            gate = asyncio.Event()

            async def failing():
                await gate.wait()
                raise CounterpartyError("down", status_code=500)

            cache = {}
            waiter = asyncio.create_task(CachedCounterpartyLookup._memoized(cache, "k", failing))
            await asyncio.sleep(0)
            fresh = asyncio.ensure_future(asyncio.sleep(0, result=ACQUIRER))
            cache["k"] = fresh
            gate.set()
            with pytest.raises(CounterpartyError):
                await waiter
            return cache, fresh

        cache, fresh = asyncio.run(run())
        assert cache["k"] is fresh


class TestDocumentWorkerPool:
    def test_enriches_batch_with_shared_lookups(self, config, make_document):
        store = known_acquirer_store(delay=0.005)
        gateway = FakeGateway()
        pool = DocumentWorkerPool(worker_count=4, store=store, gateway=gateway, config=config)
        docs = [make_document(cdo_consecutivo=str(i)) for i in range(1, 31)]

        valid, failed = asyncio.run(pool.process_documents(docs, "FC"))

        assert failed == []
        assert sorted(int(d.cdo_consecutivo) for d in valid) == list(range(1, 31))
        assert all(d.rfa_numero_fin == "10000" for d in valid)
        assert store.acquirer_calls == 1
        assert gateway.resolution_calls == 1

    def test_failures_are_isolated(self, config, make_document):
        pool = DocumentWorkerPool(worker_count=2, store=known_acquirer_store(), gateway=FakeGateway(),
                                  config=config)
        docs = [make_document(cdo_consecutivo="1"),
                make_document(cdo_consecutivo="2", adq_identificacion="111111111"),
                make_document(cdo_consecutivo="99999")]

        valid, failed = asyncio.run(pool.process_documents(docs, "FC"))

        assert [d.cdo_consecutivo for d in valid] == ["1"]
        errors = {f.consecutivo: f.errors[0] for f in failed}
        assert "no encontrado" in errors["2"]
        assert "fuera del rango" in errors["99999"]

    def test_missing_resolution_fails_fc_only(self, config, make_document):
        gateway = FakeGateway(resolutions=[])
        pool = DocumentWorkerPool(worker_count=2, store=known_acquirer_store(), gateway=gateway, config=config)
        _, failed = asyncio.run(pool.process_documents([make_document()], "FC"))
        assert "no encontrada" in failed[0].errors[0]

        pool = DocumentWorkerPool(worker_count=2, store=known_acquirer_store(), gateway=gateway, config=config)
        valid, failed = asyncio.run(pool.process_documents([make_document(tde_codigo="91")], "NC"))
        assert failed == [] and len(valid) == 1

    def test_gateway_error_is_reported(self, config, make_document):
        gateway = FakeGateway(resolution_error=NumrotError("execute request: timeout"))
        pool = DocumentWorkerPool(worker_count=1, store=known_acquirer_store(), gateway=gateway, config=config)
        _, failed = asyncio.run(pool.process_documents([make_document()], "FC"))
        assert "error al consultar resoluciones" in failed[0].errors[0]

    def test_unexpected_error_becomes_failed_document(self, config, make_document):
        class BrokenEnricher(DocumentEnricher):
            async def enrich(self, doc, document_type, lookup=None):
                raise RuntimeError("kaput")

        pool = DocumentWorkerPool(worker_count=1, enricher=BrokenEnricher(config), config=config)
        _, failed = asyncio.run(pool.process_documents([make_document()], "FC"))
        assert failed[0].errors == ["Error interno procesando documento: kaput"]

    def test_stop_returns_partial_results(self, config, make_document):
        store = known_acquirer_store(delay=0.2)
        pool = DocumentWorkerPool(worker_count=1, store=store, config=config)

        async def run():
            asyncio.get_running_loop().call_later(0.05, pool.stop)
            return await pool.process_documents([make_document(), make_document()], "FC")

        valid, failed = asyncio.run(run())
        assert valid == [] and failed == []

    def test_empty_batch(self, config):
        assert asyncio.run(DocumentWorkerPool(config=config).process_documents([], "FC")) == ([], [])


# ─────────────────────────────────────────────────────────────
# DOCUMENT SERVICE
# ─────────────────────────────────────────────────────────────


class TestRegisterDocument:
    def service(self, config, store=None, gateway=None):
        return DocumentService(gateway or FakeGateway(), store=store,
                               validator=DocumentValidator(today=today_bogota), config=config)

    def test_single_valid_document(self, config, make_document):
        gateway = FakeGateway()
        service = self.service(config, known_acquirer_store(), gateway)
        result = asyncio.run(service.register_document(DocumentsByType(FC=[make_document()])))

        assert result.documentos_fallidos == []
        assert result.documentos_procesados[0].cdo_consecutivo == "5604"
        sent = gateway.sent[0].FC[0]
        assert sent.adq_razon_social == "Cliente SAS"
        assert sent.ofe_razon_social == config.ofe_razon_social

    def test_partial_failure_merges_failed(self, config, make_document):
        gateway = FakeGateway()
        service = self.service(config, known_acquirer_store(), gateway)
        docs = [make_document(cdo_consecutivo="1"),
                make_document(cdo_consecutivo="2", adq_identificacion="111111111")]

        result = asyncio.run(service.register_document(DocumentsByType(FC=docs)))

        assert [d.cdo_consecutivo for d in result.documentos_procesados] == ["1"]
        assert [d.consecutivo for d in result.documentos_fallidos] == ["2"]
        assert len(gateway.sent[0].FC) == 1

    def test_all_failed_skips_gateway(self, config, make_document):
        gateway = FakeGateway()
        service = self.service(config, FakeStore(), gateway)
        result = asyncio.run(service.register_document(DocumentsByType(FC=[make_document()])))

        assert result.message == ALL_FAILED_MESSAGE
        assert result.lote.startswith("lote-")
        assert result.documentos_procesados == []
        assert len(result.documentos_fallidos) == 1
        assert gateway.sent == []

    def test_invalid_document_rejects_batch(self, config, make_document):
        service = self.service(config, known_acquirer_store())
        docs = [make_document(), make_document(cdo_fecha="2000-01-01")]
        with pytest.raises(DocumentValidationError, match="document 2: cdo_fecha must be today"):
            asyncio.run(service.register_document(DocumentsByType(FC=docs)))

    def test_mixed_types_rejected(self, config, make_document):
        batch = DocumentsByType(FC=[make_document()], DS=[make_document(tde_codigo="05")])
        with pytest.raises(DocumentValidationError, match="only one document type"):
            asyncio.run(self.service(config).register_document(batch))

    def test_without_store_only_issuer_identity(self, config, make_document):
        gateway = FakeGateway()
        asyncio.run(self.service(config, None, gateway).register_document(
            DocumentsByType(FC=[make_document()])))
        sent = gateway.sent[0].FC[0]
        assert sent.adq_razon_social is None
        assert sent.ofe_direccion == config.ofe_direccion


class TestQueries:
    def test_find_received_by_cufe(self, config):
        class Gateway(FakeGateway):
            async def get_received_documents(self, query):
                self.query = query
                return [Document(cufe="a"), Document(cufe="b", urlPDF="https://pdf")]

        gateway = Gateway()
        service = DocumentService(gateway, config=config)
        doc = asyncio.run(service.find_received_by_cufe("b", nit="860011153", fecha="2026-01-05"))
        assert doc.urlPDF == "https://pdf"
        assert gateway.query.InitialDate == gateway.query.FinalDate == "2026-01-05"
        assert asyncio.run(service.find_received_by_cufe("zz", nit="860011153", fecha="2026-01-05")) is None

    def test_find_received_without_date(self, config):
        service = DocumentService(FakeGateway(), config=config)
        with pytest.raises(DocumentValidationError, match="initial date is required"):
            asyncio.run(service.find_received_by_cufe("b", nit="860011153"))

    def test_fetch_signed_pdf_joins_number(self, config):
        class Gateway(FakeGateway):
            async def search_estados_dian(self, nit, documento):
                return (nit, documento)

        service = DocumentService(Gateway(), config=config)
        assert asyncio.run(service.fetch_signed_pdf("860011153", " SETT ", "12 ")) == ("860011153", "SETT12")
