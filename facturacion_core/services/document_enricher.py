"""
document_enricher.py — Counterparty, issuer and resolution fill for OpenETL documents.

Location: facturacion_core/services/document_enricher.py

Rules:
- adq_* fields are only filled when the incoming value is null or empty
- fiscal address columns win over the plain address columns
- ofe_* fields are always overwritten with the configured issuer identity
- cdo_ambiente defaults to CDO_AMBIENTE_DEFAULT
- DS documents read the provider table with inverted keys:
    request adq_identificacion -> provider.ofe_identificacion
    request ofe_identificacion -> provider.pro_identificacion
"""

import logging
from typing import Optional

from facturacion_core.core.config import settings
from facturacion_core.core.errors import CounterpartyError
from facturacion_core.schemas.models import Acquirer, OpenETLDocument, Provider, Resolution
from facturacion_core.utils.document_helpers import is_blank, normalize_nit, parse_date

logger = logging.getLogger(__name__)

COLOMBIA_CODE = "CO"
COLOMBIA_NAME = "Colombia"

RESOLUTION_FIELDS = ("rfa_fecha_inicio", "rfa_fecha_fin", "rfa_numero_inicio", "rfa_numero_fin")


class EnrichmentError(Exception):
    """The document cannot be completed; it goes to documentos_fallidos."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


def _first(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if not is_blank(value):
            return value
    return None


def _fill(doc: OpenETLDocument, field: str, value: Optional[str]) -> None:
    if is_blank(getattr(doc, field)) and not is_blank(value):
        setattr(doc, field, value)


def _fill_country_name(doc: OpenETLDocument, country_code: Optional[str]) -> None:
    if is_blank(doc.adq_pais_nombre) and country_code == COLOMBIA_CODE:
        doc.adq_pais_nombre = COLOMBIA_NAME


def acquirer_not_found_message(doc: OpenETLDocument) -> str:
    return (
        f"Adquiriente [{normalize_nit(doc.adq_identificacion)}] (normalizado desde {doc.adq_identificacion}) "
        f"no encontrado para el OFE [{normalize_nit(doc.ofe_identificacion)}] "
        f"(normalizado desde {doc.ofe_identificacion})"
    )


def provider_not_found_message(doc: OpenETLDocument) -> str:
    ofe, pro = normalize_nit(doc.adq_identificacion), normalize_nit(doc.ofe_identificacion)
    return (
        f"Proveedor no encontrado: ofe_identificacion={ofe} (BD, normalizado desde {doc.adq_identificacion}) "
        f"y pro_identificacion={pro} (BD, normalizado desde {doc.ofe_identificacion}) - mapeado desde "
        f"adq_identificacion={doc.adq_identificacion} y ofe_identificacion={doc.ofe_identificacion} del request"
    )


class DocumentEnricher:
    """
    Completes documents before they are sent to Numrot.

    `lookup` in enrich() is anything with async find_acquirer(ofe, adq) and
    find_provider(ofe, pro): the CounterpartyStore itself or the worker
    pool's memoizing wrapper. None skips the counterparty step.
    """

    def __init__(self, config=None):
        self.config = config or settings

    async def enrich(self, doc: OpenETLDocument, document_type: str, lookup=None) -> OpenETLDocument:
        """
        Returns an enriched copy of doc.

        Raises:
            EnrichmentError: counterparty missing or lookup failed
        """
        doc = self.apply_environment(doc.model_copy(deep=True))
        if lookup is not None:
            if document_type == "DS":
                self.apply_provider(doc, await self._find_provider(doc, lookup))
            else:
                self.apply_acquirer(doc, await self._find_acquirer(doc, lookup))
        return self.apply_ofe(doc)

    @staticmethod
    async def _find_acquirer(doc: OpenETLDocument, lookup) -> Acquirer:
        try:
            acq = await lookup.find_acquirer(
                normalize_nit(doc.ofe_identificacion), normalize_nit(doc.adq_identificacion),
            )
        except CounterpartyError as e:
            raise EnrichmentError(f"Error al buscar adquiriente: {e.message}") from e
        if acq is None:
            raise EnrichmentError(acquirer_not_found_message(doc))
        return acq

    @staticmethod
    async def _find_provider(doc: OpenETLDocument, lookup) -> Provider:
        try:
            prov = await lookup.find_provider(
                normalize_nit(doc.adq_identificacion), normalize_nit(doc.ofe_identificacion),
            )
        except CounterpartyError as e:
            raise EnrichmentError(f"Error al buscar proveedor: {e.message}") from e
        if prov is None:
            raise EnrichmentError(provider_not_found_message(doc))
        return prov

    # ── Field mapping ──

    def apply_environment(self, doc: OpenETLDocument) -> OpenETLDocument:
        if is_blank(doc.cdo_ambiente):
            doc.cdo_ambiente = self.config.cdo_ambiente_default
        return doc

    @staticmethod
    def apply_acquirer(doc: OpenETLDocument, acq: Acquirer) -> OpenETLDocument:
        country = _first(acq.pai_codigo_domicilio_fiscal, acq.pai_codigo)
        _fill(doc, "adq_razon_social", acq.adq_razon_social)
        _fill(doc, "adq_direccion", _first(acq.adq_direccion_domicilio_fiscal, acq.adq_direccion))
        _fill(doc, "adq_municipio_codigo", _first(acq.mun_codigo_domicilio_fiscal, acq.mun_codigo))
        _fill(doc, "adq_municipio_nombre", _first(acq.mun_nombre_domicilio_fiscal, acq.mun_nombre))
        _fill(doc, "adq_departamento_codigo", _first(acq.dep_codigo_domicilio_fiscal, acq.dep_codigo))
        _fill(doc, "adq_departamento_nombre", _first(acq.dep_nombre_domicilio_fiscal, acq.dep_nombre))
        _fill(doc, "adq_pais_codigo", country)
        _fill(doc, "adq_cpo_codigo", _first(acq.cpo_codigo_domicilio_fiscal, acq.cpo_codigo))
        _fill_country_name(doc, country)
        return doc

    @staticmethod
    def apply_provider(doc: OpenETLDocument, prov: Provider) -> OpenETLDocument:
        # Provider rows carry codes only; names must come in the request
        country = _first(prov.pai_codigo_domicilio_fiscal, prov.pai_codigo)
        _fill(doc, "adq_razon_social", _first(prov.pro_razon_social, prov.pro_nombre_comercial))
        _fill(doc, "adq_direccion", _first(prov.pro_direccion_domicilio_fiscal, prov.pro_direccion))
        _fill(doc, "adq_municipio_codigo", _first(prov.mun_codigo_domicilio_fiscal, prov.mun_codigo))
        _fill(doc, "adq_departamento_codigo", _first(prov.dep_codigo_domicilio_fiscal, prov.dep_codigo))
        _fill(doc, "adq_pais_codigo", country)
        _fill(doc, "adq_cpo_codigo", _first(prov.cpo_codigo_domicilio_fiscal, prov.cpo_codigo))
        _fill_country_name(doc, country)
        return doc

    def apply_ofe(self, doc: OpenETLDocument) -> OpenETLDocument:
        c = self.config
        doc.ofe_razon_social = c.ofe_razon_social
        doc.ofe_direccion = c.ofe_direccion
        doc.ofe_municipio_codigo = c.ofe_municipio_codigo
        doc.ofe_municipio_nombre = c.ofe_municipio_nombre
        doc.ofe_departamento_codigo = c.ofe_departamento_codigo
        doc.ofe_departamento_nombre = c.ofe_departamento_nombre
        return doc

    # ── Resolutions ──

    @staticmethod
    def needs_resolution(doc: OpenETLDocument, document_type: str) -> bool:
        """FC always looks its resolution up; NC/ND/DS only when number and prefix are given."""
        if all(not is_blank(getattr(doc, f)) for f in RESOLUTION_FIELDS):
            return False
        if document_type != "FC" and (not doc.rfa_resolucion or not doc.rfa_prefijo):
            return False
        return True

    @staticmethod
    def apply_resolution(doc: OpenETLDocument, resolution: Resolution) -> OpenETLDocument:
        _fill(doc, "rfa_fecha_inicio", resolution.valid_date_from)
        _fill(doc, "rfa_fecha_fin", resolution.valid_date_to)
        _fill(doc, "rfa_numero_inicio", str(resolution.from_number))
        _fill(doc, "rfa_numero_fin", str(resolution.to_number))
        return doc

    @staticmethod
    def check_resolution_range(doc: OpenETLDocument, resolution: Resolution, index: int) -> None:
        """Consecutive inside [from, to] and issue date inside the validity window."""
        n = index + 1
        try:
            consecutivo = int(doc.cdo_consecutivo)
        except ValueError as e:
            raise EnrichmentError(f"document {n}: consecutivo inválido [{doc.cdo_consecutivo}]: {e}") from e
        if not resolution.from_number <= consecutivo <= resolution.to_number:
            raise EnrichmentError(
                f"document {n}: consecutivo [{doc.cdo_consecutivo}] fuera del rango autorizado "
                f"[{resolution.from_number}-{resolution.to_number}] para la resolución [{doc.rfa_resolucion}]"
            )
        try:
            issued = parse_date(doc.cdo_fecha)
            valid_from = parse_date(resolution.valid_date_from)
            valid_to = parse_date(resolution.valid_date_to)
        except ValueError as e:
            raise EnrichmentError(f"document {n}: fecha de documento inválida [{doc.cdo_fecha}]: {e}") from e
        if issued < valid_from or issued > valid_to:
            raise EnrichmentError(
                f"document {n}: fecha [{doc.cdo_fecha}] fuera de la vigencia "
                f"[{resolution.valid_date_from} - {resolution.valid_date_to}] "
                f"de la resolución [{doc.rfa_resolucion}]"
            )
