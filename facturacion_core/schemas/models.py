"""
FACTURACION-CORE Pydantic Schemas
OpenETL documents, registration results, Radian events and counterparties.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ─────────────────────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────────────────────

class DocumentType(str, Enum):
    FC = "FC"   # Factura electrónica de venta
    NC = "NC"   # Nota crédito
    ND = "ND"   # Nota débito
    DS = "DS"   # Documento soporte


# tde_codigo accepted per batch array
ALLOWED_TDE_CODES: dict[str, tuple[str, ...]] = {
    "FC": ("01",),
    "NC": ("03", "91"),
    "ND": ("04", "92"),
    "DS": ("05",),
}


class EventType(str, Enum):
    ACUSE = "ACUSE"
    RECIBOBIEN = "RECIBOBIEN"
    ACEPTACION = "ACEPTACION"
    RECLAMO = "RECLAMO"


RADIAN_CODES = {
    EventType.ACUSE: "030",
    EventType.RECLAMO: "031",
    EventType.RECIBOBIEN: "032",
    EventType.ACEPTACION: "033",
}


class RejectionCode(str, Enum):
    INCONSISTENCIAS = "01"
    NO_ENTREGADA_TOTALMENTE = "02"
    NO_ENTREGADA_PARCIALMENTE = "03"
    SERVICIO_NO_PRESTADO = "04"


class ProviderStatus(str, Enum):
    ACTIVO = "ACTIVO"
    INACTIVO = "INACTIVO"


# ─────────────────────────────────────────────────────────────
# OPENETL DOCUMENT
# ─────────────────────────────────────────────────────────────

class _OpenETLModel(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class MedioPago(_OpenETLModel):
    fpa_codigo: str = ""
    mpa_codigo: str = ""
    men_fecha_vencimiento: Optional[str] = None


class ValorMonedaNacional(_OpenETLModel):
    base: str = ""
    valor: str = ""


class Retencion(_OpenETLModel):
    tipo: str = ""
    razon: str = ""
    porcentaje: str = ""
    valor_moneda_nacional: Optional[ValorMonedaNacional] = None


class FechaCompra(_OpenETLModel):
    fecha_compra: str = ""
    codigo: str = ""


class Item(_OpenETLModel):
    ddo_tipo_item: str = ""
    ddo_secuencia: str = ""
    cpr_codigo: str = ""
    ddo_codigo: str = ""
    ddo_descripcion_uno: str = ""
    ddo_cantidad: str = ""
    und_codigo: str = ""
    ddo_valor_unitario: str = ""
    ddo_total: str = ""
    ddo_fecha_compra: Optional[FechaCompra] = None
    ddo_informacion_adicional: list[Any] = Field(default_factory=list)


class TributoPorcentaje(_OpenETLModel):
    iid_base: str = ""
    iid_porcentaje: str = ""


class Tributo(_OpenETLModel):
    ddo_secuencia: str = ""
    tri_codigo: str = ""
    iid_valor: str = ""
    iid_motivo_exencion: Optional[str] = None
    iid_porcentaje: Optional[TributoPorcentaje] = None


class OrderReference(_OpenETLModel):
    id: str = ""


class FacturaReferencia(_OpenETLModel):
    prefijo_fc: str = ""
    numero_factura_fc: str = ""


class ConceptoCorreccion(_OpenETLModel):
    cco_codigo: str = ""
    cdo_observacion_correccion: str = ""


# Fields that are plain strings in the OpenETL contract; null is read as "".
_REQUIRED_STRING_FIELDS = (
    "tde_codigo", "top_codigo", "ofe_identificacion", "adq_identificacion",
    "rfa_prefijo", "rfa_resolucion", "cdo_consecutivo", "cdo_fecha", "cdo_hora",
    "mon_codigo", "cdo_valor_sin_impuestos", "cdo_impuestos", "cdo_total",
    "cdo_retenciones_sugeridas", "cdo_retenciones", "cdo_cargos", "cdo_descuentos",
    "cdo_anticipo", "cdo_redondeo",
)

# Counterparty fields the enricher fills when absent
ADQ_FIELDS = (
    "adq_razon_social", "adq_direccion", "adq_municipio_codigo", "adq_municipio_nombre",
    "adq_departamento_codigo", "adq_departamento_nombre", "adq_pais_codigo",
    "adq_pais_nombre", "adq_cpo_codigo",
)


class OpenETLDocument(_OpenETLModel):
    """A single FC/NC/ND/DS document in OpenETL format."""
    tde_codigo: str = ""
    top_codigo: str = ""
    ofe_identificacion: str = ""
    adq_identificacion: str = ""
    adq_identificacion_autorizado: Optional[str] = None
    rfa_prefijo: str = ""
    rfa_resolucion: str = ""
    rfa_fecha_inicio: Optional[str] = None
    rfa_fecha_fin: Optional[str] = None
    rfa_numero_inicio: Optional[str] = None
    rfa_numero_fin: Optional[str] = None
    cdo_ambiente: Optional[str] = None
    cdo_consecutivo: str = ""
    cdo_fecha: str = ""
    cdo_hora: str = ""
    cdo_vencimiento: Optional[str] = None
    cdo_representacion_grafica_documento: Optional[str] = None
    cdo_representacion_grafica_acuse: Optional[str] = None
    cdo_medios_pago: list[MedioPago] = Field(default_factory=list)
    cdo_informacion_adicional: Optional[dict[str, Any]] = None
    mon_codigo: str = ""
    cdo_valor_sin_impuestos: str = ""
    cdo_impuestos: str = ""
    cdo_total: str = ""
    cdo_retenciones_sugeridas: str = ""
    cdo_retenciones: str = ""
    cdo_cargos: str = ""
    cdo_descuentos: str = ""
    cdo_anticipo: str = ""
    cdo_redondeo: str = ""
    cdo_detalle_anticipos: list[Any] = Field(default_factory=list)
    cdo_detalle_retenciones_sugeridas: list[Retencion] = Field(default_factory=list)
    items: list[Item] = Field(default_factory=list)
    tributos: list[Tributo] = Field(default_factory=list)

    # Adquirente location (filled from the counterparty store)
    adq_razon_social: Optional[str] = None
    adq_direccion: Optional[str] = None
    adq_municipio_codigo: Optional[str] = None
    adq_municipio_nombre: Optional[str] = None
    adq_departamento_codigo: Optional[str] = None
    adq_departamento_nombre: Optional[str] = None
    adq_pais_codigo: Optional[str] = None
    adq_pais_nombre: Optional[str] = None
    adq_cpo_codigo: Optional[str] = None

    # Oferente identity (overwritten from settings)
    ofe_razon_social: Optional[str] = None
    ofe_direccion: Optional[str] = None
    ofe_municipio_codigo: Optional[str] = None
    ofe_municipio_nombre: Optional[str] = None
    ofe_departamento_codigo: Optional[str] = None
    ofe_departamento_nombre: Optional[str] = None

    note: list[str] = Field(default_factory=list)
    order_reference: Optional[OrderReference] = None
    factura_referencia: Optional[FacturaReferencia] = None
    cdo_conceptos_correccion: Optional[ConceptoCorreccion] = None

    @field_validator(*_REQUIRED_STRING_FIELDS, mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return "" if value is None else value

    @field_validator("cdo_medios_pago", "cdo_detalle_anticipos", "cdo_detalle_retenciones_sugeridas",
                     "items", "tributos", "note", mode="before")
    @classmethod
    def _none_as_empty_list(cls, value):
        return [] if value is None else value


class DocumentsByType(BaseModel):
    FC: list[OpenETLDocument] = Field(default_factory=list)
    NC: list[OpenETLDocument] = Field(default_factory=list)
    ND: list[OpenETLDocument] = Field(default_factory=list)
    DS: list[OpenETLDocument] = Field(default_factory=list)

    @field_validator("FC", "NC", "ND", "DS", mode="before")
    @classmethod
    def _none_as_empty_list(cls, value):
        return [] if value is None else value

    def non_empty_types(self) -> list[str]:
        return [t.value for t in DocumentType if getattr(self, t.value)]

    def total(self) -> int:
        return sum(len(getattr(self, t.value)) for t in DocumentType)

    @classmethod
    def single(cls, document_type: str, documents: list[OpenETLDocument]) -> "DocumentsByType":
        return cls(**{document_type: list(documents)})


class DocumentRegistrationRequest(BaseModel):
    """Body of POST /api/v1/registrar-documentos."""
    documentos: DocumentsByType = Field(default_factory=DocumentsByType)

    @field_validator("documentos", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return {} if value is None else value

    model_config = {"json_schema_extra": {
        "examples": [{"documentos": {"FC": [{
            "tde_codigo": "01", "ofe_identificacion": "860011153-6",
            "adq_identificacion": "900123456", "rfa_prefijo": "SETT",
            "rfa_resolucion": "18760000001", "cdo_consecutivo": "5604",
            "cdo_fecha": "2026-01-15", "cdo_hora": "14:37:00", "mon_codigo": "COP",
            "cdo_valor_sin_impuestos": "100000.00", "cdo_impuestos": "19000.00",
            "cdo_total": "119000.00",
            "items": [{"ddo_secuencia": "1", "ddo_descripcion_uno": "P",
                       "ddo_cantidad": "1", "ddo_valor_unitario": "100000.00",
                       "ddo_total": "100000.00"}],
        }]}}]
    }}


# ─────────────────────────────────────────────────────────────
# REGISTRATION RESULTS
# ─────────────────────────────────────────────────────────────

class ProcessedDocument(BaseModel):
    cdo_id: int = 0
    rfa_prefijo: str = ""
    cdo_consecutivo: str = ""
    fecha_procesamiento: str = ""
    hora_procesamiento: str = ""
    xml_base64: Optional[str] = None
    pdf_base64: Optional[str] = None


class FailedDocument(BaseModel):
    documento: str = ""
    consecutivo: str = ""
    prefijo: str = ""
    errors: list[str] = Field(default_factory=list)
    fecha_procesamiento: str = ""
    hora_procesamiento: str = ""


class DocumentRegistrationResponse(BaseModel):
    message: str = ""
    lote: str = ""
    documentos_procesados: list[ProcessedDocument] = Field(default_factory=list)
    documentos_fallidos: list[FailedDocument] = Field(default_factory=list)

    @field_validator("documentos_procesados", "documentos_fallidos", mode="before")
    @classmethod
    def _none_as_empty_list(cls, value):
        return [] if value is None else value


# ─────────────────────────────────────────────────────────────
# DOCUMENT QUERIES
# ─────────────────────────────────────────────────────────────

class Document(BaseModel):
    """Issued or received document as listed by the gateway."""
    ofe: str = ""
    proveedor: str = ""
    tipo: str = ""
    prefijo: str = ""
    consecutivo: str = ""
    cufe: str = ""
    fecha: str = ""
    hora: str = ""
    valor: float = 0.0
    marca: bool = False
    urlPDF: Optional[str] = None
    urlXML: Optional[str] = None


class DocumentQueryRequest(BaseModel):
    CompanyNit: str = ""
    InitialDate: str = ""
    FinalDate: str = ""


class DocumentByNumberRequest(BaseModel):
    CompanyNit: str = ""
    DocumentNumber: str = ""
    SupplierNit: str = ""


class DocumentsResponse(BaseModel):
    status: str = "200"
    message: str = "Exitoso"
    total: int = 0
    data: list[Document] = Field(default_factory=list)


class DownloadRequest(BaseModel):
    id: str = ""


class Resolution(BaseModel):
    resolution_number: str
    resolution_date: Optional[str] = None
    prefix: str = ""
    from_number: int = 0
    to_number: int = 0
    valid_date_from: str = ""
    valid_date_to: str = ""


class SearchEstadosResult(BaseModel):
    """SearchEstadosDIAN payload. Document holds the base64 PDF."""
    model_config = ConfigDict(extra="allow")
    Uuid: str = ""
    QrText: str = ""
    TrackId: str = ""
    Warnings: list[str] = Field(default_factory=list)
    StatusCode: str = ""
    ErrorReason: list[str] = Field(default_factory=list)
    ErrorMessage: list[str] = Field(default_factory=list)
    StatusMessage: str = ""
    StatusDescription: str = ""
    Document: str = ""

    @field_validator("Warnings", "ErrorReason", "ErrorMessage", mode="before")
    @classmethod
    def _as_list(cls, value):
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return [value]
        return value


# ─────────────────────────────────────────────────────────────
# RADIAN EVENTS
# ─────────────────────────────────────────────────────────────

class EventRequest(BaseModel):
    """Body of POST /api/v1/eventos."""
    EventType: str = ""
    DocumentoNumeroCompleto: str = ""
    NombreGenerador: str = ""
    ApellidoGenerador: str = ""
    IdentificacionGenerador: str = ""
    CodigoRechazo: Optional[str] = None
    FechaGeneracionEvento: str = ""


class EventResult(BaseModel):
    TipoEvento: str = ""
    Mensaje: str = ""
    MensajeError: str = ""
    CodigoRespuesta: str = ""


class EventRegistrationResult(BaseModel):
    Code: str = ""
    NumeroDocumento: str = ""
    Resultado: list[EventResult] = Field(default_factory=list)
    MensajeError: str = ""


class EventResponse(BaseModel):
    status: str = "200"
    message: str = "Exitoso"
    data: Optional[EventRegistrationResult] = None


# ─────────────────────────────────────────────────────────────
# COUNTERPARTIES
# ─────────────────────────────────────────────────────────────

class AcquirerContact(BaseModel):
    con_nombre: str = ""
    con_direccion: Optional[str] = None
    con_telefono: Optional[str] = None
    con_correo: Optional[str] = None
    con_observaciones: Optional[str] = None
    con_tipo: str = Field("", description="AccountingContact, DeliveryContact o BuyerContact")


class Acquirer(BaseModel):
    """Row of the acquirer table."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[int] = None
    ofe_identificacion: str = ""
    adq_identificacion: str = ""
    adq_tipo_adquirente: Optional[str] = None
    adq_id_personalizado: Optional[str] = None
    adq_informacion_personalizada: Optional[dict[str, Any]] = None
    adq_razon_social: str = ""
    adq_nombre_comercial: Optional[str] = None
    adq_primer_apellido: Optional[str] = None
    adq_segundo_apellido: Optional[str] = None
    adq_primer_nombre: Optional[str] = None
    adq_otros_nombres: Optional[str] = None
    tdo_codigo: str = ""
    toj_codigo: str = ""
    pai_codigo: str = ""
    dep_codigo: Optional[str] = None
    dep_nombre: Optional[str] = None
    mun_codigo: Optional[str] = None
    mun_nombre: Optional[str] = None
    cpo_codigo: Optional[str] = None
    adq_direccion: Optional[str] = None
    adq_telefono: Optional[str] = None
    pai_codigo_domicilio_fiscal: Optional[str] = None
    dep_codigo_domicilio_fiscal: Optional[str] = None
    dep_nombre_domicilio_fiscal: Optional[str] = None
    mun_codigo_domicilio_fiscal: Optional[str] = None
    mun_nombre_domicilio_fiscal: Optional[str] = None
    cpo_codigo_domicilio_fiscal: Optional[str] = None
    adq_direccion_domicilio_fiscal: Optional[str] = None
    adq_nombre_contacto: Optional[str] = None
    adq_fax: Optional[str] = None
    adq_notas: Optional[str] = None
    adq_correo: Optional[str] = None
    adq_matricula_mercantil: Optional[str] = None
    adq_correos_notificacion: Optional[str] = None
    rfi_codigo: Optional[str] = None
    ref_codigo: Optional[list[str]] = None
    responsable_tributos: Optional[list[str]] = None
    contactos: list[AcquirerContact] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Provider(BaseModel):
    """Row of the provider table (DS counterparties)."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[int] = None
    ofe_identificacion: str = ""
    pro_identificacion: str = ""
    pro_id_personalizado: Optional[str] = None
    pro_razon_social: Optional[str] = None
    pro_nombre_comercial: Optional[str] = None
    pro_primer_apellido: Optional[str] = None
    pro_segundo_apellido: Optional[str] = None
    pro_primer_nombre: Optional[str] = None
    pro_otros_nombres: Optional[str] = None
    tdo_codigo: str = ""
    toj_codigo: str = ""
    pai_codigo: Optional[str] = None
    dep_codigo: Optional[str] = None
    mun_codigo: Optional[str] = None
    cpo_codigo: Optional[str] = None
    pro_direccion: Optional[str] = None
    pro_telefono: str = ""
    pai_codigo_domicilio_fiscal: Optional[str] = None
    dep_codigo_domicilio_fiscal: Optional[str] = None
    mun_codigo_domicilio_fiscal: Optional[str] = None
    cpo_codigo_domicilio_fiscal: Optional[str] = None
    pro_direccion_domicilio_fiscal: str = ""
    pro_correo: str = ""
    pro_correos_notificacion: Optional[str] = None
    pro_matricula_mercantil: Optional[str] = None
    pro_usuarios_recepcion: Optional[list[str]] = None
    rfi_codigo: Optional[str] = None
    ref_codigo: Optional[list[str]] = None
    estado: str = ProviderStatus.ACTIVO.value
    fecha_creacion: Optional[str] = None
    fecha_modificacion: Optional[str] = None


class CounterpartyListResponse(BaseModel):
    data: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 20


# ─────────────────────────────────────────────────────────────
# AUDIT
# ─────────────────────────────────────────────────────────────

class ProviderAuditLog(BaseModel):
    """One upstream HTTP exchange."""
    id: Optional[int] = None
    correlation_id: str
    provider: str
    operation: str
    request_method: str
    request_url: str
    request_headers: dict[str, str] = Field(default_factory=dict)
    request_body: Optional[Any] = None
    response_status: Optional[int] = None
    response_headers: dict[str, str] = Field(default_factory=dict)
    response_body: Optional[Any] = None
    duration_ms: int = 0
    error_message: Optional[str] = None
    created_at: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# GENERIC
# ─────────────────────────────────────────────────────────────

class ErrorResponse(BaseModel):
    """Standard error body: {message, errors[]}."""
    message: str
    errors: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    numrot_configured: bool
    database_configured: bool
