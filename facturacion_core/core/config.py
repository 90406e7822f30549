"""
FACTURACION-CORE Configuration
Numrot gateway URLs and application settings.
"""

from enum import Enum

from pydantic import model_validator
from pydantic_settings import BaseSettings


class AppEnvironment(str, Enum):
    LOCAL = "local"
    TEST = "test"
    PRODUCTION = "production"


class Settings(BaseSettings):
    app_name: str = "ms_facturacion_core"
    app_version: str = "0.1.0"
    app_env: AppEnvironment = AppEnvironment.LOCAL
    app_host: str = "0.0.0.0"
    app_port: int = 8080
    log_level: str = "info"
    cors_origins: str = "*"
    rate_limit_default: str = "600/minute"

    # Coarse ceiling for massive registrations (seconds)
    http_write_timeout_massive: int = 900

    # ── Auth ──
    auth_enabled: bool = True
    jwt_issuer_uri: str = ""
    jwt_jwk_set_uri: str = ""
    auth_clock_skew: int = 120
    auth_bypass_paths: str = "/health"

    # ── Database (Supabase) ──
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # ── Audit ──
    audit_enabled: bool = True
    audit_log_request_body: bool = True
    audit_log_response_body: bool = True
    audit_max_body_size: int = 102400

    # ── Numrot ──
    numrot_base_url: str = ""
    numrot_ds_base_url: str = ""
    numrot_radian_url: str = ""
    numrot_username: str = ""
    numrot_password: str = ""
    numrot_key: str = ""
    numrot_secret: str = ""
    numrot_token_ttl: int = 3600
    numrot_api_timeout: int = 300
    numrot_max_conns_per_host: int = 50
    numrot_circuit_max_failures: int = 10
    numrot_circuit_failure_rate: float = 0.5
    numrot_circuit_cooldown: int = 30
    numrot_emisor_nit: str = ""
    numrot_razon_social: str = ""
    numrot_generator_nombre: str = ""
    numrot_generator_apellido: str = ""
    numrot_generator_identificacion: str = ""
    numrot_resolutions_enabled: bool = True
    numrot_hardcoded_invoice_auth: str = ""
    numrot_hardcoded_start_date: str = ""
    numrot_hardcoded_end_date: str = ""
    numrot_hardcoded_prefix: str = ""
    numrot_hardcoded_from: str = ""
    numrot_hardcoded_to: str = ""
    numrot_nc_invoice_period_start_date: str = ""
    numrot_nc_invoice_period_start_time: str = ""
    numrot_nc_invoice_period_end_date: str = ""
    numrot_nc_invoice_period_end_time: str = ""

    # ── Issuer (OFE) fixed identity ──
    ofe_razon_social: str = "Positiva SAS"
    ofe_direccion: str = "CLL 50 - 96"
    ofe_municipio_codigo: str = "05380"
    ofe_municipio_nombre: str = "LA ESTRELLA"
    ofe_departamento_codigo: str = "05"
    ofe_departamento_nombre: str = "ANTIOQUIA"
    ofe_postal_zone: str = "55468"
    ofe_contact_email: str = ""

    # ── Document processing ──
    document_worker_pool_size: int = 10
    document_batch_size: int = 50
    document_max_concurrent_requests: int = 50
    document_streaming_enabled: bool = True
    cdo_ambiente_default: str = "2"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @model_validator(mode="after")
    def _check_invariants(self):
        self.cdo_ambiente_default = (self.cdo_ambiente_default or "2").strip()
        if self.cdo_ambiente_default not in ("1", "2"):
            raise ValueError("CDO_AMBIENTE_DEFAULT must be '1' (production) or '2' (test)")
        if self.document_max_concurrent_requests > 200:
            raise ValueError("DOCUMENT_MAX_CONCURRENT_REQUESTS cannot exceed 200 (recommended max for stability)")
        if self.document_max_concurrent_requests <= 0:
            raise ValueError("DOCUMENT_MAX_CONCURRENT_REQUESTS must be greater than 0")
        if self.document_batch_size <= 0:
            raise ValueError("DOCUMENT_BATCH_SIZE must be greater than 0")
        if self.auth_enabled:
            if not self.jwt_issuer_uri.strip():
                raise ValueError("JWT_ISSUER_URI is required when AUTH_ENABLED=true")
            if not self.jwt_jwk_set_uri.strip():
                raise ValueError("JWT_JWK_SET_URI is required when AUTH_ENABLED=true")
        return self

    @property
    def concurrent_batch_limit(self) -> int:
        return max(1, self.document_max_concurrent_requests // self.document_batch_size)

    @property
    def bypass_paths(self) -> list[str]:
        return _split_csv(self.auth_bypass_paths)

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins) or ["*"]

    @property
    def numrot_configured(self) -> bool:
        return bool(self.numrot_base_url.strip())

    @property
    def database_configured(self) -> bool:
        return bool(self.supabase_url.strip() and self.supabase_service_role_key.strip())


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


settings = Settings()


# ─────────────────────────────────────────────────────────────
# NUMROT URL REGISTRY
# Paths relative to NUMROT_BASE_URL / NUMROT_RADIAN_URL.
# ─────────────────────────────────────────────────────────────

NUMROT_PATHS = {
    "token":            ("base", "/v2/api/Token"),
    "resoluciones":     ("base", "/api/Resoluciones/{nit}"),
    "send_dian":        ("base", "/api/SendDIAN/Json/Pdf"),
    "document_sinc":    ("ds", "/api/documentSinc/{nit}/{documento}"),
    "search_estados":   ("base", "/api/searchestadosdian/{nit}/{documento}"),
    "radian_documents": ("radian", "/api/Radian/GetInfoDocument"),
    "radian_by_number": ("radian", "/api/Radian/GetDocumentByNumber"),
    "radian_received":  ("radian", "/api/Radian/DocumentsReceived"),
    "radian_event":     ("radian", "/api/Radian/SetEvent"),
}


def get_numrot_url(service: str, config: Settings | None = None, **params) -> str:
    """Build the Numrot URL for a service. DS falls back to the base URL."""
    config = config or settings
    entry = NUMROT_PATHS.get(service)
    if not entry:
        raise ValueError(f"Unknown Numrot service: {service}")
    host, path = entry
    if host == "radian":
        base = config.numrot_radian_url
    elif host == "ds":
        base = config.numrot_ds_base_url or config.numrot_base_url
    else:
        base = config.numrot_base_url
    base = base.strip().rstrip("/")
    if host == "ds" and base.endswith("/api"):
        path = path[len("/api"):]
    return base + path.format(**params)
