"""
Shared fixtures. Environment is pinned before the package is imported so
that the module-level Settings() does not require JWT issuer values.
"""

import os

os.environ.setdefault("AUTH_ENABLED", "false")
os.environ.setdefault("DOCUMENT_STREAMING_ENABLED", "true")
os.environ.setdefault("NUMROT_BASE_URL", "https://numrot.test")
os.environ.setdefault("NUMROT_RADIAN_URL", "https://radian.test")
os.environ.setdefault("NUMROT_EMISOR_NIT", "860011153")
os.environ.setdefault("NUMROT_RAZON_SOCIAL", "Positiva SAS")

import pytest

from facturacion_core.core.config import Settings


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        auth_enabled=False,
        numrot_base_url="https://numrot.test",
        numrot_ds_base_url="https://numrot-ds.test/api",
        numrot_radian_url="https://radian.test",
        numrot_username="user",
        numrot_password="secret",
        numrot_key="radian-key",
        numrot_secret="radian-secret",
        numrot_emisor_nit="860011153",
        numrot_razon_social="Positiva SAS",
        numrot_generator_nombre="Ana",
        numrot_generator_apellido="Gomez",
        numrot_generator_identificacion="1020304050",
    )


@pytest.fixture
def make_document():
    """Factory for a valid OpenETL document dated today (Bogota)."""
    from facturacion_core.schemas.models import OpenETLDocument
    from facturacion_core.utils.document_helpers import today_bogota

    def _make(**overrides) -> OpenETLDocument:
        data = {
            "tde_codigo": "01",
            "top_codigo": "10",
            "ofe_identificacion": "860011153-6",
            "adq_identificacion": "900123456",
            "rfa_prefijo": "SETT",
            "rfa_resolucion": "18760000001",
            "cdo_consecutivo": "5604",
            "cdo_fecha": today_bogota(),
            "cdo_hora": "14:37:00",
            "mon_codigo": "COP",
            "cdo_valor_sin_impuestos": "100000.00",
            "cdo_impuestos": "19000.00",
            "cdo_total": "119000.00",
            "items": [{
                "ddo_secuencia": "1", "ddo_codigo": "P01", "ddo_descripcion_uno": "Producto",
                "ddo_cantidad": "1", "und_codigo": "UN", "ddo_valor_unitario": "100000.00",
                "ddo_total": "100000.00",
            }],
            "tributos": [{
                "ddo_secuencia": "1", "tri_codigo": "01", "iid_valor": "19000.00",
                "iid_porcentaje": {"iid_base": "100000.00", "iid_porcentaje": "19.00"},
            }],
        }
        data.update(overrides)
        return OpenETLDocument(**data)

    return _make
