"""
FACTURACION-CORE — Unit Tests
Tests for core modules: document helpers, error classification, config.

Run: pytest tests/ -v
"""

import re

import pytest
from pydantic import ValidationError

from facturacion_core.core.config import Settings, get_numrot_url
from facturacion_core.core.context import (
    get_correlation_id, new_correlation_id, reset_correlation_id, set_correlation_id,
)
from facturacion_core.core.errors import (
    MSG_AUTH, MSG_CONFIG, MSG_CONFLICT, MSG_INTERNAL, MSG_NOT_FOUND, MSG_PROVIDER,
    MSG_VALIDATION, CounterpartyError, classify_error,
)
from facturacion_core.utils.document_helpers import (
    combine_emails,
    extract_prefix_and_consecutive,
    is_blank,
    map_unit_code,
    normalize_monetary_value,
    normalize_nit,
    parse_date,
    parse_nit_with_dv,
    parse_time,
    processing_stamp,
    synthesize_lote,
    today_bogota,
)

# ─────────────────────────────────────────────────────────────
# DOCUMENT HELPERS
# ─────────────────────────────────────────────────────────────


class TestNormalizeNit:
    def test_strips_verification_digit(self):
        assert normalize_nit("860011153-6") == "860011153"

    def test_trims_whitespace(self):
        assert normalize_nit(" 860011153 ") == "860011153"

    def test_empty_values(self):
        assert normalize_nit("") == ""
        assert normalize_nit(None) == ""

    def test_split_with_dv(self):
        assert parse_nit_with_dv("860011153-6") == ("860011153", "6")
        assert parse_nit_with_dv("860011153") == ("860011153", "")
        assert parse_nit_with_dv("86-00-6") == ("86", "6")


class TestDatesAndTimes:
    def test_parse_date_strict(self):
        assert parse_date("2026-01-15").day == 15
        with pytest.raises(ValueError):
            parse_date("15/01/2026")
        with pytest.raises(ValueError):
            parse_date("2026-1-5")

    def test_parse_time_strict(self):
        assert parse_time("14:37:00").minute == 37
        with pytest.raises(ValueError):
            parse_time("14:37")

    def test_processing_stamp_format(self):
        fecha, hora = processing_stamp()
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", fecha)
        assert re.fullmatch(r"\d{2}:\d{2}:\d{2}", hora)

    def test_today_bogota_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", today_bogota())

    def test_synthesized_lote(self):
        assert re.fullmatch(r"lote-\d{8}-\d{6}", synthesize_lote())


class TestMiscHelpers:
    def test_is_blank(self):
        assert is_blank(None)
        assert is_blank("   ")
        assert not is_blank("0")

    def test_zero_amounts_normalize(self):
        assert normalize_monetary_value("") == "0.00"
        assert normalize_monetary_value("0") == "0.00"
        assert normalize_monetary_value("12.50") == "12.50"

    def test_unit_codes(self):
        assert map_unit_code("UN") == "94"
        assert map_unit_code("XYZ") == "XYZ"

    def test_prefix_and_consecutive(self):
        assert extract_prefix_and_consecutive("SETT5604") == ("SETT", "5604")
        assert extract_prefix_and_consecutive("5604") == ("", "5604")

    def test_combine_emails_dedupes(self):
        assert combine_emails("a@x.co; b@x.co", "b@x.co,c@x.co", None) == "a@x.co;b@x.co;c@x.co"


# ─────────────────────────────────────────────────────────────
# ERROR CLASSIFICATION
# ─────────────────────────────────────────────────────────────


class TestClassifyError:
    def test_provider_credentials(self):
        status, title, errors = classify_error("radian key and secret are required")
        assert (status, title) == (502, MSG_CONFIG)
        assert errors == ["Error de configuración del proveedor"]

    def test_authentication_before_required(self):
        status, title, _ = classify_error("authentication failed: token is required")
        assert (status, title) == (502, MSG_AUTH)

    @pytest.mark.parametrize("message", [
        "company nit is required",
        "cdo_fecha must be today",
        "invalid date format for InitialDate",
        "final date must be on or after initial date",
        "invalid event type: FOO",
    ])
    def test_validation_messages(self, message):
        status, title, errors = classify_error(message)
        assert (status, title, errors) == (400, MSG_VALIDATION, [message])

    def test_not_found(self):
        status, title, _ = classify_error("document not found")
        assert (status, title) == (404, MSG_NOT_FOUND)

    def test_conflict(self):
        status, title, _ = classify_error("El adquirente ya existe")
        assert (status, title) == (409, MSG_CONFLICT)

    def test_unmarshal(self):
        status, title, errors = classify_error("unmarshal response: bad json")
        assert (status, title) == (502, MSG_PROVIDER)
        assert errors == ["Error en el formato de respuesta del proveedor"]

    def test_numrot_api_error_passes_message(self):
        status, _, errors = classify_error("numrot api error: Duplicated")
        assert status == 502
        assert errors == ["numrot api error: Duplicated"]

    def test_upstream_unavailable(self):
        status, _, errors = classify_error("execute request: connection refused")
        assert status == 502
        assert errors == ["Servicio del proveedor no disponible"]

    def test_unknown_is_internal(self):
        status, title, errors = classify_error("boom")
        assert (status, title, errors) == (500, MSG_INTERNAL, ["Ha ocurrido un error interno"])


class TestCounterpartyError:
    def test_status_follows_message(self):
        assert CounterpartyError("El adquirente no existe").status_code == 404
        assert CounterpartyError("El proveedor ya existe").status_code == 409
        assert CounterpartyError("adq_razon_social es requerido").status_code == 400
        assert CounterpartyError("db down").status_code == 500

    def test_explicit_status_wins(self):
        assert CounterpartyError("no existe", status_code=400).status_code == 400


# ─────────────────────────────────────────────────────────────
# CONFIG
# ─────────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None, auth_enabled=False)
        assert s.cdo_ambiente_default == "2"
        assert s.concurrent_batch_limit == 1
        assert s.cors_origin_list == ["*"]

    def test_ambiente_must_be_one_or_two(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, auth_enabled=False, cdo_ambiente_default="3")

    def test_concurrency_bounds(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, auth_enabled=False, document_max_concurrent_requests=201)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, auth_enabled=False, document_max_concurrent_requests=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, auth_enabled=False, document_batch_size=0)

    def test_auth_requires_issuer_and_jwks(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, auth_enabled=True, jwt_issuer_uri="", jwt_jwk_set_uri="x")
        s = Settings(_env_file=None, auth_enabled=True, jwt_issuer_uri="https://iss",
                     jwt_jwk_set_uri="https://iss/certs")
        assert s.auth_enabled

    def test_concurrent_batch_limit(self):
        s = Settings(_env_file=None, auth_enabled=False, document_max_concurrent_requests=100,
                     document_batch_size=20)
        assert s.concurrent_batch_limit == 5

    def test_bypass_paths(self):
        s = Settings(_env_file=None, auth_enabled=False, auth_bypass_paths="/health, /docs,")
        assert s.bypass_paths == ["/health", "/docs"]


class TestNumrotUrls:
    def test_send_dian(self, config):
        assert get_numrot_url("send_dian", config) == "https://numrot.test/api/SendDIAN/Json/Pdf"

    def test_ds_base_drops_duplicated_api(self, config):
        url = get_numrot_url("document_sinc", config, nit="860011153", documento="DS1")
        assert url == "https://numrot-ds.test/api/documentSinc/860011153/DS1"

    def test_ds_falls_back_to_base(self, config):
        config.numrot_ds_base_url = ""
        url = get_numrot_url("document_sinc", config, nit="1", documento="2")
        assert url == "https://numrot.test/api/documentSinc/1/2"

    def test_radian(self, config):
        assert get_numrot_url("radian_event", config) == "https://radian.test/api/Radian/SetEvent"

    def test_unknown_service(self, config):
        with pytest.raises(ValueError):
            get_numrot_url("nope", config)


class TestCorrelationContext:
    def test_set_and_reset(self):
        cid = new_correlation_id()
        token = set_correlation_id(cid)
        assert get_correlation_id() == cid
        reset_correlation_id(token)
        assert get_correlation_id() != cid
