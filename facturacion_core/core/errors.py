"""
FACTURACION-CORE — Error taxonomy and HTTP mapping.

Gateway failures travel as plain messages; the substrings below are the
contract the classifier matches on:
  document not found | provider error | execute request | read response body |
  unexpected status code | unmarshal response | marshal request | authentication failed
"""

import re

MSG_VALIDATION = "Error de Validación"
MSG_NOT_FOUND = "No Encontrado"
MSG_CONFLICT = "Conflicto"
MSG_AUTH = "Error de Autenticación"
MSG_CONFIG = "Error de Configuración"
MSG_PROVIDER = "Error del Proveedor"
MSG_INTERNAL = "Error Interno del Servidor"
MSG_INVALID_BODY = "El cuerpo de la petición no es válido"
MSG_TIMEOUT = "Tiempo de Espera Agotado"


class DocumentValidationError(Exception):
    """Caller-fixable validation failure. Always a 400."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(Exception):
    """Missing service configuration (issuer NIT, Radian key/secret...)."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(Exception):
    """Inbound bearer token missing or rejected. Always a 401."""
    def __init__(self, message: str, errors: list[str] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)


class NumrotError(Exception):
    """Raised when a Numrot gateway call fails."""
    def __init__(self, message: str, status_code: int = None, response: dict = None):
        self.message = message
        self.status_code = status_code
        self.response = response or {}
        super().__init__(self.message)


class NumrotAuthError(NumrotError):
    """Token exchange rejected or unusable."""


class CounterpartyError(Exception):
    """Acquirer/provider store failure. Status follows the message unless given."""
    def __init__(self, message: str, status_code: int = None):
        self.message = message
        self.status_code = status_code or counterparty_status(message)
        super().__init__(self.message)


_COUNTERPARTY_VALIDATION_MARKERS = ("es requerido", "excede la longitud", "inválido", "debe ser")


def counterparty_status(message: str) -> int:
    text = (message or "").lower()
    if "no existe" in text:
        return 404
    if "ya existe" in text:
        return 409
    if _contains(text, _COUNTERPARTY_VALIDATION_MARKERS):
        return 400
    return 500


_VALIDATION_MARKERS = (
    "required",
    "must be today",
    "fad09e",
    "does not match document type",
    "documentos fallidos",
    "must be on or after",
    "must be before or equal",
    "only one document type",
    "no documents provided",
    "invalid event type",
    "invalid rejection code",
    'must be "10"',
)

_NOT_FOUND_MARKERS = ("not found", "no existe", "no encontrad")

_UPSTREAM_MARKERS = (
    "unexpected status code",
    "execute request",
    "read response body",
    "unmarshal response",
    "marshal request",
    "provider error",
    "numrot api error",
)


def _contains(message: str, markers) -> bool:
    return any(marker in message for marker in markers)


def _is_format_error(message: str) -> bool:
    return re.search(r"invalid .*format", message) is not None


def classify_error(message: str) -> tuple[int, str, list[str]]:
    """
    Map an error message to (http_status, title, errors).

    Order matters: configuration and authentication checks run before the
    generic "required" validation marker.
    """
    text = (message or "").lower()

    if "key and secret are required" in text:
        return 502, MSG_CONFIG, ["Error de configuración del proveedor"]
    if "authentication failed" in text or "get authentication token" in text:
        return 502, MSG_AUTH, ["Error de autenticación con el proveedor"]
    if _contains(text, _VALIDATION_MARKERS) or _is_format_error(text):
        return 400, MSG_VALIDATION, [message]
    if _contains(text, _NOT_FOUND_MARKERS):
        return 404, MSG_NOT_FOUND, [message]
    if "ya existe" in text:
        return 409, MSG_CONFLICT, [message]
    if "unmarshal response" in text or "marshal request" in text:
        return 502, MSG_PROVIDER, ["Error en el formato de respuesta del proveedor"]
    if "numrot api error" in text:
        return 502, MSG_PROVIDER, [message]
    if _contains(text, _UPSTREAM_MARKERS):
        return 502, MSG_PROVIDER, ["Servicio del proveedor no disponible"]
    return 500, MSG_INTERNAL, ["Ha ocurrido un error interno"]
