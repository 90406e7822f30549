"""
sanitizer.py — Redaction of secrets in provider traffic.

Location: facturacion_core/services/sanitizer.py

Used by the traced transport before anything reaches the logs or the
provider_audit_log table. Header and body values whose key looks sensitive
are replaced with "[REDACTED]".
"""

import base64
import gzip
import json
import zlib
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

REDACTED = "[REDACTED]"

SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "proxy-authorization",
}

# Matched as substrings of the lowercased key
SENSITIVE_FIELDS = (
    "password",
    "secret",
    "token",
    "key",
    "authorization",
    "api_key",
    "apikey",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "credential",
    "auth",
)

GZIP_MAGIC = b"\x1f\x8b"


def is_sensitive_key(key: str) -> bool:
    lower = (key or "").lower()
    return any(field in lower for field in SENSITIVE_FIELDS)


def sanitize_headers(headers) -> dict[str, str]:
    """
    Copy a header mapping with sensitive values redacted.
    Repeated headers (httpx.Headers.multi_items) are joined with ", ".
    """
    if headers is None:
        return {}
    items = headers.multi_items() if hasattr(headers, "multi_items") else headers.items()

    sanitized: dict[str, list[str]] = {}
    for key, value in items:
        if key.lower() in SENSITIVE_HEADERS:
            sanitized[key] = [REDACTED]
        else:
            sanitized.setdefault(key, []).append(value)
    return {key: ", ".join(values) for key, values in sanitized.items()}


def sanitize_value(value: Any) -> Any:
    """Recursively redact sensitive keys in a decoded JSON value."""
    if isinstance(value, dict):
        return {
            key: REDACTED if is_sensitive_key(key) else sanitize_value(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [sanitize_value(item) for item in value]
    return value


def _wrap_binary(data: bytes, fmt: str) -> dict:
    return {
        "_binary": True,
        "_format": fmt,
        "_size": len(data),
        "_base64": base64.b64encode(data).decode("ascii"),
    }


def sanitize_body(body: Optional[bytes], max_size: int = 0) -> Optional[Any]:
    """
    Turn a raw HTTP body into a JSON-serializable, secret-free value.

    - gzip payloads are decompressed first
    - non UTF-8 payloads are wrapped as base64
    - payloads above max_size become {_truncated, _size, _preview}
    - non JSON text becomes {_raw, _format: "text"}

    Returns None for an empty body.
    """
    if not body:
        return None

    if body[:2] == GZIP_MAGIC:
        try:
            body = gzip.decompress(body)
        except (OSError, EOFError, zlib.error):
            return _wrap_binary(body, "gzip-compressed (decompression failed)")

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        return _wrap_binary(body, "binary (non-UTF8)")

    if max_size > 0 and len(body) > max_size:
        return {
            "_truncated": True,
            "_size": len(body),
            "_preview": body[:max_size].decode("utf-8", errors="ignore"),
        }

    try:
        data = json.loads(text)
    except ValueError:
        return {"_raw": text, "_format": "text"}

    return sanitize_value(data)


def sanitize_url(url: str) -> str:
    """Redact the values of sensitive query parameters."""
    if not url or "?" not in url:
        return url
    parts = urlsplit(url)
    query = [
        (name, REDACTED if is_sensitive_key(name) else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="[]")))
