"""
auth_middleware.py — Bearer JWT guard for the /api/v1 routes.

Location: facturacion_core/services/auth_middleware.py

Provides:
- JWTAuthenticator: verifies RS/ES tokens against the JWKS at JWT_JWK_SET_URI
- require_bearer: FastAPI dependency; no-op when AUTH_ENABLED=false or the
  path is listed in AUTH_BYPASS_PATHS
"""

import logging
from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Request
from jwt import PyJWKClient

from facturacion_core.core.config import settings
from facturacion_core.core.errors import MSG_AUTH, AuthenticationError

logger = logging.getLogger(__name__)

MISSING_CREDENTIALS = "Credenciales de acceso no válidas"
INVALID_TOKEN = "Token inválido o expirado"

ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "PS256"]


def extract_bearer(header: Optional[str]) -> str:
    """Raises ValueError when the Authorization header is absent or not 'Bearer <token>'."""
    if not header:
        raise ValueError("missing Authorization header")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ValueError("invalid Authorization header format")
    return token.strip()


class JWTAuthenticator:

    def __init__(self, config=None, jwk_client: PyJWKClient = None):
        self.config = config or settings
        self.jwk_client = jwk_client or PyJWKClient(self.config.jwt_jwk_set_uri, cache_keys=True)

    def should_bypass(self, path: str) -> bool:
        return path in self.config.bypass_paths

    def verify(self, token: str) -> dict:
        """Decode and verify a token. Returns its claims."""
        signing_key = self.jwk_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=ALGORITHMS,
            issuer=self.config.jwt_issuer_uri,
            leeway=self.config.auth_clock_skew,
            options={"verify_aud": False},
        )

    def authenticate(self, request: Request) -> Optional[dict]:
        if self.should_bypass(request.url.path):
            return None
        try:
            token = extract_bearer(request.headers.get("Authorization"))
        except ValueError as e:
            logger.warning(f"Rejected request to {request.url.path}: {e}")
            raise AuthenticationError(MSG_AUTH, [MISSING_CREDENTIALS]) from e
        try:
            return self.verify(token)
        except jwt.PyJWTError as e:
            logger.warning(f"Invalid token for {request.url.path}: {e}")
            raise AuthenticationError(MSG_AUTH, [INVALID_TOKEN]) from e


@lru_cache()
def get_authenticator() -> JWTAuthenticator:
    return JWTAuthenticator()


def require_bearer(request: Request) -> Optional[dict]:
    """
    Dependency attached to every /api/v1 router. Returns the token claims.

    Runs in the FastAPI threadpool: JWKS fetches on a key cache miss block.
    """
    if not settings.auth_enabled:
        return None
    return get_authenticator().authenticate(request)
