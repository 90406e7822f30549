"""
FACTURACION-CORE — Module 1: NumrotAuthManager
Handles authentication against the Numrot gateway.

Flow:
1. POST {base}/v2/api/Token with the configured username/password
2. Numrot returns the bearer token as plain text (sometimes quoted)
3. Token is cached in-memory for NUMROT_TOKEN_TTL seconds
4. Any later 401 clears the cache so the next call re-authenticates

Numrot Auth Details:
- Endpoint: POST /v2/api/Token
- Body: {"username": "...", "password": "..."}
- Response: "eyJ..." (text/plain)
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import httpx

from facturacion_core.core.config import get_numrot_url, settings
from facturacion_core.core.errors import NumrotAuthError

logger = logging.getLogger(__name__)


class TokenInfo:
    """In-memory token storage with a fixed TTL."""
    def __init__(self, token: str, ttl_seconds: int):
        self.token = token
        self.obtained_at = datetime.now(timezone.utc)
        self.expires_at = self.obtained_at + timedelta(seconds=ttl_seconds)

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at


class NumrotAuthManager:
    """
    Manages the Numrot bearer token for the whole process.

    The token is shared by every outbound call; refresh is serialized with an
    asyncio.Lock and re-checked after acquiring it, so a burst of concurrent
    requests triggers a single token exchange.

    Usage:
        auth = NumrotAuthManager(http_client)
        bearer = await auth.get_bearer()
    """

    def __init__(self, client, config=None):
        self.client = client
        self.config = config or settings
        self._token: TokenInfo | None = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """
        Return a valid token, authenticating when none is cached or it expired.

        Raises:
            NumrotAuthError: "numrot authentication failed: ..." on any failure
        """
        cached = self._token
        if cached and not cached.is_expired:
            return cached.token

        async with self._lock:
            cached = self._token
            if cached and not cached.is_expired:
                return cached.token

            try:
                token = await self._authenticate()
            except NumrotAuthError as e:
                logger.error(f"Numrot authentication failed: {e.message}")
                raise NumrotAuthError(
                    f"numrot authentication failed: {e.message}",
                    status_code=e.status_code,
                ) from e

            self._token = TokenInfo(token, self.config.numrot_token_ttl)
            logger.debug(f"Numrot token refreshed, valid until {self._token.expires_at.isoformat()}")
            return token

    async def get_bearer(self) -> str:
        return f"Bearer {await self.get_token()}"

    def clear_token(self) -> None:
        """Drop the cached token; the next call re-authenticates."""
        self._token = None

    async def _authenticate(self) -> str:
        url = get_numrot_url("token", self.config)
        payload = {
            "username": self.config.numrot_username,
            "password": self.config.numrot_password,
        }

        try:
            response = await self.client.request(
                "POST", url, json=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise NumrotAuthError(f"execute request: {e}", status_code=502) from e

        if response.status_code != 200:
            raise NumrotAuthError(
                f"authentication failed with status {response.status_code}: {response.text}",
                status_code=502,
            )

        token = response.text.strip().strip('"')
        if not token:
            raise NumrotAuthError("empty token in response", status_code=502)
        return token
