"""
OAuth2 token manager — handles the code exchange, expiry tracking and refresh.

Exact Online issues access tokens that live for ten minutes. The manager
records an expiry slightly earlier than that (570 seconds after issue by
default) so a refresh happens before the API starts rejecting the token.
Every exchange and refresh is persisted through a :class:`TokenStore`, so a
restart does not force the user to log in again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from exactfetch.auth.store import TokenStore
from exactfetch.errors import (
    AuthError,
    AuthExpired,
    InvalidAuthorizationCode,
    TransportError,
    Unauthenticated,
)

logger = logging.getLogger("exactfetch.auth.oauth2")

# Provider lifetime is 600s; expire locally 30s early.
DEFAULT_TOKEN_LIFETIME = 570


@dataclass
class Credential:
    """Holds the OAuth2 token pair with expiry tracking."""

    access_token: str
    refresh_token: str
    expires_at: float = 0.0
    current_division: int | None = None

    def is_expired(self, now: float | None = None) -> bool:
        """True once ``now`` has reached ``expires_at``."""
        if now is None:
            now = time.time()
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "current_division": self.current_division,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        division = data.get("current_division")
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=float(data.get("expires_at", 0.0)),
            current_division=int(division) if division is not None else None,
        )

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        *,
        issued_at: float,
        lifetime: int = DEFAULT_TOKEN_LIFETIME,
        previous: Credential | None = None,
    ) -> Credential:
        """Parse a token endpoint response issued at ``issued_at``."""
        refresh_token = data.get("refresh_token") or (previous.refresh_token if previous else "")
        return cls(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_at=issued_at + lifetime,
            current_division=previous.current_division if previous else None,
        )


def extract_authorization_code(value: str) -> str:
    """Return the authorization code from a pasted redirect URL or bare code.

    Users copy the whole URL the provider redirects to; the code is its
    ``code`` query parameter.
    """
    value = value.strip()
    if "?" not in value:
        return value

    params = parse_qs(urlparse(value).query)
    codes = params.get("code")
    if not codes or not codes[0]:
        raise InvalidAuthorizationCode("No authorization code found in the redirect URL")
    return codes[0]


def _describe_token_error(data: Any, status_code: int) -> str:
    """Build a readable message from a token endpoint error body."""
    if isinstance(data, dict):
        error = data.get("error")
        description = data.get("error_description")
        if error and description:
            return f"{error}: {description}"
        if error:
            return str(error)
    return f"token endpoint returned HTTP {status_code}"


class OAuth2TokenManager:
    """Owns the credential and keeps it valid.

    Usage::

        manager = OAuth2TokenManager(
            base_url="https://start.exactonline.nl/api",
            client_id="...",
            client_secret="...",
            redirect_uri="https://example.com/callback",
            store=TokenStore(path),
        )

        print(manager.get_authorization_url())
        await manager.exchange_authorization_code(code)

        # Before every API call
        credential = await manager.ensure_valid_token()
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        store: TokenStore,
        *,
        token_lifetime: int = DEFAULT_TOKEN_LIFETIME,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.store = store
        self.token_lifetime = token_lifetime
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._http_client = http_client
        self._owns_client = http_client is None
        self._credential: Credential | None = store.load()
        self._lock = asyncio.Lock()

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/oauth2/token"

    @property
    def authorize_url(self) -> str:
        return f"{self.base_url}/oauth2/auth"

    @property
    def credential(self) -> Credential | None:
        return self._credential

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client; an injected one is kept as is."""
        if self._http_client is None or (self._owns_client and self._http_client.is_closed):
            self._http_client = httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this manager created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Authorization code flow
    # ------------------------------------------------------------------

    def get_authorization_url(self) -> str:
        """Build the URL the user opens to grant access."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> Credential:
        """Exchange an authorization code for a credential and persist it.

        Raises:
            InvalidAuthorizationCode: If the provider rejects the code.
            TransportError: If the token endpoint cannot be reached.
        """
        payload = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "code": code,
        }

        async with self._lock:
            issued_at = time.time()
            data = await self._token_request(payload, InvalidAuthorizationCode)
            credential = Credential.from_token_response(
                data, issued_at=issued_at, lifetime=self.token_lifetime,
            )
            self.store.save(credential)
            self._credential = credential

        logger.info("Exchanged authorization code for tokens")
        return credential

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def ensure_valid_token(self) -> Credential:
        """Return a credential that is valid right now, refreshing if needed.

        Raises:
            Unauthenticated: If no credential exists.
            AuthExpired: If the provider rejects the refresh token.
            TransportError: If the token endpoint cannot be reached.
        """
        if self._credential is None:
            raise Unauthenticated()

        async with self._lock:
            # Another caller may have logged out or refreshed while we waited.
            if self._credential is None:
                raise Unauthenticated()
            if self._credential.is_expired():
                await self._refresh(self._credential)
            return self._credential

    async def _refresh(self, current: Credential) -> None:
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        logger.debug("Refreshing access token")
        issued_at = time.time()
        data = await self._token_request(payload, AuthExpired)
        credential = Credential.from_token_response(
            data, issued_at=issued_at, lifetime=self.token_lifetime, previous=current,
        )
        self.store.save(credential)
        self._credential = credential
        logger.info("Refreshed access token (valid for %ds)", self.token_lifetime)

    async def _token_request(
        self, payload: dict[str, str], error_cls: type[AuthError],
    ) -> dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.post(
                self.token_url, data=payload, headers={"Accept": "application/json"},
            )
        except httpx.TransportError as e:
            raise TransportError(f"Token request to {self.token_url} failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise error_cls(
                f"Token endpoint returned an unreadable response (HTTP {resp.status_code})"
            ) from e

        if resp.status_code >= 400 or not isinstance(data, dict) or data.get("error"):
            raise error_cls(_describe_token_error(data, resp.status_code))
        if not data.get("access_token"):
            raise error_cls("Token endpoint response has no access_token")
        return data

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def set_current_division(self, division: int) -> None:
        """Remember the user's current division alongside the tokens."""
        if self._credential is None:
            raise Unauthenticated()
        self._credential.current_division = division
        self.store.save(self._credential)

    def logout(self) -> None:
        """Forget the credential. Safe to call when already logged out."""
        self._credential = None
        if self.store.clear():
            logger.info("Logged out")
