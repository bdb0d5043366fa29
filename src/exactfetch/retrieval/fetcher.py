"""
Page fetcher — one authenticated GET against the Exact Online REST API.

List endpoints wrap their results in an OData v2 envelope::

    {"d": {"results": [...], "__next": "https://…/api/v1/…?$skiptoken=…"}}

The fetcher returns the records and the next-page cursor with the API base
URL stripped, so the cursor can be requested again as a relative path. It
never retries; that decision belongs to the caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from exactfetch.errors import ApiError, DecodeError, TransportError

logger = logging.getLogger("exactfetch.retrieval.fetcher")


@dataclass
class Page:
    """One page of raw records plus the cursor to the next page, if any."""

    records: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None


def _error_message(error: Any) -> tuple[str, str]:
    """Pull (code, message) out of an API error object.

    Exact nests the text as ``{"message": {"lang": "", "value": "..."}}``;
    other endpoints use a plain string.
    """
    if isinstance(error, dict):
        code = str(error.get("code") or "")
        message = error.get("message", "")
        if isinstance(message, dict):
            message = message.get("value", "")
        return code, str(message) or json.dumps(error)
    return "", str(error)


class PageFetcher:
    """Performs authenticated GETs and decodes the result envelope.

    Usage::

        fetcher = PageFetcher("https://start.exactonline.nl/api")
        page = await fetcher.fetch_page("/v1/123/system/Divisions", token)
        while page.next_cursor:
            page = await fetcher.fetch_page(page.next_cursor, token)
    """

    def __init__(
        self,
        base_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        verify_ssl: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._http = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client.

        An injected client is used as is; only a client created here is
        recreated after :meth:`aclose`.
        """
        if self._http is None or (self._owns_client and self._http.is_closed):
            self._http = httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify_ssl,
                headers={"Accept": "application/json"},
            )
        return self._http

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client and self._http and not self._http.is_closed:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    def url_for(self, url_or_path: str) -> str:
        """Resolve a relative API path against the base URL."""
        if url_or_path.startswith(("http://", "https://")):
            return url_or_path
        if not url_or_path.startswith("/"):
            url_or_path = "/" + url_or_path
        return f"{self.base_url}{url_or_path}"

    def strip_base_url(self, url: str) -> str:
        """Turn an absolute API URL into a path relative to the base URL.

        URLs that point somewhere else are returned unchanged.
        """
        if url.startswith(self.base_url):
            return url[len(self.base_url):]
        return url

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def fetch_json(self, url_or_path: str, bearer_token: str) -> Any:
        """GET a resource and return its decoded JSON body.

        Raises:
            TransportError: On connection failure or timeout.
            DecodeError: If the body is not valid JSON.
            ApiError: If the body carries an error object or the status is
                not a success.
        """
        url = self.url_for(url_or_path)
        client = await self._get_client()
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {bearer_token}",
        }

        logger.debug("GET %s", url)
        try:
            resp = await client.get(url, headers=headers)
        except httpx.TransportError as e:
            raise TransportError(f"GET {url} failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            if resp.is_success:
                raise DecodeError(f"GET {url} returned a body that is not JSON") from e
            raise ApiError(
                str(resp.status_code), resp.text[:500].strip() or resp.reason_phrase,
                status_code=resp.status_code,
            ) from e

        if isinstance(data, dict) and data.get("error"):
            code, message = _error_message(data["error"])
            raise ApiError(code, message, status_code=resp.status_code)

        if not resp.is_success:
            raise ApiError(
                str(resp.status_code), resp.text[:500].strip() or resp.reason_phrase,
                status_code=resp.status_code,
            )

        return data

    async def fetch_page(self, url_or_path: str, bearer_token: str) -> Page:
        """GET one page of a list endpoint.

        Raises:
            TransportError, ApiError, DecodeError: As for :meth:`fetch_json`;
                an unexpected envelope is a :class:`DecodeError`.
        """
        data = await self.fetch_json(url_or_path, bearer_token)

        try:
            envelope = data["d"]
            results = envelope["results"]
        except (KeyError, TypeError) as e:
            raise DecodeError(f"Response from {url_or_path} has no d.results envelope") from e

        if not isinstance(results, list):
            raise DecodeError(f"d.results from {url_or_path} is not a list")
        if not all(isinstance(r, dict) for r in results):
            raise DecodeError(f"d.results from {url_or_path} holds a non-object entry")

        next_url = envelope.get("__next")
        if next_url is not None and not isinstance(next_url, str):
            raise DecodeError(f"d.__next from {url_or_path} is not a string")
        next_cursor = self.strip_base_url(next_url) if next_url else None

        logger.debug("Fetched %d records (next: %s)", len(results), bool(next_cursor))
        return Page(records=results, next_cursor=next_cursor)
