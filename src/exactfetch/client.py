"""
exactfetch — main entry point.

The ExactFetch class wires configuration, the token manager, the page
fetcher and the retrieval engine together and exposes the calls a host
application needs: authenticate, list divisions, retrieve transactions and
cancel a running retrieval.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

from exactfetch.auth.oauth2 import Credential, OAuth2TokenManager, extract_authorization_code
from exactfetch.auth.store import TokenStore
from exactfetch.config import ExactFetchConfig
from exactfetch.errors import ExactFetchError
from exactfetch.models.retrieval import RetrievalRequest, RetrievalResult
from exactfetch.retrieval.cancellation import CancellationToken
from exactfetch.retrieval.engine import ProgressSink, RetrievalEngine
from exactfetch.retrieval.fetcher import PageFetcher

logger = logging.getLogger("exactfetch")

T = TypeVar("T")


@dataclass
class ExactFetch:
    """Top-level facade for authenticated Exact Online retrieval.

    Usage::

        from exactfetch import ExactFetch

        client = ExactFetch.from_config("exactfetch.yaml")
        print(client.get_auth_url())
        await client.authenticate_with_code(pasted_redirect_url)
        result = await client.get_transactions("123", "FinancialYear gt 2022")

    One instance owns one token manager. Retrievals on the same instance run
    one at a time; fetch several divisions by calling
    :meth:`get_transactions` sequentially.
    """

    config: ExactFetchConfig
    token_manager: OAuth2TokenManager | None = None
    fetcher: PageFetcher | None = None
    _engine: RetrievalEngine | None = field(default=None, init=False, repr=False)
    _cancel: CancellationToken | None = field(default=None, init=False, repr=False)
    _busy: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self._setup()

    @classmethod
    def from_config(cls, config_path: str | None = None, **overrides: Any) -> ExactFetch:
        """Create an instance from a config file or keyword arguments."""
        return cls(config=ExactFetchConfig.load(config_path, **overrides))

    def _setup(self) -> None:
        api = self.config.api
        if self.token_manager is None:
            store = TokenStore(
                self.config.auth.token_file,
                encrypt=self.config.security.encrypt_at_rest,
            )
            self.token_manager = OAuth2TokenManager(
                base_url=api.base_url,
                client_id=api.client_id,
                client_secret=api.client_secret,
                redirect_uri=api.redirect_uri,
                store=store,
                token_lifetime=self.config.auth.token_lifetime,
                timeout=api.timeout,
                verify_ssl=api.verify_ssl,
            )
        if self.fetcher is None:
            self.fetcher = PageFetcher(
                api.base_url, timeout=api.timeout, verify_ssl=api.verify_ssl,
            )
        self._engine = RetrievalEngine(
            self.token_manager,
            self.fetcher,
            estimate_total=self.config.retrieval.estimate_total,
        )

    @property
    def engine(self) -> RetrievalEngine:
        assert self._engine is not None
        return self._engine

    @property
    def tokens(self) -> OAuth2TokenManager:
        assert self.token_manager is not None
        return self.token_manager

    async def close(self) -> None:
        """Close HTTP clients."""
        if self.fetcher is not None:
            await self.fetcher.aclose()
        if self.token_manager is not None:
            await self.token_manager.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def get_auth_url(self) -> str:
        return self.tokens.get_authorization_url()

    def is_authenticated(self) -> bool:
        return self.tokens.is_authenticated

    async def authenticate_with_code(self, code_or_url: str) -> Credential:
        """Exchange a code (or the pasted redirect URL) for tokens.

        The user's current division is looked up afterwards and stored with
        the tokens; if that lookup fails the login still succeeds.
        """
        code = extract_authorization_code(code_or_url)
        credential = await self.tokens.exchange_authorization_code(code)

        try:
            division = await self.engine.fetch_current_division()
        except ExactFetchError as e:
            logger.warning("Authenticated, but could not fetch current division: %s", e)
        else:
            self.tokens.set_current_division(division)
            logger.info("Current division: %s", division)
        return credential

    def logout(self) -> None:
        self.tokens.logout()

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def _current_division(self) -> int | str:
        credential = self.tokens.credential
        if credential is not None and credential.current_division is not None:
            return credential.current_division
        if self.config.retrieval.default_division:
            return self.config.retrieval.default_division

        division = await self.engine.fetch_current_division()
        self.tokens.set_current_division(division)
        return division

    async def get_divisions(self) -> RetrievalResult:
        """List divisions, sorted by customer name and description."""
        async with self._busy:
            self._cancel = cancel = CancellationToken()
            try:
                division = await self._current_division()
                return await self.engine.list_divisions(division, cancel=cancel)
            finally:
                self._cancel = None

    async def get_transactions(
        self,
        division_id: int | str,
        filter: str | None = None,
        progress: ProgressSink | None = None,
    ) -> RetrievalResult:
        """Retrieve all transaction lines of a division.

        Args:
            division_id: Division code.
            filter: Optional OData ``$filter`` expression, passed through as is.
            progress: Called with a ProgressEvent after every page.
        """
        request = RetrievalRequest(division_id=division_id, filter_expression=filter)

        async with self._busy:
            self._cancel = cancel = CancellationToken()
            try:
                return await self.engine.retrieve(request, progress=progress, cancel=cancel)
            finally:
                self._cancel = None

    def cancel_operation(self) -> None:
        """Cancel the running retrieval, if any. Safe to call from any thread."""
        cancel = self._cancel
        if cancel is not None:
            cancel.cancel()
            logger.info("Cancellation requested")

    # ------------------------------------------------------------------
    # Synchronous wrappers
    # ------------------------------------------------------------------

    def _run_sync(self, coro: Coroutine[Any, Any, T]) -> T:
        async def _run() -> T:
            try:
                return await coro
            finally:
                await self.close()

        return asyncio.run(_run())

    def authenticate_with_code_sync(self, code_or_url: str) -> Credential:
        """Synchronous wrapper around :meth:`authenticate_with_code`."""
        return self._run_sync(self.authenticate_with_code(code_or_url))

    def get_divisions_sync(self) -> RetrievalResult:
        """Synchronous wrapper around :meth:`get_divisions`."""
        return self._run_sync(self.get_divisions())

    def get_transactions_sync(
        self,
        division_id: int | str,
        filter: str | None = None,
        progress: ProgressSink | None = None,
    ) -> RetrievalResult:
        """Synchronous wrapper around :meth:`get_transactions`."""
        return self._run_sync(self.get_transactions(division_id, filter, progress))
