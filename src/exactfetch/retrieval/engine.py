"""
Retrieval engine — drives the page fetcher across a whole result set.

Pages are fetched strictly one after another because each request path is
the cursor returned by the previous response. Before every request the
engine asks the token manager for a valid token, so a retrieval that
outlives the access token refreshes it silently.

Two checkpoints observe the cancellation token on every cycle: before the
request is issued, and before the response is acted on. A response that
arrives after cancellation is discarded, so a cancelled result contains
exactly the pages that had been processed when the flag was seen.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

from exactfetch.auth.oauth2 import OAuth2TokenManager
from exactfetch.errors import DecodeError, ExactFetchError
from exactfetch.models.retrieval import (
    ProgressEvent,
    RetrievalRequest,
    RetrievalResult,
    RetrievalStatus,
)
from exactfetch.retrieval.cancellation import CancellationToken
from exactfetch.retrieval.fetcher import PageFetcher
from exactfetch.retrieval.normalizer import normalize_many

logger = logging.getLogger("exactfetch.retrieval.engine")

ProgressSink = Callable[[ProgressEvent], None]

# Bulk/Financial/TransactionLines
TRANSACTION_FIELDS: tuple[str, ...] = (
    "AccountCode", "AccountName", "AmountDC", "AmountFC", "AmountVATBaseFC",
    "AmountVATFC", "AssetCode", "AssetDescription", "CostCenter",
    "CostCenterDescription", "CostUnit", "CostUnitDescription", "CreatorFullName",
    "Currency", "CustomField", "Description", "Division", "Document",
    "DocumentNumber", "DocumentSubject", "DueDate", "EntryNumber", "ExchangeRate",
    "ExternalLinkDescription", "ExternalLinkReference", "ExtraDutyAmountFC",
    "ExtraDutyPercentage", "FinancialPeriod", "FinancialYear", "GLAccountCode",
    "GLAccountDescription", "InvoiceNumber", "Item", "ItemCode", "ItemDescription",
    "JournalCode", "JournalDescription", "LineType", "Modified", "ModifierFullName",
    "Notes", "OrderNumber", "PaymentDiscountAmount", "PaymentReference", "Project",
    "ProjectCode", "ProjectDescription", "Quantity", "SerialNumber", "ShopOrder",
    "Status", "Subscription", "SubscriptionDescription", "TrackingNumber",
    "TrackingNumberDescription", "Type", "VATCode", "VATCodeDescription",
    "VATPercentage", "VATType", "YourRef",
)

# System/Divisions
DIVISION_FIELDS: tuple[str, ...] = (
    "Code", "Customer", "CustomerCode", "CustomerName", "Description",
)

_CURRENT_DIVISION_PATH = "/v1/current/Me?$select=CurrentDivision"


def _emit(progress: ProgressSink | None, event: ProgressEvent) -> None:
    if progress is not None:
        progress(event)


def _filter_query(filter_expression: str | None) -> str:
    """URL-encode an OData filter; the expression itself is not inspected."""
    if not filter_expression:
        return ""
    return f"$filter={quote(filter_expression, safe='')}"


class RetrievalEngine:
    """Cursor-following, cancellable retrieval of Exact Online list endpoints.

    Usage::

        engine = RetrievalEngine(token_manager, PageFetcher(base_url))
        cancel = CancellationToken()
        result = await engine.retrieve(
            RetrievalRequest(division_id="123", filter_expression="FinancialYear gt 2022"),
            progress=lambda e: print(e.message),
            cancel=cancel,
        )
        if result.cancelled:
            ...
    """

    def __init__(
        self,
        token_manager: OAuth2TokenManager,
        fetcher: PageFetcher,
        *,
        estimate_total: bool = False,
    ) -> None:
        self.token_manager = token_manager
        self.fetcher = fetcher
        self.estimate_total = estimate_total

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def transactions_path(request: RetrievalRequest) -> str:
        path = (
            f"/v1/{request.division_id}/bulk/Financial/TransactionLines"
            f"?$select={','.join(TRANSACTION_FIELDS)}"
        )
        query = _filter_query(request.filter_expression)
        return f"{path}&{query}" if query else path

    @staticmethod
    def count_path(request: RetrievalRequest) -> str:
        path = f"/v1/{request.division_id}/bulk/Financial/TransactionLines/$count"
        query = _filter_query(request.filter_expression)
        return f"{path}?{query}" if query else path

    @staticmethod
    def divisions_path(current_division: int | str) -> str:
        return f"/v1/{current_division}/system/Divisions?$select={','.join(DIVISION_FIELDS)}"

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def paginate(
        self,
        path: str,
        progress: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
        *,
        total: int | None = None,
    ) -> RetrievalResult:
        """Follow next-page cursors from ``path`` until none remains.

        Any fetch error propagates immediately; records gathered so far are
        discarded with it.
        """
        cancel = cancel or CancellationToken()
        result = RetrievalResult()
        next_path: str | None = path

        while next_path is not None:
            if cancel.cancelled:
                return self._cancelled(result)

            credential = await self.token_manager.ensure_valid_token()
            page = await self.fetcher.fetch_page(next_path, credential.access_token)

            if cancel.cancelled:
                return self._cancelled(result)

            result.records.extend(normalize_many(page.records))
            result.pages += 1

            count = len(result.records)
            if total is None:
                message = f"Fetched {count} so far"
            else:
                message = f"Fetched {count} of {total} so far"
            _emit(progress, ProgressEvent(current=count, total=total, message=message))

            next_path = page.next_cursor

        return result

    @staticmethod
    def _cancelled(result: RetrievalResult) -> RetrievalResult:
        logger.info(
            "Retrieval cancelled after %d pages (%d records kept)",
            result.pages, len(result.records),
        )
        result.status = RetrievalStatus.CANCELLED
        return result

    async def retrieve(
        self,
        request: RetrievalRequest,
        progress: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> RetrievalResult:
        """Retrieve every transaction line of a division.

        Returns a ``COMPLETE`` result, or a ``CANCELLED`` one carrying the
        records processed before cancellation was observed.
        """
        cancel = cancel or CancellationToken()
        logger.info(
            "Retrieving transactions for division %s (filter: %s)",
            request.division_id, request.filter_expression or "none",
        )

        total: int | None = None
        if self.estimate_total:
            if cancel.cancelled:
                return self._cancelled(RetrievalResult())
            total = await self._count(request)
            if cancel.cancelled:
                return self._cancelled(RetrievalResult())
            if total is not None:
                _emit(progress, ProgressEvent(
                    current=0,
                    total=total,
                    message=f"Found {total} transactions, starting fetch",
                ))

        result = await self.paginate(
            self.transactions_path(request), progress, cancel, total=total,
        )
        if not result.cancelled:
            logger.info(
                "Retrieved %d transactions in %d pages for division %s",
                len(result.records), result.pages, request.division_id,
            )
        return result

    async def _count(self, request: RetrievalRequest) -> int | None:
        """Best-effort record count; failures are logged and ignored."""
        credential = await self.token_manager.ensure_valid_token()
        try:
            data = await self.fetcher.fetch_json(self.count_path(request), credential.access_token)
        except ExactFetchError as e:
            logger.warning("Could not estimate transaction count: %s", e)
            return None

        if isinstance(data, bool) or not isinstance(data, (int, str)):
            logger.warning("Unexpected $count response: %r", data)
            return None
        try:
            return int(data)
        except ValueError:
            logger.warning("Unexpected $count response: %r", data)
            return None

    # ------------------------------------------------------------------
    # Divisions
    # ------------------------------------------------------------------

    async def list_divisions(
        self,
        current_division: int | str,
        cancel: CancellationToken | None = None,
    ) -> RetrievalResult:
        """List the divisions reachable from ``current_division``.

        Sorted by customer name, then description.
        """
        result = await self.paginate(self.divisions_path(current_division), cancel=cancel)
        result.records.sort(
            key=lambda d: f"{d.get('CustomerName') or ''}{d.get('Description') or ''}"
        )
        logger.info("Found %d divisions", len(result.records))
        return result

    async def fetch_current_division(self) -> int:
        """Return the division the authenticated user is currently working in.

        Raises:
            DecodeError: If the response does not contain ``CurrentDivision``.
        """
        credential = await self.token_manager.ensure_valid_token()
        data = await self.fetcher.fetch_json(_CURRENT_DIVISION_PATH, credential.access_token)

        division = _find_current_division(data)
        if division is None:
            raise DecodeError("Could not find CurrentDivision in current/Me response")
        return division


def _find_current_division(data: Any) -> int | None:
    """Accept ``d.results[0]``, ``d`` and bare forms of the current/Me body."""
    candidates: list[Any] = [data]
    if isinstance(data, dict):
        d = data.get("d")
        candidates.insert(0, d)
        if isinstance(d, dict) and isinstance(d.get("results"), list) and d["results"]:
            candidates.insert(0, d["results"][0])

    for candidate in candidates:
        if isinstance(candidate, dict) and candidate.get("CurrentDivision") is not None:
            try:
                return int(candidate["CurrentDivision"])
            except (TypeError, ValueError):
                return None
    return None
