"""Retrieval package — page fetching, normalization and the pagination loop."""
from exactfetch.retrieval.cancellation import CancellationToken
from exactfetch.retrieval.engine import RetrievalEngine
from exactfetch.retrieval.fetcher import Page, PageFetcher
from exactfetch.retrieval.normalizer import normalize

__all__ = [
    "CancellationToken",
    "Page",
    "PageFetcher",
    "RetrievalEngine",
    "normalize",
]
