"""Data models shared across exactfetch."""

from exactfetch.models.retrieval import (
    ProgressEvent,
    RetrievalRequest,
    RetrievalResult,
    RetrievalStatus,
)

__all__ = [
    "ProgressEvent",
    "RetrievalRequest",
    "RetrievalResult",
    "RetrievalStatus",
]
