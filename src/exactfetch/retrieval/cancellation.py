"""Cancellation token shared between a caller and a running retrieval."""

from __future__ import annotations

import threading


class CancellationToken:
    """A one-way flag that any thread may set.

    The retrieval engine polls it before each page request and again before
    acting on each response.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
