"""
Retrieval data models — requests, progress events and results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RetrievalRequest(BaseModel):
    """What to retrieve: one division, optionally narrowed by an OData filter."""

    model_config = ConfigDict(frozen=True)

    division_id: str
    filter_expression: str | None = None

    @field_validator("division_id", mode="before")
    @classmethod
    def _division_not_empty(cls, value: Any) -> str:
        if value is None:
            raise ValueError("division_id is required")
        text = str(value).strip()
        if not text:
            raise ValueError("division_id must not be empty")
        return text

    @field_validator("filter_expression")
    @classmethod
    def _blank_filter_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class ProgressEvent(BaseModel):
    """A progress notification; ``total`` is None when unknown."""

    current: int = Field(ge=0)
    total: int | None = None
    message: str = ""


class RetrievalStatus(str, Enum):
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass
class RetrievalResult:
    """Records gathered by a retrieval, in server order.

    A ``CANCELLED`` result carries the records of every page processed
    before cancellation was observed.
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    status: RetrievalStatus = RetrievalStatus.COMPLETE
    pages: int = 0

    @property
    def cancelled(self) -> bool:
        return self.status == RetrievalStatus.CANCELLED

    def __len__(self) -> int:
        return len(self.records)
