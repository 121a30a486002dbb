"""Shared value types for records and store results."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from sandpool.models.enums import ThresholdAction

T = TypeVar("T")


class ItemMetadata(BaseModel):
    """Store-maintained metadata; ``version`` is the optimistic-concurrency token."""

    version: int = 1
    created_time: datetime | None = None
    last_edit_time: datetime | None = None


class BudgetThreshold(BaseModel):
    dollars_spent: float = Field(..., gt=0)
    action: ThresholdAction


class DurationThreshold(BaseModel):
    hours_remaining: float = Field(..., gt=0)
    action: ThresholdAction


class IsbUser(BaseModel):
    """A user known to the identity service."""

    email: str
    user_id: str | None = None
    user_name: str | None = None
    display_name: str | None = None


class PutResult(BaseModel, Generic[T]):
    """Outcome of a store write: the stored item and whatever it replaced."""

    new_item: T
    old_item: T | None = None


class PaginatedQueryResult(BaseModel, Generic[T]):
    """One page of a store query."""

    result: list[T] = Field(default_factory=list)
    next_page_identifier: str | None = None
