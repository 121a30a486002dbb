"""Lease templates: the budget/duration policy a lease request starts from."""

from __future__ import annotations

from uuid import uuid4

from pydantic import BaseModel, Field

from sandpool.models.common import BudgetThreshold, DurationThreshold, ItemMetadata
from sandpool.models.enums import Visibility


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid4())


class LeaseTemplate(BaseModel):
    uuid: str = Field(default_factory=generate_uuid)
    name: str = Field(..., min_length=1, max_length=50)
    description: str | None = None
    requires_approval: bool = True
    created_by: str
    visibility: Visibility = Visibility.PUBLIC

    max_spend: float | None = Field(default=None, gt=0)
    budget_thresholds: list[BudgetThreshold] = Field(default_factory=list)
    lease_duration_in_hours: float | None = Field(default=None, gt=0)
    duration_thresholds: list[DurationThreshold] = Field(default_factory=list)

    blueprint_id: str | None = None
    blueprint_name: str | None = None
    cost_report_group: str | None = None

    meta: ItemMetadata | None = None
