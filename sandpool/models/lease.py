"""Lease records: one user's temporary claim on a pooled account."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from sandpool.models.common import BudgetThreshold, DurationThreshold, ItemMetadata
from sandpool.models.enums import (
    EXPIRED_LEASE_STATUSES,
    MONITORED_LEASE_STATUSES,
    LeaseStatus,
)


class LeaseKey(BaseModel):
    """Composite identity of a lease; immutable after creation."""

    user_email: str
    uuid: str


class Lease(BaseModel):
    """A lease in any lifecycle status.

    ``aws_account_id`` is set while the lease is monitored (and kept on the
    terminal record afterwards); it is ``None`` while pending approval.
    """

    user_email: str
    uuid: str
    status: LeaseStatus = LeaseStatus.PENDING_APPROVAL

    original_lease_template_uuid: str
    original_lease_template_name: str

    max_spend: float | None = None
    budget_thresholds: list[BudgetThreshold] = Field(default_factory=list)
    lease_duration_in_hours: float | None = None
    duration_thresholds: list[DurationThreshold] = Field(default_factory=list)
    total_cost_accrued: float = 0.0

    comments: str | None = None
    created_by: str | None = None
    approved_by: str | None = None

    aws_account_id: str | None = None
    blueprint_id: str | None = None
    blueprint_name: str | None = None

    start_date: datetime | None = None
    expiration_date: datetime | None = None
    end_date: datetime | None = None
    last_checked_date: datetime | None = None
    ttl: int | None = None

    meta: ItemMetadata | None = None

    @property
    def key(self) -> LeaseKey:
        return LeaseKey(user_email=self.user_email, uuid=self.uuid)

    @property
    def is_monitored(self) -> bool:
        return self.status in MONITORED_LEASE_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status == LeaseStatus.PENDING_APPROVAL

    @property
    def is_terminal(self) -> bool:
        return self.status in EXPIRED_LEASE_STATUSES or self.status == LeaseStatus.APPROVAL_DENIED
