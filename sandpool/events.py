"""Domain events published by the orchestrator and the lease monitor.

Events are advisory: they are published after a saga completes and are not
part of its atomicity. Each event class names its ``detail_type``; the
payload is the model's JSON dump.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from sandpool.models import (
    CleanupReason,
    ConcurrencyMode,
    FreezeReasonType,
    LeaseKey,
    LeaseStatus,
    RegionConcurrencyType,
    ThresholdAction,
)


class IsbEvent(BaseModel):
    """Base class for published events."""

    detail_type: ClassVar[str] = "IsbEvent"

    def to_detail(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class LeaseFrozenReason(BaseModel):
    """Why a lease was frozen; numeric fields depend on ``type``."""

    type: FreezeReasonType
    comment: str | None = None
    triggered_budget_threshold: float | None = None
    budget: float | None = None
    total_spend: float | None = None
    triggered_duration_threshold: float | None = None
    lease_duration_in_hours: float | None = None


class LeaseTerminatedReason(BaseModel):
    type: LeaseStatus
    comment: str | None = None


class LeaseRequested(IsbEvent):
    detail_type: ClassVar[str] = "LeaseRequested"

    lease_id: LeaseKey
    user_email: str
    requires_manual_approval: bool
    comments: str | None = None
    created_by: str | None = None


class LeaseApproved(IsbEvent):
    detail_type: ClassVar[str] = "LeaseApproved"

    lease_id: str
    user_email: str
    approved_by: str


class LeaseDenied(IsbEvent):
    detail_type: ClassVar[str] = "LeaseDenied"

    lease_id: str
    user_email: str
    denied_by: str


class LeaseFrozen(IsbEvent):
    detail_type: ClassVar[str] = "LeaseFrozen"

    lease_id: LeaseKey
    account_id: str
    reason: LeaseFrozenReason


class LeaseUnfrozen(IsbEvent):
    detail_type: ClassVar[str] = "LeaseUnfrozen"

    lease_id: LeaseKey
    account_id: str
    max_budget: float | None = None
    lease_duration_in_hours: float | None = None
    reason: str


class LeaseTerminated(IsbEvent):
    detail_type: ClassVar[str] = "LeaseTerminated"

    lease_id: LeaseKey
    account_id: str
    reason: LeaseTerminatedReason


class LeaseProvisioningFailed(IsbEvent):
    detail_type: ClassVar[str] = "LeaseProvisioningFailed"

    lease_id: LeaseKey
    account_id: str
    blueprint_name: str


class CleanAccountRequest(IsbEvent):
    detail_type: ClassVar[str] = "CleanAccountRequest"

    account_id: str
    reason: CleanupReason


class BlueprintDeploymentRequest(IsbEvent):
    detail_type: ClassVar[str] = "BlueprintDeploymentRequest"

    blueprint_id: str
    lease_id: str
    user_email: str
    account_id: str
    blueprint_name: str
    stack_set_id: str
    regions: list[str] = Field(default_factory=list)
    region_concurrency_type: RegionConcurrencyType
    deployment_timeout_minutes: int
    max_concurrent_percentage: int
    failure_tolerance_percentage: int
    concurrency_mode: ConcurrencyMode


class AccountQuarantined(IsbEvent):
    detail_type: ClassVar[str] = "AccountQuarantined"

    aws_account_id: str
    reason: str


# Monitoring alerts


class LeaseBudgetThresholdAlert(IsbEvent):
    detail_type: ClassVar[str] = "LeaseBudgetThresholdBreachedAlert"

    lease_id: LeaseKey
    account_id: str
    budget: float | None = None
    budget_threshold_triggered: float
    total_spend: float
    action: ThresholdAction


class LeaseDurationThresholdAlert(IsbEvent):
    detail_type: ClassVar[str] = "LeaseDurationThresholdBreachedAlert"

    lease_id: LeaseKey
    account_id: str
    triggered_duration_threshold: float
    lease_duration_in_hours: float
    action: ThresholdAction


class LeaseFreezingThresholdAlert(IsbEvent):
    detail_type: ClassVar[str] = "LeaseFreezingThresholdBreachedAlert"

    lease_id: LeaseKey
    account_id: str
    reason: LeaseFrozenReason


class LeaseBudgetExceeded(IsbEvent):
    detail_type: ClassVar[str] = "LeaseBudgetExceeded"

    lease_id: LeaseKey
    account_id: str
    budget: float | None = None
    total_spend: float


class LeaseExpired(IsbEvent):
    detail_type: ClassVar[str] = "LeaseExpired"

    lease_id: LeaseKey
    account_id: str
    lease_expiration_date: datetime
