"""Domain models for leases, accounts, templates and blueprints."""

from sandpool.models.account import CleanupExecutionContext, OrgAccount, SandboxAccount
from sandpool.models.blueprint import Blueprint, BlueprintWithStackSets, StackSet
from sandpool.models.common import (
    BudgetThreshold,
    DurationThreshold,
    IsbUser,
    ItemMetadata,
    PaginatedQueryResult,
    PutResult,
)
from sandpool.models.enums import (
    COUNTED_LEASE_STATUSES,
    EXPIRED_LEASE_STATUSES,
    MONITORED_LEASE_STATUSES,
    AccessGroup,
    CleanupReason,
    ConcurrencyMode,
    FreezeReasonType,
    IsbOu,
    LeaseStatus,
    RegionConcurrencyType,
    ThresholdAction,
    Visibility,
)
from sandpool.models.lease import Lease, LeaseKey
from sandpool.models.lease_template import LeaseTemplate

__all__ = [
    "COUNTED_LEASE_STATUSES",
    "EXPIRED_LEASE_STATUSES",
    "MONITORED_LEASE_STATUSES",
    "AccessGroup",
    "Blueprint",
    "BlueprintWithStackSets",
    "BudgetThreshold",
    "CleanupExecutionContext",
    "CleanupReason",
    "ConcurrencyMode",
    "DurationThreshold",
    "FreezeReasonType",
    "IsbOu",
    "IsbUser",
    "ItemMetadata",
    "Lease",
    "LeaseKey",
    "LeaseStatus",
    "LeaseTemplate",
    "OrgAccount",
    "PaginatedQueryResult",
    "PutResult",
    "RegionConcurrencyType",
    "SandboxAccount",
    "StackSet",
    "ThresholdAction",
    "Visibility",
]
