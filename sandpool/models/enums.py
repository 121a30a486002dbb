"""Enumerations for leases, accounts and templates."""

from __future__ import annotations

from enum import Enum


class LeaseStatus(str, Enum):
    """Lifecycle status of a lease."""

    PENDING_APPROVAL = "PendingApproval"
    PROVISIONING = "Provisioning"
    ACTIVE = "Active"
    FROZEN = "Frozen"
    APPROVAL_DENIED = "ApprovalDenied"
    EXPIRED = "Expired"
    BUDGET_EXCEEDED = "BudgetExceeded"
    MANUALLY_TERMINATED = "ManuallyTerminated"
    EJECTED = "Ejected"
    ACCOUNT_QUARANTINED = "AccountQuarantined"


# Statuses in which a lease holds an account; iteration order matters for
# the associated-lease scan.
MONITORED_LEASE_STATUSES: tuple[LeaseStatus, ...] = (
    LeaseStatus.ACTIVE,
    LeaseStatus.FROZEN,
    LeaseStatus.PROVISIONING,
)

# Valid targets for terminate_lease.
EXPIRED_LEASE_STATUSES: frozenset[LeaseStatus] = frozenset(
    {
        LeaseStatus.EXPIRED,
        LeaseStatus.BUDGET_EXCEEDED,
        LeaseStatus.MANUALLY_TERMINATED,
        LeaseStatus.ACCOUNT_QUARANTINED,
        LeaseStatus.EJECTED,
    }
)

# Statuses counted against max_leases_per_user.
COUNTED_LEASE_STATUSES: frozenset[LeaseStatus] = frozenset(
    {
        LeaseStatus.ACTIVE,
        LeaseStatus.PENDING_APPROVAL,
        LeaseStatus.FROZEN,
        LeaseStatus.PROVISIONING,
    }
)


class IsbOu(str, Enum):
    """Organizational unit, doubling as the recorded account status."""

    ENTRY = "Entry"
    CLEAN_UP = "CleanUp"
    AVAILABLE = "Available"
    ACTIVE = "Active"
    FROZEN = "Frozen"
    QUARANTINE = "Quarantine"
    EXIT = "Exit"


class ThresholdAction(str, Enum):
    """Action requested when a budget or duration threshold is breached."""

    ALERT = "ALERT"
    FREEZE_ACCOUNT = "FREEZE_ACCOUNT"


class Visibility(str, Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


class AccessGroup(str, Enum):
    """Identity-center groups granted on every pooled account."""

    MANAGER = "Manager"
    ADMIN = "Admin"


class CleanupReason(str, Enum):
    ACCOUNT_REGISTRATION = "ACCOUNT_REGISTRATION"
    LEASE_TERMINATION = "LEASE_TERMINATION"
    RETRY_FAILED_CLEANUP = "RETRY_FAILED_CLEANUP"
    LEASE_RESET = "LEASE_RESET"


class FreezeReasonType(str, Enum):
    EXPIRED = "Expired"
    BUDGET_EXCEEDED = "BudgetExceeded"
    MANUALLY_FROZEN = "ManuallyFrozen"


class RegionConcurrencyType(str, Enum):
    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class ConcurrencyMode(str, Enum):
    STRICT_FAILURE_TOLERANCE = "STRICT_FAILURE_TOLERANCE"
    SOFT_FAILURE_TOLERANCE = "SOFT_FAILURE_TOLERANCE"
