"""Legal transitions for accounts (organizational placement) and leases.

Both machines are stateless: they only answer whether a transition is
allowed and raise the precise error kind when it is not. Compensating
moves issued during a saga rollback are not checked.
"""

from __future__ import annotations

from sandpool.errors import (
    AccountInCleanUpError,
    AccountNotInActiveError,
    AccountNotInFrozenError,
    IllegalAccountTransitionError,
    InvalidLeaseStatusError,
    LeaseNotMonitoredError,
    LeaseNotPendingError,
    LeaseNotProvisioningError,
)
from sandpool.models import EXPIRED_LEASE_STATUSES, IsbOu, Lease, LeaseStatus

_ALL_OUS = frozenset(IsbOu)

# target -> sources allowed to move there
_ACCOUNT_TRANSITIONS: dict[IsbOu, frozenset[IsbOu]] = {
    IsbOu.CLEAN_UP: frozenset(
        {IsbOu.ENTRY, IsbOu.ACTIVE, IsbOu.FROZEN, IsbOu.CLEAN_UP, IsbOu.QUARANTINE}
    ),
    IsbOu.AVAILABLE: frozenset({IsbOu.CLEAN_UP}),
    IsbOu.ACTIVE: frozenset({IsbOu.AVAILABLE, IsbOu.FROZEN}),
    IsbOu.FROZEN: frozenset({IsbOu.ACTIVE}),
    IsbOu.QUARANTINE: _ALL_OUS - {IsbOu.CLEAN_UP},
    IsbOu.EXIT: _ALL_OUS - {IsbOu.CLEAN_UP},
}


class AccountStateMachine:
    """Which organizational-unit moves an account may make."""

    @staticmethod
    def is_legal(source: IsbOu, target: IsbOu) -> bool:
        return source in _ACCOUNT_TRANSITIONS.get(target, frozenset())

    @classmethod
    def require(cls, source: IsbOu, target: IsbOu) -> None:
        """Raise unless ``source -> target`` is a legal move."""
        if source == IsbOu.CLEAN_UP and target in (IsbOu.EXIT, IsbOu.QUARANTINE):
            raise AccountInCleanUpError(
                f"Accounts cannot be moved to {target.value} while in the CleanUp state."
            )
        if not cls.is_legal(source, target):
            raise IllegalAccountTransitionError(
                f"Account cannot move from {source.value} to {target.value}."
            )


class LeaseStateMachine:
    """Preconditions of the lease operations."""

    @staticmethod
    def require_active(lease: Lease) -> None:
        if lease.status != LeaseStatus.ACTIVE:
            raise AccountNotInActiveError("Only active leases can be frozen.")

    @staticmethod
    def require_frozen(lease: Lease) -> None:
        if lease.status != LeaseStatus.FROZEN:
            raise AccountNotInFrozenError("Only frozen leases can be unfrozen")

    @staticmethod
    def require_pending(lease: Lease) -> None:
        if not lease.is_pending:
            raise LeaseNotPendingError(
                f"Only leases pending approval can be approved or denied (status: {lease.status.value})."
            )

    @staticmethod
    def require_monitored(lease: Lease) -> None:
        if not lease.is_monitored or lease.aws_account_id is None:
            raise LeaseNotMonitoredError(
                f"Lease {lease.uuid} does not hold an account (status: {lease.status.value})."
            )

    @classmethod
    def require_provisioning(cls, lease: Lease) -> None:
        """Only a lease still waiting on its blueprint can be reset."""
        cls.require_monitored(lease)
        if lease.status != LeaseStatus.PROVISIONING:
            raise LeaseNotProvisioningError(
                f"Only provisioning leases can be reset (status: {lease.status.value})."
            )

    @classmethod
    def require_publishable(cls, lease: Lease) -> None:
        # Frozen leases are reactivated only by unfreeze_lease.
        cls.require_monitored(lease)
        if lease.status not in (LeaseStatus.PROVISIONING, LeaseStatus.ACTIVE):
            raise LeaseNotProvisioningError(
                f"Only provisioning or active leases can be published (status: {lease.status.value})."
            )

    @staticmethod
    def require_expired_status(status: LeaseStatus) -> None:
        if status not in EXPIRED_LEASE_STATUSES:
            raise InvalidLeaseStatusError(f"{status.value} is not a termination status.")
