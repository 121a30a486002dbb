"""Error taxonomy for lease and account orchestration.

Every error carries a ``kind`` discriminant so callers (the HTTP layer,
the CLI) can render a precise message without isinstance ladders.
"""

from __future__ import annotations

from typing import ClassVar


class SandboxError(Exception):
    """Base error for Sandpool orchestration."""

    kind: ClassVar[str] = "SandboxError"


class NoAccountsAvailableError(SandboxError):
    """The account pool has no account in the Available state."""

    kind = "NoAccountsAvailable"


class MaxNumberOfLeasesExceededError(SandboxError):
    """The user already holds the maximum number of active/pending leases."""

    kind = "MaxNumberOfLeasesExceeded"


class AccountNotInQuarantineError(SandboxError):
    """Operation requires the account to be in Quarantine."""

    kind = "AccountNotInQuarantine"


class AccountInCleanUpError(SandboxError):
    """Operation is not permitted while the account is in CleanUp."""

    kind = "AccountInCleanUp"


class AccountNotInActiveError(SandboxError):
    """Operation requires an Active lease."""

    kind = "AccountNotInActive"


class AccountNotInFrozenError(SandboxError):
    """Operation requires a Frozen lease."""

    kind = "AccountNotInFrozen"


class CouldNotFindAccountError(SandboxError):
    """No account record (or inventory entry) exists for the id."""

    kind = "CouldNotFindAccount"


class CouldNotRetrieveUserError(SandboxError):
    """The identity service has no user for the lease's email."""

    kind = "CouldNotRetrieveUser"


class IllegalAccountTransitionError(SandboxError):
    """The requested organizational placement change is not a legal transition."""

    kind = "IllegalAccountTransition"


class LeaseNotMonitoredError(SandboxError):
    """Operation requires a lease in Active, Frozen or Provisioning."""

    kind = "LeaseNotMonitored"


class LeaseNotPendingError(SandboxError):
    """Operation requires a lease in PendingApproval."""

    kind = "LeaseNotPending"


class LeaseNotProvisioningError(SandboxError):
    """Operation requires a lease whose account is still being provisioned."""

    kind = "LeaseNotProvisioning"


class InvalidLeaseStatusError(SandboxError):
    """A status argument is not valid for the requested operation."""

    kind = "InvalidLeaseStatus"


class UnknownItemError(SandboxError):
    """Update targeted a record key that does not exist."""

    kind = "UnknownItem"


class ConcurrentModificationError(SandboxError):
    """The record changed since the caller read it (optimistic version check)."""

    kind = "ConcurrentModification"


class OuPreconditionFailedError(SandboxError):
    """The account was not in the expected organizational unit."""

    kind = "OuPreconditionFailed"


class BlueprintValidationError(SandboxError):
    """A blueprint cannot be deployed."""

    kind = "BlueprintValidation"


class ItemNotFoundError(SandboxError):
    """A looked-up record does not exist."""

    kind = "ItemNotFound"
