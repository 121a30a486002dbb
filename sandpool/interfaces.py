"""Collaborator protocols consumed by the orchestrator.

The orchestrator depends only on these shapes. ``sandpool.db`` and
``sandpool.services`` hold the implementations used by the server and the
test suite.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sandpool.models import (
    AccessGroup,
    BlueprintWithStackSets,
    IsbOu,
    IsbUser,
    Lease,
    LeaseKey,
    LeaseStatus,
    LeaseTemplate,
    OrgAccount,
    PaginatedQueryResult,
    PutResult,
    SandboxAccount,
)
from sandpool.transactions import TransactionStep

if TYPE_CHECKING:
    from sandpool.events import IsbEvent


@runtime_checkable
class LeaseStore(Protocol):
    """Persistence of leases keyed by (user_email, uuid)."""

    async def get(self, key: LeaseKey) -> Lease | None: ...

    async def create(self, lease: Lease) -> Lease: ...

    async def update(self, lease: Lease) -> PutResult[Lease]:
        """Replace an existing lease.

        Raises:
            UnknownItemError: No lease exists for the key.
            ConcurrentModificationError: ``lease.meta.version`` is stale.
        """
        ...

    async def put(self, lease: Lease) -> PutResult[Lease]: ...

    async def delete(self, key: LeaseKey) -> Lease | None: ...

    async def find_by_status(
        self,
        statuses: Iterable[LeaseStatus],
        page_size: int | None = None,
        page_identifier: str | None = None,
    ) -> PaginatedQueryResult[Lease]: ...

    async def find_by_user_email(
        self,
        user_email: str,
        page_size: int | None = None,
        page_identifier: str | None = None,
    ) -> PaginatedQueryResult[Lease]: ...

    async def find_by_status_and_account_id(
        self,
        status: LeaseStatus,
        account_id: str,
        page_size: int | None = None,
        page_identifier: str | None = None,
    ) -> PaginatedQueryResult[Lease]: ...

    def transactional_update(self, lease: Lease) -> TransactionStep: ...


@runtime_checkable
class SandboxAccountStore(Protocol):
    async def get(self, account_id: str) -> SandboxAccount | None: ...

    async def put(self, account: SandboxAccount) -> PutResult[SandboxAccount]: ...

    async def delete(self, account_id: str) -> SandboxAccount | None: ...

    async def find_by_status(
        self,
        status: IsbOu,
        page_size: int | None = None,
        page_identifier: str | None = None,
    ) -> PaginatedQueryResult[SandboxAccount]: ...

    async def find_all(
        self, page_size: int | None = None, page_identifier: str | None = None
    ) -> PaginatedQueryResult[SandboxAccount]: ...


@runtime_checkable
class LeaseTemplateStore(Protocol):
    async def get(self, uuid: str) -> LeaseTemplate | None: ...

    async def create(self, template: LeaseTemplate) -> LeaseTemplate: ...

    async def update(self, template: LeaseTemplate) -> PutResult[LeaseTemplate]: ...

    async def delete(self, uuid: str) -> LeaseTemplate | None: ...

    async def find_all(
        self, page_size: int | None = None, page_identifier: str | None = None
    ) -> PaginatedQueryResult[LeaseTemplate]: ...


@runtime_checkable
class OuService(Protocol):
    """Moves accounts between organizational units.

    Every move names the expected source unit; a mismatch raises
    ``OuPreconditionFailedError`` and is never retried.
    """

    async def move_account(
        self, account: SandboxAccount, source: IsbOu, target: IsbOu
    ) -> SandboxAccount: ...

    def transactional_move_account(
        self, account: SandboxAccount, source: IsbOu, target: IsbOu
    ) -> TransactionStep: ...

    async def perform_account_move_action(
        self, account_id: str, source: IsbOu, target: IsbOu
    ) -> None: ...

    async def describe_account(self, account_id: str) -> OrgAccount | None: ...


@runtime_checkable
class IdcService(Protocol):
    """Grants and revokes access to pooled accounts."""

    async def get_user_from_email(self, email: str) -> IsbUser | None: ...

    async def grant_user_access(self, account_id: str, user: IsbUser) -> None: ...

    def transactional_grant_user_access(self, account_id: str, user: IsbUser) -> TransactionStep: ...

    async def revoke_all_user_access(self, account_id: str) -> None: ...

    def transactional_assign_group_access(
        self, account_id: str, group: AccessGroup
    ) -> TransactionStep: ...

    async def revoke_group_access(self, account_id: str, group: AccessGroup) -> None: ...


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, *events: IsbEvent) -> None: ...


@runtime_checkable
class BlueprintStore(Protocol):
    async def get(self, blueprint_id: str) -> BlueprintWithStackSets | None: ...

    async def delete_stack_instances(self, blueprint_id: str, account_id: str) -> int: ...


@runtime_checkable
class BlueprintDeployer(Protocol):
    async def validate_blueprint_for_deployment(self, blueprint_id: str) -> BlueprintWithStackSets:
        """Raises BlueprintValidationError when the blueprint cannot be deployed."""
        ...

    async def delete_stack_instances_metadata(self, lease: Lease) -> None: ...
