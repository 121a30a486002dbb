"""Organizational-unit mover for pooled accounts.

Moving an account changes its organizational unit and its recorded status
together. The gateway verifies the account is in the expected source unit;
a mismatch surfaces as ``OuPreconditionFailedError`` and is never retried.
Throttling and concurrent-modification responses are retried with backoff.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from sandpool.config import Settings
from sandpool.errors import OuPreconditionFailedError
from sandpool.interfaces import SandboxAccountStore
from sandpool.logging import get_logger
from sandpool.models import IsbOu, OrgAccount, SandboxAccount
from sandpool.services.resilience import RetryPolicy, retry_async
from sandpool.transactions import TransactionStep

logger = get_logger(__name__)

TRANSIENT_ERROR_CODES = frozenset({"ConcurrentModificationException", "TooManyRequestsException"})
PRECONDITION_ERROR_CODES = frozenset({"SourceParentNotFoundException", "AccountNotFoundException"})


class OrganizationsError(Exception):
    """Error returned by an organizations gateway, identified by ``code``."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code


class OrganizationsGateway(Protocol):
    async def move_account(self, account_id: str, source_parent_id: str, destination_parent_id: str) -> None: ...

    async def describe_account(self, account_id: str) -> OrgAccount | None: ...

    async def list_accounts_for_parent(self, parent_id: str) -> list[OrgAccount]: ...


class InMemoryOrganizations:
    """Organizations gateway held in memory, for development and tests."""

    def __init__(self) -> None:
        self._accounts: dict[str, OrgAccount] = {}
        self._parents: dict[str, str] = {}
        self._pending_failures: list[OrganizationsError] = []
        self.move_calls: list[tuple[str, str, str]] = []

    def add_account(self, account: OrgAccount, parent_id: str) -> None:
        self._accounts[account.account_id] = account
        self._parents[account.account_id] = parent_id

    def parent_of(self, account_id: str) -> str | None:
        return self._parents.get(account_id)

    def fail_next(self, code: str, times: int = 1) -> None:
        """Make the next ``times`` moves fail with ``code``."""
        self._pending_failures.extend(OrganizationsError(code) for _ in range(times))

    async def move_account(self, account_id: str, source_parent_id: str, destination_parent_id: str) -> None:
        self.move_calls.append((account_id, source_parent_id, destination_parent_id))
        if self._pending_failures:
            raise self._pending_failures.pop(0)
        if account_id not in self._accounts:
            raise OrganizationsError("AccountNotFoundException", f"Account {account_id} not found")
        if self._parents[account_id] != source_parent_id:
            raise OrganizationsError(
                "SourceParentNotFoundException",
                f"Account {account_id} is not in {source_parent_id}",
            )
        self._parents[account_id] = destination_parent_id

    async def describe_account(self, account_id: str) -> OrgAccount | None:
        return self._accounts.get(account_id)

    async def list_accounts_for_parent(self, parent_id: str) -> list[OrgAccount]:
        return [
            self._accounts[account_id]
            for account_id, parent in self._parents.items()
            if parent == parent_id
        ]


def ou_ids_from_settings(settings: Settings) -> dict[IsbOu, str]:
    return {
        IsbOu.ENTRY: settings.entry_ou_id,
        IsbOu.CLEAN_UP: settings.cleanup_ou_id,
        IsbOu.AVAILABLE: settings.available_ou_id,
        IsbOu.ACTIVE: settings.active_ou_id,
        IsbOu.FROZEN: settings.frozen_ou_id,
        IsbOu.QUARANTINE: settings.quarantine_ou_id,
        IsbOu.EXIT: settings.exit_ou_id,
    }


def _is_transient(error: Exception) -> bool:
    return isinstance(error, OrganizationsError) and error.code in TRANSIENT_ERROR_CODES


class SandboxOuService:
    """Moves accounts between units and keeps the account store in step."""

    def __init__(
        self,
        organizations: OrganizationsGateway,
        account_store: SandboxAccountStore,
        ou_ids: Mapping[IsbOu, str],
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.organizations = organizations
        self.account_store = account_store
        self.ou_ids = dict(ou_ids)
        self.retry_policy = retry_policy

    async def perform_account_move_action(self, account_id: str, source: IsbOu, target: IsbOu) -> None:
        """Move the account in the organization without touching its record.

        Raises:
            OuPreconditionFailedError: The account was not in ``source``.
        """
        source_id = self.ou_ids[source]
        target_id = self.ou_ids[target]
        try:
            await retry_async(
                lambda: self.organizations.move_account(account_id, source_id, target_id),
                policy=self.retry_policy,
                retryable=_is_transient,
                operation="move_account",
            )
        except OrganizationsError as e:
            if e.code in PRECONDITION_ERROR_CODES:
                raise OuPreconditionFailedError(
                    f"Account {account_id} is not in {source.value}: {e}"
                ) from e
            raise
        logger.info(
            "account_moved",
            account_id=account_id,
            source_ou=source.value,
            destination_ou=target.value,
        )

    async def move_account(self, account: SandboxAccount, source: IsbOu, target: IsbOu) -> SandboxAccount:
        """Move the account and persist its new status.

        Returns:
            The stored account record.
        """
        await self.perform_account_move_action(account.aws_account_id, source, target)
        result = await self.account_store.put(account.model_copy(update={"status": target}))
        return result.new_item

    def transactional_move_account(
        self, account: SandboxAccount, source: IsbOu, target: IsbOu
    ) -> TransactionStep:
        async def commit() -> SandboxAccount:
            return await self.move_account(account, source, target)

        async def rollback() -> None:
            await self.move_account(account, target, source)

        return TransactionStep(
            commit=commit,
            rollback=rollback,
            name=f"move_account_{source.value}_to_{target.value}",
        )

    async def describe_account(self, account_id: str) -> OrgAccount | None:
        return await self.organizations.describe_account(account_id)

    async def list_accounts_in_ou(self, ou: IsbOu) -> list[OrgAccount]:
        return await self.organizations.list_accounts_for_parent(self.ou_ids[ou])
