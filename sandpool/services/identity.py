"""Identity-center access to pooled accounts, held in memory."""

from __future__ import annotations

from collections import defaultdict

from sandpool.logging import get_logger
from sandpool.models import AccessGroup, IsbUser
from sandpool.transactions import TransactionStep

logger = get_logger(__name__)


class InMemoryIdcService:
    """Users by email, plus per-account user and group assignments."""

    def __init__(self, users: list[IsbUser] | None = None) -> None:
        self._users: dict[str, IsbUser] = {}
        self._user_grants: dict[str, set[str]] = defaultdict(set)
        self._group_grants: dict[str, set[AccessGroup]] = defaultdict(set)
        for user in users or []:
            self.add_user(user)

    def add_user(self, user: IsbUser) -> None:
        self._users[user.email.lower()] = user

    def users_with_access(self, account_id: str) -> set[str]:
        return set(self._user_grants.get(account_id, set()))

    def groups_with_access(self, account_id: str) -> set[AccessGroup]:
        return set(self._group_grants.get(account_id, set()))

    async def get_user_from_email(self, email: str) -> IsbUser | None:
        return self._users.get(email.lower())

    async def grant_user_access(self, account_id: str, user: IsbUser) -> None:
        self._user_grants[account_id].add(user.email)
        logger.debug("user_access_granted", account_id=account_id, user_email=user.email)

    async def revoke_user_access(self, account_id: str, user: IsbUser) -> None:
        self._user_grants[account_id].discard(user.email)
        logger.debug("user_access_revoked", account_id=account_id, user_email=user.email)

    def transactional_grant_user_access(self, account_id: str, user: IsbUser) -> TransactionStep:
        return TransactionStep(
            commit=lambda: self.grant_user_access(account_id, user),
            rollback=lambda: self.revoke_user_access(account_id, user),
            name="grant_user_access",
        )

    async def revoke_all_user_access(self, account_id: str) -> None:
        """Remove every user assignment; group assignments are kept."""
        revoked = self._user_grants.pop(account_id, set())
        logger.debug("all_user_access_revoked", account_id=account_id, revoked=sorted(revoked))

    async def assign_group_access(self, account_id: str, group: AccessGroup) -> None:
        self._group_grants[account_id].add(group)
        logger.debug("group_access_assigned", account_id=account_id, group=group.value)

    async def revoke_group_access(self, account_id: str, group: AccessGroup) -> None:
        self._group_grants[account_id].discard(group)
        logger.debug("group_access_revoked", account_id=account_id, group=group.value)

    def transactional_assign_group_access(self, account_id: str, group: AccessGroup) -> TransactionStep:
        return TransactionStep(
            commit=lambda: self.assign_group_access(account_id, group),
            rollback=lambda: self.revoke_group_access(account_id, group),
            name=f"assign_{group.value.lower()}_group_access",
        )
