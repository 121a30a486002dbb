"""Account pool selection with a soft cleanup cooldown."""

from __future__ import annotations

import random
from collections.abc import Sequence
from datetime import datetime, timedelta

import structlog

from sandpool.errors import NoAccountsAvailableError
from sandpool.logging import get_logger, searchable_account_properties
from sandpool.metrics import record_account_acquired
from sandpool.models import SandboxAccount
from sandpool.timeutils import as_utc, hours_between

DEFAULT_COOLDOWN = timedelta(hours=24)


class AccountPoolSelector:
    """Picks one Available account, preferring accounts outside the cooldown.

    Accounts cleaned up within the cooldown may still carry cost data from
    the previous lease; they are only handed out when nothing else is left.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._cooldown = cooldown
        self._logger = logger or get_logger(__name__)

    def partition(
        self, candidates: Sequence[SandboxAccount], now: datetime
    ) -> tuple[list[SandboxAccount], list[SandboxAccount]]:
        """Split candidates into (preferred, fallback)."""
        threshold = now - self._cooldown
        preferred: list[SandboxAccount] = []
        fallback: list[SandboxAccount] = []
        for account in candidates:
            context = account.cleanup_execution_context
            if context is None or as_utc(context.execution_start_time) <= threshold:
                preferred.append(account)
            else:
                fallback.append(account)
        return preferred, fallback

    def select(self, candidates: Sequence[SandboxAccount], now: datetime) -> SandboxAccount:
        """Select an account from the pool.

        Raises:
            NoAccountsAvailableError: If there are no candidates at all.
        """
        if not candidates:
            raise NoAccountsAvailableError("No new sandbox accounts are currently available.")

        preferred, fallback = self.partition(candidates, now)
        if preferred:
            record_account_acquired("preferred")
            return self._rng.choice(preferred)

        selected = self._rng.choice(fallback)
        record_account_acquired("fallback")
        last_cleanup = as_utc(selected.cleanup_execution_context.execution_start_time)
        self._logger.warning(
            "account_recently_cleaned",
            message=(
                "The account acquired for the lease has been used within the cooldown "
                "and may result in inaccurate cost data"
            ),
            last_cleanup_time=last_cleanup.isoformat(),
            hours_since_last_use=round(hours_between(last_cleanup, now), 2),
            total_available_accounts=len(candidates),
            preferred_accounts_available=len(preferred),
            **searchable_account_properties(selected),
        )
        return selected
