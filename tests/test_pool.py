"""Tests for account pool selection."""

import random
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from sandpool.errors import NoAccountsAvailableError
from sandpool.models import CleanupExecutionContext, IsbOu, SandboxAccount
from sandpool.pool import AccountPoolSelector

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def account(account_id: str, cleaned_hours_ago: float | None = None) -> SandboxAccount:
    context = None
    if cleaned_hours_ago is not None:
        context = CleanupExecutionContext(
            execution_arn=f"arn:cleanup:{account_id}",
            execution_start_time=NOW - timedelta(hours=cleaned_hours_ago),
        )
    return SandboxAccount(aws_account_id=account_id, status=IsbOu.AVAILABLE, cleanup_execution_context=context)


class TestPartition:
    """Tests for the cooldown split."""

    def test_no_cleanup_context_is_preferred(self):
        preferred, fallback = AccountPoolSelector().partition([account("1")], NOW)
        assert [a.aws_account_id for a in preferred] == ["1"]
        assert fallback == []

    def test_recent_cleanup_falls_back(self):
        preferred, fallback = AccountPoolSelector().partition([account("1", cleaned_hours_ago=2)], NOW)
        assert preferred == []
        assert [a.aws_account_id for a in fallback] == ["1"]

    def test_boundary_is_inclusive(self):
        preferred, fallback = AccountPoolSelector().partition([account("1", cleaned_hours_ago=24)], NOW)
        assert [a.aws_account_id for a in preferred] == ["1"]
        assert fallback == []

    def test_just_inside_cooldown_falls_back(self):
        candidate = account("1", cleaned_hours_ago=24)
        preferred, fallback = AccountPoolSelector().partition([candidate], NOW - timedelta(seconds=1))
        assert preferred == []
        assert fallback == [candidate]

    def test_naive_cleanup_time_is_treated_as_utc(self):
        candidate = SandboxAccount(
            aws_account_id="1",
            status=IsbOu.AVAILABLE,
            cleanup_execution_context=CleanupExecutionContext(
                execution_arn="arn:cleanup:1",
                execution_start_time=(NOW - timedelta(hours=30)).replace(tzinfo=None),
            ),
        )
        preferred, _ = AccountPoolSelector().partition([candidate], NOW)
        assert preferred == [candidate]

    def test_custom_cooldown(self):
        selector = AccountPoolSelector(cooldown=timedelta(hours=1))
        preferred, _ = selector.partition([account("1", cleaned_hours_ago=2)], NOW)
        assert len(preferred) == 1


class TestSelect:
    """Tests for picking an account."""

    def test_empty_pool_raises(self):
        with pytest.raises(NoAccountsAvailableError, match="No new sandbox accounts"):
            AccountPoolSelector().select([], NOW)

    def test_prefers_cooled_down_accounts(self):
        candidates = [account("hot-1", 1), account("cold", 48), account("hot-2", 3)]
        for seed in range(20):
            selector = AccountPoolSelector(rng=random.Random(seed))
            assert selector.select(candidates, NOW).aws_account_id == "cold"

    def test_falls_back_to_recently_cleaned(self):
        logger = MagicMock()
        candidates = [account("hot-1", 1), account("hot-2", 3)]
        selected = AccountPoolSelector(rng=random.Random(1), logger=logger).select(candidates, NOW)

        assert selected.aws_account_id in {"hot-1", "hot-2"}
        logger.warning.assert_called_once()
        args, kwargs = logger.warning.call_args
        assert args[0] == "account_recently_cleaned"
        assert kwargs["total_available_accounts"] == 2
        assert kwargs["preferred_accounts_available"] == 0
        assert kwargs["account_id"] == selected.aws_account_id

    def test_preferred_selection_does_not_warn(self):
        logger = MagicMock()
        AccountPoolSelector(logger=logger).select([account("1")], NOW)
        logger.warning.assert_not_called()

    def test_selection_uses_injected_rng(self):
        rng = MagicMock()
        rng.choice.side_effect = lambda seq: seq[-1]
        candidates = [account("a"), account("b"), account("c")]

        selected = AccountPoolSelector(rng=rng).select(candidates, NOW)

        assert selected.aws_account_id == "c"
        rng.choice.assert_called_once()

    def test_same_seed_same_choice(self):
        candidates = [account(str(i)) for i in range(10)]
        first = AccountPoolSelector(rng=random.Random(7)).select(candidates, NOW)
        second = AccountPoolSelector(rng=random.Random(7)).select(candidates, NOW)
        assert first.aws_account_id == second.aws_account_id
