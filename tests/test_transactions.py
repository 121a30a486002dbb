"""Tests for saga transactions."""

from unittest.mock import MagicMock

import pytest

from sandpool.metrics import metrics
from sandpool.transactions import Transaction, TransactionStep


class Boom(Exception):
    pass


def recording_step(name: str, journal: list[str], fail_commit: bool = False, fail_rollback: bool = False):
    async def commit():
        journal.append(f"commit:{name}")
        if fail_commit:
            raise Boom(f"{name} commit failed")
        return name

    async def rollback():
        journal.append(f"rollback:{name}")
        if fail_rollback:
            raise RuntimeError(f"{name} rollback failed")

    return TransactionStep(commit=commit, rollback=rollback, name=name)


@pytest.mark.asyncio
class TestTransactionCommit:
    """Tests for the happy path."""

    async def test_results_in_step_order(self):
        journal: list[str] = []
        results = await Transaction(
            recording_step("a", journal),
            recording_step("b", journal),
            recording_step("c", journal),
        ).complete()

        assert results == ["a", "b", "c"]
        assert journal == ["commit:a", "commit:b", "commit:c"]

    async def test_empty_transaction(self):
        assert await Transaction().complete() == []

    async def test_complete_only_once(self):
        transaction = Transaction(recording_step("a", []))
        await transaction.complete()

        with pytest.raises(RuntimeError, match="already been completed"):
            await transaction.complete()

    async def test_steps_are_copied(self):
        step = recording_step("a", [])
        transaction = Transaction(step)
        transaction.steps.clear()
        assert transaction.steps == [step]


@pytest.mark.asyncio
class TestTransactionRollback:
    """Tests for compensation on failure."""

    async def test_rolls_back_committed_steps_in_reverse(self):
        journal: list[str] = []
        with pytest.raises(Boom):
            await Transaction(
                recording_step("a", journal),
                recording_step("b", journal),
                recording_step("c", journal),
                recording_step("d", journal, fail_commit=True),
            ).complete()

        assert journal == [
            "commit:a",
            "commit:b",
            "commit:c",
            "commit:d",
            "rollback:c",
            "rollback:b",
            "rollback:a",
        ]

    async def test_failed_step_is_not_rolled_back(self):
        journal: list[str] = []
        with pytest.raises(Boom):
            await Transaction(
                recording_step("a", journal, fail_commit=True),
                recording_step("b", journal),
            ).complete()

        assert journal == ["commit:a"]

    async def test_original_error_is_reraised_unchanged(self):
        with pytest.raises(Boom, match="b commit failed") as exc_info:
            await Transaction(
                recording_step("a", []),
                recording_step("b", [], fail_commit=True),
            ).complete()

        assert type(exc_info.value) is Boom

    async def test_rollback_failure_does_not_stop_remaining_rollbacks(self):
        journal: list[str] = []
        transaction = Transaction(
            recording_step("a", journal),
            recording_step("b", journal, fail_rollback=True),
            recording_step("c", journal, fail_commit=True),
        )

        with pytest.raises(Boom) as exc_info:
            await transaction.complete()

        assert journal[-2:] == ["rollback:b", "rollback:a"]
        assert [failure.step for failure in transaction.rollback_errors] == ["b"]
        assert isinstance(transaction.rollback_errors[0].error, RuntimeError)
        assert any("rollback of step 'b' failed" in note for note in exc_info.value.__notes__)

    async def test_every_rollback_failure_is_collected(self):
        transaction = Transaction(
            recording_step("a", [], fail_rollback=True),
            recording_step("b", [], fail_rollback=True),
            recording_step("c", [], fail_commit=True),
        )

        with pytest.raises(Boom):
            await transaction.complete()

        assert [failure.step for failure in transaction.rollback_errors] == ["b", "a"]

    async def test_rollback_failure_is_logged(self):
        logger = MagicMock()
        with pytest.raises(Boom):
            await Transaction(
                recording_step("a", [], fail_rollback=True),
                recording_step("b", [], fail_commit=True),
                logger=logger,
            ).complete()

        events = [call.args[0] for call in logger.warning.call_args_list]
        assert "transaction_step_failed" in events
        assert "transaction_rollback_failed" in events

    async def test_rollbacks_are_counted(self):
        before = metrics.get_counter(
            "sandpool_saga_rollbacks_total", {"step": "counted", "outcome": "succeeded"}
        )
        with pytest.raises(Boom):
            await Transaction(
                recording_step("counted", []),
                recording_step("fails", [], fail_commit=True),
            ).complete()

        after = metrics.get_counter(
            "sandpool_saga_rollbacks_total", {"step": "counted", "outcome": "succeeded"}
        )
        assert after == before + 1
