"""Saga-style transactions over collaborators with no shared transaction boundary.

A Transaction is an ordered list of steps, each pairing a forward ``commit``
with a compensating ``rollback``. When a commit fails, the steps already
committed are rolled back in reverse order and the original error is
re-raised. Compensation is best-effort: a rollback that fails is logged and
collected, and the remaining rollbacks still run.

Usage:
    result = await Transaction(
        ou_service.transactional_move_account(account, IsbOu.AVAILABLE, IsbOu.ACTIVE),
        lease_store.transactional_update(approved_lease),
    ).complete()
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from sandpool.logging import get_logger
from sandpool.metrics import record_saga_rollback

_logger = get_logger(__name__)


@dataclass(frozen=True)
class TransactionStep:
    """A forward operation and the action that undoes it."""

    commit: Callable[[], Awaitable[Any]]
    rollback: Callable[[], Awaitable[None]]
    name: str = "step"


@dataclass(frozen=True)
class RollbackFailure:
    """A compensating action that raised while unwinding a failed transaction."""

    step: str
    error: BaseException


class Transaction:
    """Ordered saga of :class:`TransactionStep` objects.

    Steps run strictly sequentially; later steps may rely on the effects of
    earlier ones.
    """

    def __init__(
        self,
        *steps: TransactionStep,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._steps = list(steps)
        self._logger = logger or _logger
        self._completed = False
        self.rollback_errors: list[RollbackFailure] = []

    @property
    def steps(self) -> list[TransactionStep]:
        return list(self._steps)

    async def complete(self) -> list[Any]:
        """Commit every step in order.

        Returns:
            The commit results, in step order.

        Raises:
            The first commit error, after compensating the committed steps.
        """
        if self._completed:
            raise RuntimeError("Transaction has already been completed")
        self._completed = True

        results: list[Any] = []
        committed: list[TransactionStep] = []
        for step in self._steps:
            try:
                results.append(await step.commit())
            except Exception as error:
                self._logger.warning(
                    "transaction_step_failed",
                    step=step.name,
                    error=str(error),
                    error_type=type(error).__name__,
                    committed_steps=[s.name for s in committed],
                )
                await self._rollback(committed, error)
                raise
            committed.append(step)
        return results

    async def _rollback(self, committed: list[TransactionStep], cause: Exception) -> None:
        for step in reversed(committed):
            try:
                await step.rollback()
            except Exception as rollback_error:
                self.rollback_errors.append(RollbackFailure(step=step.name, error=rollback_error))
                record_saga_rollback(step.name, "failed")
                self._logger.warning(
                    "transaction_rollback_failed",
                    step=step.name,
                    error=str(rollback_error),
                    error_type=type(rollback_error).__name__,
                )
                cause.add_note(
                    f"rollback of step '{step.name}' failed: "
                    f"{type(rollback_error).__name__}: {rollback_error}"
                )
            else:
                record_saga_rollback(step.name, "succeeded")
                self._logger.info("transaction_step_rolled_back", step=step.name)
