"""Lease monitoring: budget and duration threshold detection.

``LeaseMonitor`` turns a cost report into alert events and records the new
spend on each lease. ``LeaseAlertHandler`` reacts to the alerts that demand
a state change by calling the same orchestrator operations an operator
would.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta

from sandpool.context import SandboxContext
from sandpool.db.paging import collect
from sandpool.errors import ConcurrentModificationError
from sandpool.events import (
    IsbEvent,
    LeaseBudgetExceeded,
    LeaseBudgetThresholdAlert,
    LeaseDurationThresholdAlert,
    LeaseExpired,
    LeaseFreezingThresholdAlert,
    LeaseFrozenReason,
)
from sandpool.logging import get_logger, searchable_lease_properties
from sandpool.models import (
    BudgetThreshold,
    DurationThreshold,
    FreezeReasonType,
    Lease,
    LeaseKey,
    LeaseStatus,
    ThresholdAction,
)
from sandpool.orchestrator import LeaseOrchestrator
from sandpool.timeutils import as_utc, hours_between, utc_now

logger = get_logger(__name__)

SCANNED_LEASE_STATUSES = (LeaseStatus.ACTIVE, LeaseStatus.FROZEN)


def newly_breached_budget_thresholds(lease: Lease, cost: float) -> list[BudgetThreshold]:
    return [
        threshold
        for threshold in lease.budget_thresholds
        if lease.total_cost_accrued < threshold.dollars_spent <= cost
    ]


def newly_breached_duration_thresholds(lease: Lease, now: datetime) -> list[DurationThreshold]:
    expiration = as_utc(lease.expiration_date)
    if expiration is None:
        return []
    last_checked = as_utc(lease.last_checked_date) or as_utc(lease.start_date)
    breached = []
    for threshold in lease.duration_thresholds:
        threshold_date = expiration - timedelta(hours=threshold.hours_remaining)
        if (last_checked is None or last_checked < threshold_date) and threshold_date <= now:
            breached.append(threshold)
    return breached


def determine_lease_events(lease: Lease, cost: float, now: datetime) -> list[IsbEvent]:
    """Alerts for one lease given its current spend.

    Budget exceeded and expiry each suppress every other alert.
    """
    key = lease.key
    account_id = lease.aws_account_id or ""

    if lease.max_spend is not None and cost >= lease.max_spend:
        return [
            LeaseBudgetExceeded(lease_id=key, account_id=account_id, budget=lease.max_spend, total_spend=cost)
        ]

    expiration = as_utc(lease.expiration_date)
    if expiration is not None and expiration < now:
        return [LeaseExpired(lease_id=key, account_id=account_id, lease_expiration_date=expiration)]

    events: list[IsbEvent] = []
    budget_breaches = newly_breached_budget_thresholds(lease, cost)
    duration_breaches = newly_breached_duration_thresholds(lease, now)

    budget_freeze = next((t for t in budget_breaches if t.action == ThresholdAction.FREEZE_ACCOUNT), None)
    duration_freeze = next((t for t in duration_breaches if t.action == ThresholdAction.FREEZE_ACCOUNT), None)
    if budget_freeze is not None:
        events.append(
            LeaseFreezingThresholdAlert(
                lease_id=key,
                account_id=account_id,
                reason=LeaseFrozenReason(
                    type=FreezeReasonType.BUDGET_EXCEEDED,
                    triggered_budget_threshold=budget_freeze.dollars_spent,
                    budget=lease.max_spend,
                    total_spend=cost,
                ),
            )
        )
    elif duration_freeze is not None:
        events.append(
            LeaseFreezingThresholdAlert(
                lease_id=key,
                account_id=account_id,
                reason=LeaseFrozenReason(
                    type=FreezeReasonType.EXPIRED,
                    triggered_duration_threshold=duration_freeze.hours_remaining,
                    lease_duration_in_hours=lease.lease_duration_in_hours,
                ),
            )
        )

    if budget_breaches:
        largest = max(budget_breaches, key=lambda t: t.dollars_spent)
        if largest.action != ThresholdAction.FREEZE_ACCOUNT:
            events.append(
                LeaseBudgetThresholdAlert(
                    lease_id=key,
                    account_id=account_id,
                    budget=lease.max_spend,
                    budget_threshold_triggered=largest.dollars_spent,
                    total_spend=cost,
                    action=largest.action,
                )
            )

    if duration_breaches:
        latest = min(duration_breaches, key=lambda t: t.hours_remaining)
        if latest.action != ThresholdAction.FREEZE_ACCOUNT:
            start_date = as_utc(lease.start_date)
            duration = (
                round(hours_between(start_date, expiration))
                if start_date is not None and expiration is not None
                else lease.lease_duration_in_hours or 0
            )
            events.append(
                LeaseDurationThresholdAlert(
                    lease_id=key,
                    account_id=account_id,
                    triggered_duration_threshold=latest.hours_remaining,
                    lease_duration_in_hours=duration,
                    action=latest.action,
                )
            )

    return events


class LeaseMonitor:
    """Periodic scan of Active and Frozen leases against a cost report."""

    def __init__(self, context: SandboxContext) -> None:
        self.context = context

    async def scan(self, costs: Mapping[str, float], now: datetime | None = None) -> list[IsbEvent]:
        """Publish alerts for every monitored lease and record its spend.

        Args:
            costs: Spend to date keyed by account id. Accounts missing from
                the report keep their recorded spend.
            now: Evaluation time (defaults to the current UTC time).

        Returns:
            The published events.
        """
        now = now or utc_now()
        store = self.context.lease_store
        leases = await collect(
            lambda page: store.find_by_status(SCANNED_LEASE_STATUSES, page_identifier=page)
        )
        logger.info("lease_monitoring_started", leases=len(leases), accounts=len(costs))

        events: list[IsbEvent] = []
        for lease in leases:
            if lease.aws_account_id is None:
                continue
            cost = costs.get(lease.aws_account_id, lease.total_cost_accrued)
            lease_events = determine_lease_events(lease, cost, now)
            if not lease_events:
                logger.debug("no_new_lease_events", **searchable_lease_properties(lease))
            events.extend(lease_events)

        if events:
            await self.context.events.publish(*events)

        for lease in leases:
            if lease.aws_account_id is None:
                continue
            cost = costs.get(lease.aws_account_id, lease.total_cost_accrued)
            updated = lease.model_copy(
                update={
                    "total_cost_accrued": max(cost, lease.total_cost_accrued),
                    "last_checked_date": now,
                }
            )
            try:
                await store.update(updated)
            except ConcurrentModificationError:
                logger.warning("lease_cost_update_conflict", **searchable_lease_properties(lease))
                continue
            logger.info(
                "lease_cost_updated",
                previous_total_cost_accrued=lease.total_cost_accrued,
                new_total_cost_accrued=updated.total_cost_accrued,
                budget_limit=lease.max_spend,
                **searchable_lease_properties(lease),
            )

        logger.info("lease_monitoring_completed", leases=len(leases), events=len(events))
        return events


class LeaseAlertHandler:
    """Applies threshold-driven transitions for monitoring alerts."""

    def __init__(self, orchestrator: LeaseOrchestrator) -> None:
        self.orchestrator = orchestrator

    async def handle(self, event: IsbEvent) -> Lease | None:
        """Freeze or terminate the lease named by ``event``.

        Returns:
            The updated lease, or None when the alert needs no transition or
            the lease has already moved on.
        """
        if isinstance(event, LeaseBudgetExceeded):
            return await self._terminate(event.lease_id, LeaseStatus.BUDGET_EXCEEDED)
        if isinstance(event, LeaseExpired):
            return await self._terminate(event.lease_id, LeaseStatus.EXPIRED)
        if isinstance(event, LeaseFreezingThresholdAlert):
            lease = await self.orchestrator.context.lease_store.get(event.lease_id)
            if lease is None or lease.status != LeaseStatus.ACTIVE:
                logger.info(
                    "freeze_skipped",
                    lease_id=event.lease_id.uuid,
                    lease_status=lease.status.value if lease else None,
                )
                return None
            return await self.orchestrator.freeze_lease(lease, event.reason)

        logger.debug("alert_requires_no_transition", detail_type=event.detail_type)
        return None

    async def _terminate(self, key: LeaseKey, status: LeaseStatus) -> Lease | None:
        lease = await self.orchestrator.context.lease_store.get(key)
        if lease is None or not lease.is_monitored:
            logger.info(
                "termination_skipped",
                lease_id=key.uuid,
                lease_status=lease.status.value if lease else None,
                requested_status=status.value,
            )
            return None
        return await self.orchestrator.terminate_lease(lease, status)
