"""Tests for lease threshold monitoring."""

from datetime import timedelta

import pytest

from sandpool.events import (
    LeaseBudgetExceeded,
    LeaseBudgetThresholdAlert,
    LeaseDurationThresholdAlert,
    LeaseExpired,
    LeaseFreezingThresholdAlert,
    LeaseFrozenReason,
)
from sandpool.models import (
    BudgetThreshold,
    DurationThreshold,
    FreezeReasonType,
    IsbOu,
    IsbUser,
    Lease,
    LeaseStatus,
    ThresholdAction,
)
from sandpool.monitoring import LeaseAlertHandler, LeaseMonitor, determine_lease_events

ALERT = ThresholdAction.ALERT
FREEZE = ThresholdAction.FREEZE_ACCOUNT


def monitored_lease(now, **overrides) -> Lease:
    fields = {
        "user_email": "alice@example.com",
        "uuid": "lease-1",
        "status": LeaseStatus.ACTIVE,
        "original_lease_template_uuid": "tpl-1",
        "original_lease_template_name": "Standard",
        "aws_account_id": "111",
        "max_spend": 100.0,
        "budget_thresholds": [
            BudgetThreshold(dollars_spent=50, action=ALERT),
            BudgetThreshold(dollars_spent=75, action=ALERT),
            BudgetThreshold(dollars_spent=90, action=FREEZE),
        ],
        "lease_duration_in_hours": 24,
        "duration_thresholds": [
            DurationThreshold(hours_remaining=6, action=ALERT),
            DurationThreshold(hours_remaining=2, action=FREEZE),
        ],
        "start_date": now - timedelta(hours=20),
        "expiration_date": now + timedelta(hours=4),
        "last_checked_date": now - timedelta(hours=1),
    }
    fields.update(overrides)
    return Lease(**fields)


class TestDetermineLeaseEvents:
    """Tests for per-lease alert rules."""

    def test_budget_exceeded_suppresses_everything(self, now):
        lease = monitored_lease(now, expiration_date=now - timedelta(hours=1))

        events = determine_lease_events(lease, 100.0, now)

        assert len(events) == 1
        assert isinstance(events[0], LeaseBudgetExceeded)
        assert events[0].total_spend == 100.0
        assert events[0].budget == 100.0

    def test_expired_suppresses_threshold_alerts(self, now):
        lease = monitored_lease(now, expiration_date=now - timedelta(minutes=5))

        events = determine_lease_events(lease, 80.0, now)

        assert len(events) == 1
        assert isinstance(events[0], LeaseExpired)

    def test_largest_budget_threshold_alert(self, now):
        lease = monitored_lease(now)

        events = determine_lease_events(lease, 80.0, now)

        assert len(events) == 1
        assert isinstance(events[0], LeaseBudgetThresholdAlert)
        assert events[0].budget_threshold_triggered == 75
        assert events[0].action == ALERT

    def test_already_breached_thresholds_are_not_repeated(self, now):
        lease = monitored_lease(now, total_cost_accrued=60.0)

        assert determine_lease_events(lease, 70.0, now) == []

    def test_budget_freeze_threshold(self, now):
        lease = monitored_lease(now)

        events = determine_lease_events(lease, 95.0, now)

        assert len(events) == 1
        assert isinstance(events[0], LeaseFreezingThresholdAlert)
        assert events[0].reason.type == FreezeReasonType.BUDGET_EXCEEDED
        assert events[0].reason.triggered_budget_threshold == 90
        assert events[0].reason.total_spend == 95.0

    def test_duration_threshold_alert(self, now):
        lease = monitored_lease(now, last_checked_date=now - timedelta(hours=3))

        events = determine_lease_events(lease, 0.0, now)

        assert len(events) == 1
        assert isinstance(events[0], LeaseDurationThresholdAlert)
        assert events[0].triggered_duration_threshold == 6
        assert events[0].lease_duration_in_hours == 24

    def test_duration_freeze_threshold(self, now):
        lease = monitored_lease(
            now,
            expiration_date=now + timedelta(hours=1),
            last_checked_date=now - timedelta(hours=6),
        )

        events = determine_lease_events(lease, 0.0, now)

        assert len(events) == 1
        assert isinstance(events[0], LeaseFreezingThresholdAlert)
        assert events[0].reason.type == FreezeReasonType.EXPIRED
        assert events[0].reason.triggered_duration_threshold == 2

    def test_budget_and_duration_alerts_together(self, now):
        lease = monitored_lease(now, last_checked_date=now - timedelta(hours=3))

        events = determine_lease_events(lease, 55.0, now)

        assert [type(event) for event in events] == [LeaseBudgetThresholdAlert, LeaseDurationThresholdAlert]

    def test_unbounded_lease_has_no_duration_alerts(self, now):
        lease = monitored_lease(now, expiration_date=None, max_spend=None)

        assert determine_lease_events(lease, 10.0, now) == []


@pytest.mark.asyncio
class TestLeaseMonitor:
    """Tests for the periodic scan."""

    async def test_scan_publishes_and_records_spend(self, context, events, now):
        lease = await context.lease_store.create(monitored_lease(now))

        published = await LeaseMonitor(context).scan({"111": 80.0}, now=now)

        assert [type(event) for event in published] == [LeaseBudgetThresholdAlert]
        assert events.of_type(LeaseBudgetThresholdAlert) == published
        stored = await context.lease_store.get(lease.key)
        assert stored.total_cost_accrued == 80.0
        assert stored.last_checked_date == now

    async def test_spend_never_decreases(self, context, now):
        lease = await context.lease_store.create(monitored_lease(now, total_cost_accrued=60.0))

        await LeaseMonitor(context).scan({"111": 10.0}, now=now)

        assert (await context.lease_store.get(lease.key)).total_cost_accrued == 60.0

    async def test_unreported_account_keeps_spend(self, context, now):
        lease = await context.lease_store.create(monitored_lease(now, total_cost_accrued=20.0))

        published = await LeaseMonitor(context).scan({}, now=now)

        assert published == []
        assert (await context.lease_store.get(lease.key)).total_cost_accrued == 20.0

    async def test_only_active_and_frozen_leases_are_scanned(self, context, events, now):
        await context.lease_store.create(
            monitored_lease(now, uuid="pending", status=LeaseStatus.PENDING_APPROVAL, aws_account_id=None)
        )
        await context.lease_store.create(monitored_lease(now, uuid="frozen", status=LeaseStatus.FROZEN))
        await context.lease_store.create(
            monitored_lease(now, uuid="done", status=LeaseStatus.EXPIRED, aws_account_id="222")
        )

        published = await LeaseMonitor(context).scan({"111": 100.0, "222": 500.0}, now=now)

        assert [event.lease_id.uuid for event in published] == ["frozen"]
        assert isinstance(published[0], LeaseBudgetExceeded)


@pytest.mark.asyncio
class TestLeaseAlertHandler:
    """Tests for threshold-driven transitions."""

    @pytest.fixture
    def active_lease(self, orchestrator, seed_account, seed_template):
        async def make():
            await seed_account("111")
            template = await seed_template(requires_approval=False)
            return await orchestrator.request_lease(template, IsbUser(email="alice@example.com"))

        return make

    async def test_budget_exceeded_terminates(self, orchestrator, context, active_lease):
        lease = await active_lease()
        event = LeaseBudgetExceeded(lease_id=lease.key, account_id="111", budget=100.0, total_spend=120.0)

        updated = await LeaseAlertHandler(orchestrator).handle(event)

        assert updated.status == LeaseStatus.BUDGET_EXCEEDED
        assert (await context.account_store.get("111")).status == IsbOu.CLEAN_UP

    async def test_expired_terminates(self, orchestrator, active_lease, now):
        lease = await active_lease()
        event = LeaseExpired(lease_id=lease.key, account_id="111", lease_expiration_date=now)

        updated = await LeaseAlertHandler(orchestrator).handle(event)

        assert updated.status == LeaseStatus.EXPIRED

    async def test_freezing_alert_freezes_active_lease(self, orchestrator, context, active_lease):
        lease = await active_lease()
        event = LeaseFreezingThresholdAlert(
            lease_id=lease.key,
            account_id="111",
            reason=LeaseFrozenReason(type=FreezeReasonType.BUDGET_EXCEEDED, triggered_budget_threshold=90),
        )

        updated = await LeaseAlertHandler(orchestrator).handle(event)

        assert updated.status == LeaseStatus.FROZEN
        assert (await context.account_store.get("111")).status == IsbOu.FROZEN

    async def test_freezing_alert_skips_frozen_lease(self, orchestrator, context, active_lease):
        lease = await active_lease()
        reason = LeaseFrozenReason(type=FreezeReasonType.MANUALLY_FROZEN)
        await orchestrator.freeze_lease(lease, reason)

        event = LeaseFreezingThresholdAlert(lease_id=lease.key, account_id="111", reason=reason)
        assert await LeaseAlertHandler(orchestrator).handle(event) is None
        assert (await context.lease_store.get(lease.key)).status == LeaseStatus.FROZEN

    async def test_terminated_lease_is_skipped(self, orchestrator, active_lease, now):
        lease = await active_lease()
        await orchestrator.terminate_lease(lease, LeaseStatus.MANUALLY_TERMINATED)

        event = LeaseExpired(lease_id=lease.key, account_id="111", lease_expiration_date=now)
        assert await LeaseAlertHandler(orchestrator).handle(event) is None

    async def test_informational_alert_needs_no_transition(self, orchestrator, active_lease):
        lease = await active_lease()
        event = LeaseBudgetThresholdAlert(
            lease_id=lease.key,
            account_id="111",
            budget=100.0,
            budget_threshold_triggered=50,
            total_spend=55.0,
            action=ALERT,
        )

        assert await LeaseAlertHandler(orchestrator).handle(event) is None

    async def test_scan_then_handle(self, orchestrator, context, active_lease):
        lease = await active_lease()

        published = await LeaseMonitor(context).scan({"111": 150.0})
        handler = LeaseAlertHandler(orchestrator)
        results = [await handler.handle(event) for event in published]

        assert [result.status for result in results] == [LeaseStatus.BUDGET_EXCEEDED]
        assert (await context.lease_store.get(lease.key)).total_cost_accrued == 150.0
