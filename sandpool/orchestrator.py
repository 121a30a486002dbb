"""Lease and account lifecycle orchestration.

Every operation follows the same shape: check preconditions, gather data
from the collaborators, run a :class:`~sandpool.transactions.Transaction`,
then publish domain events. Precondition failures raise before anything is
mutated. A failing saga step rolls back the steps already committed and the
original error propagates.

Usage:
    orchestrator = LeaseOrchestrator(build_default_context())
    lease = await orchestrator.request_lease(template, user)
    await orchestrator.freeze_lease(lease, LeaseFrozenReason(type=FreezeReasonType.MANUALLY_FROZEN))
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import ParamSpec, TypeVar

import structlog

from sandpool.context import SandboxContext
from sandpool.db.paging import collect, stream
from sandpool.errors import (
    AccountNotInQuarantineError,
    CouldNotFindAccountError,
    CouldNotRetrieveUserError,
    MaxNumberOfLeasesExceededError,
)
from sandpool.events import (
    AccountQuarantined,
    BlueprintDeploymentRequest,
    CleanAccountRequest,
    IsbEvent,
    LeaseApproved,
    LeaseDenied,
    LeaseFrozen,
    LeaseFrozenReason,
    LeaseProvisioningFailed,
    LeaseRequested,
    LeaseTerminated,
    LeaseTerminatedReason,
    LeaseUnfrozen,
)
from sandpool.logging import (
    searchable_account_properties,
    searchable_lease_properties,
    searchable_lease_template_properties,
)
from sandpool.metrics import record_operation
from sandpool.models import (
    COUNTED_LEASE_STATUSES,
    MONITORED_LEASE_STATUSES,
    AccessGroup,
    CleanupReason,
    IsbOu,
    IsbUser,
    Lease,
    LeaseStatus,
    LeaseTemplate,
    SandboxAccount,
)
from sandpool.models.lease_template import generate_uuid
from sandpool.state_machines import AccountStateMachine, LeaseStateMachine
from sandpool.timeutils import as_utc, calculate_ttl_in_epoch_seconds, hours_between
from sandpool.transactions import Transaction

AUTO_APPROVED = "AUTO_APPROVED"

P = ParamSpec("P")
R = TypeVar("R")


def log_errors(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Log any error raised by an orchestrator action, then re-raise it.

    Also records the action's outcome and latency.
    """
    action = func.__name__

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        orchestrator = args[0]
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            record_operation(action, "error", time.perf_counter() - start_time)
            orchestrator.logger.error(
                "orchestrator_action_failed",
                action=action,
                error=str(e),
                error_type=type(e).__name__,
                error_kind=getattr(e, "kind", None),
            )
            raise
        record_operation(action, "success", time.perf_counter() - start_time)
        return result

    return wrapper


def _expiration(start: datetime, lease: Lease) -> datetime | None:
    if lease.lease_duration_in_hours is None:
        return None
    return start + timedelta(hours=lease.lease_duration_in_hours)


class LeaseOrchestrator:
    """Facade over the lease and account lifecycle operations."""

    def __init__(self, context: SandboxContext) -> None:
        self.context = context

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return self.context.logger

    def _now(self) -> datetime:
        return self.context.clock()

    async def _publish(self, *events: IsbEvent) -> None:
        if events:
            await self.context.events.publish(*events)

    async def _get_account(self, account_id: str | None) -> SandboxAccount:
        account = await self.context.account_store.get(account_id) if account_id else None
        if account is None:
            raise CouldNotFindAccountError("Unable to retrieve SandboxAccount information.")
        return account

    async def _get_user(self, email: str) -> IsbUser:
        user = await self.context.idc_service.get_user_from_email(email)
        if user is None:
            raise CouldNotRetrieveUserError("Unable to retrieve user information.")
        return user

    async def _acquire_available_account(self) -> SandboxAccount:
        store = self.context.account_store
        candidates = await collect(
            lambda page: store.find_by_status(IsbOu.AVAILABLE, page_identifier=page)
        )
        return self.context.pool_selector.select(candidates, self._now())

    # Accounts

    @log_errors
    async def register_account(self, account_id: str) -> SandboxAccount:
        """Onboard an account: Entry -> CleanUp plus Manager/Admin group access."""
        ou_service = self.context.ou_service
        idc_service = self.context.idc_service

        org_account = await ou_service.describe_account(account_id)
        if org_account is None:
            raise CouldNotFindAccountError("Could not find account to register.")
        AccountStateMachine.require(IsbOu.ENTRY, IsbOu.CLEAN_UP)

        account = SandboxAccount(
            aws_account_id=account_id,
            email=org_account.email,
            name=org_account.name,
            status=IsbOu.CLEAN_UP,
            drift_at_last_scan=False,
        )
        results = await Transaction(
            ou_service.transactional_move_account(account, IsbOu.ENTRY, IsbOu.CLEAN_UP),
            idc_service.transactional_assign_group_access(account_id, AccessGroup.MANAGER),
            idc_service.transactional_assign_group_access(account_id, AccessGroup.ADMIN),
            logger=self.logger,
        ).complete()
        registered: SandboxAccount = results[0]

        self.logger.info("account_registered", **searchable_account_properties(registered))
        await self._publish(
            CleanAccountRequest(account_id=account_id, reason=CleanupReason.ACCOUNT_REGISTRATION)
        )
        return registered

    @log_errors
    async def eject_account(self, account: SandboxAccount) -> None:
        """Remove an account from the pool as-is, without cleanup.

        Leases on the account are terminated as Ejected; failures there are
        logged and do not stop the ejection.
        """
        log = self.logger.bind(**searchable_account_properties(account))
        AccountStateMachine.require(account.status, IsbOu.EXIT)

        try:
            await self._terminate_leases_associated_with_account(
                account.aws_account_id, LeaseStatus.EJECTED
            )
        except Exception as e:
            log.error("associated_lease_termination_failed", error=str(e), error_type=type(e).__name__)

        await self.context.ou_service.perform_account_move_action(
            account.aws_account_id, account.status, IsbOu.EXIT
        )
        await self.context.idc_service.revoke_group_access(account.aws_account_id, AccessGroup.MANAGER)
        await self.context.idc_service.revoke_group_access(account.aws_account_id, AccessGroup.ADMIN)
        await self.context.account_store.delete(account.aws_account_id)
        log.info("account_ejected")

    @log_errors
    async def quarantine_account(self, account_id: str, current_ou: IsbOu, reason: str) -> SandboxAccount:
        """Force an account into Quarantine from ``current_ou``.

        An account with no record gets one, flagged as drifted. Leases on the
        account are terminated as AccountQuarantined; a failure there aborts
        the quarantine.
        """
        AccountStateMachine.require(current_ou, IsbOu.QUARANTINE)

        record = await self.context.account_store.get(account_id)
        if record is None:
            record = SandboxAccount(
                aws_account_id=account_id,
                status=IsbOu.QUARANTINE,
                drift_at_last_scan=True,
            )
        log = self.logger.bind(**searchable_account_properties(record))

        await self._terminate_leases_associated_with_account(
            account_id, LeaseStatus.ACCOUNT_QUARANTINED
        )
        results = await Transaction(
            self.context.ou_service.transactional_move_account(record, current_ou, IsbOu.QUARANTINE),
            logger=self.logger,
        ).complete()

        log.warning("account_quarantined", reason=reason, previous_ou=current_ou.value)
        await self._publish(AccountQuarantined(aws_account_id=account_id, reason=reason))
        return results[0]

    @log_errors
    async def retry_cleanup(self, account: SandboxAccount) -> SandboxAccount:
        """Send a quarantined (or stuck in CleanUp) account back through cleanup."""
        if account.status not in (IsbOu.QUARANTINE, IsbOu.CLEAN_UP):
            raise AccountNotInQuarantineError(
                "Can only retry cleanup on quarantined accounts and those already in CleanUp."
            )

        if account.status != IsbOu.CLEAN_UP:
            results = await Transaction(
                self.context.ou_service.transactional_move_account(
                    account, IsbOu.QUARANTINE, IsbOu.CLEAN_UP
                ),
                logger=self.logger,
            ).complete()
            account = results[0]

        await self._publish(
            CleanAccountRequest(
                account_id=account.aws_account_id, reason=CleanupReason.RETRY_FAILED_CLEANUP
            )
        )
        self.logger.info("cleanup_retry_initiated", **searchable_account_properties(account))
        return account

    async def _terminate_leases_associated_with_account(
        self, account_id: str, reason: LeaseStatus
    ) -> None:
        store = self.context.lease_store
        for monitored_status in MONITORED_LEASE_STATUSES:
            leases = stream(
                lambda page, status=monitored_status: store.find_by_status_and_account_id(
                    status, account_id, page_identifier=page
                )
            )
            async for lease in leases:
                if not lease.is_monitored:
                    self.logger.warning(
                        "associated_lease_not_monitored",
                        queried_status=monitored_status.value,
                        **searchable_lease_properties(lease),
                    )
                    continue

                try:
                    await self.terminate_lease(lease, reason, auto_cleanup=False)
                except Exception:
                    self.logger.error(
                        "associated_lease_termination_error",
                        aws_account_id=account_id,
                        **searchable_lease_properties(lease),
                    )
                    raise

                self.logger.info(
                    "associated_lease_terminated",
                    reason=reason.value,
                    **searchable_lease_properties(lease),
                )

    # Leases

    @log_errors
    async def request_lease(
        self,
        lease_template: LeaseTemplate,
        target_user: IsbUser,
        comments: str | None = None,
        created_by: str | None = None,
    ) -> Lease:
        """Create a lease from a template for ``target_user``.

        Templates that need no approval, and assignments (``created_by`` given),
        are approved immediately; the lease is deleted if that approval fails.

        Raises:
            MaxNumberOfLeasesExceededError: The user already holds the maximum
                number of active or pending leases.
        """
        store = self.context.lease_store
        max_leases = self.context.lease_config.max_leases_per_user
        log = self.logger.bind(**searchable_lease_template_properties(lease_template))

        existing = await collect(
            lambda page: store.find_by_user_email(target_user.email, page_identifier=page)
        )
        held = sum(1 for lease in existing if lease.status in COUNTED_LEASE_STATUSES)
        if held >= max_leases:
            raise MaxNumberOfLeasesExceededError(
                f"This user has reached the maximum number of active/pending leases ({max_leases})."
            )

        lease = await store.create(
            Lease(
                user_email=target_user.email,
                uuid=generate_uuid(),
                status=LeaseStatus.PENDING_APPROVAL,
                original_lease_template_uuid=lease_template.uuid,
                original_lease_template_name=lease_template.name,
                max_spend=lease_template.max_spend,
                budget_thresholds=lease_template.budget_thresholds,
                lease_duration_in_hours=lease_template.lease_duration_in_hours,
                duration_thresholds=lease_template.duration_thresholds,
                blueprint_id=lease_template.blueprint_id,
                blueprint_name=lease_template.blueprint_name,
                comments=comments,
                created_by=created_by or target_user.email,
                total_cost_accrued=0.0,
            )
        )

        is_assignment = created_by is not None
        if not lease_template.requires_approval or is_assignment:
            try:
                lease = await self.approve_lease(lease, AUTO_APPROVED)
            except Exception:
                await store.delete(lease.key)
                raise
        else:
            await self._publish(
                LeaseRequested(
                    lease_id=lease.key,
                    user_email=lease.user_email,
                    requires_manual_approval=lease_template.requires_approval,
                    comments=lease.comments,
                    created_by=lease.created_by,
                )
            )

        log.info(
            "lease_assigned" if is_assignment else "lease_requested",
            created_by=created_by,
            **searchable_lease_properties(lease),
        )
        return lease

    @log_errors
    async def approve_lease(self, lease: Lease, approver: str) -> Lease:
        """Approve a pending lease onto an account from the pool.

        Without a blueprint the lease becomes Active and the user gets access.
        With one, the lease waits in Provisioning for the deployment, and
        access is granted later by :meth:`publish_lease`.
        """
        LeaseStateMachine.require_pending(lease)
        blueprint = None
        if lease.blueprint_id:
            blueprint = await self.context.blueprint_service.validate_blueprint_for_deployment(
                lease.blueprint_id
            )

        account, user = await asyncio.gather(
            self._acquire_available_account(),
            self.context.idc_service.get_user_from_email(lease.user_email),
        )
        if user is None:
            raise CouldNotRetrieveUserError("Unable to retrieve user information.")
        AccountStateMachine.require(account.status, IsbOu.ACTIVE)

        ou_service = self.context.ou_service
        lease_store = self.context.lease_store
        now = self._now()

        if blueprint is not None:
            provisioning = lease.model_copy(
                update={
                    "approved_by": approver,
                    "aws_account_id": account.aws_account_id,
                    "status": LeaseStatus.PROVISIONING,
                }
            )
            results = await Transaction(
                ou_service.transactional_move_account(account, IsbOu.AVAILABLE, IsbOu.ACTIVE),
                lease_store.transactional_update(provisioning),
                logger=self.logger,
            ).complete()
            updated: Lease = results[1]

            stack_set = blueprint.stack_sets[0]
            self.logger.info(
                "lease_provisioning_requested",
                blueprint_id=blueprint.blueprint.blueprint_id,
                approved_by=approver,
                **searchable_lease_properties(updated),
            )
            await self._publish(
                BlueprintDeploymentRequest(
                    blueprint_id=blueprint.blueprint.blueprint_id,
                    lease_id=updated.uuid,
                    user_email=updated.user_email,
                    account_id=account.aws_account_id,
                    blueprint_name=blueprint.blueprint.name,
                    stack_set_id=stack_set.stack_set_id,
                    regions=stack_set.regions,
                    region_concurrency_type=blueprint.blueprint.region_concurrency_type,
                    deployment_timeout_minutes=blueprint.blueprint.deployment_timeout_minutes,
                    max_concurrent_percentage=stack_set.max_concurrent_percentage,
                    failure_tolerance_percentage=stack_set.failure_tolerance_percentage,
                    concurrency_mode=stack_set.concurrency_mode,
                )
            )
            return updated

        approved = lease.model_copy(
            update={
                "approved_by": approver,
                "aws_account_id": account.aws_account_id,
                "status": LeaseStatus.ACTIVE,
                "start_date": now,
                "expiration_date": _expiration(now, lease),
                "total_cost_accrued": 0.0,
                "last_checked_date": now,
            }
        )
        results = await Transaction(
            ou_service.transactional_move_account(account, IsbOu.AVAILABLE, IsbOu.ACTIVE),
            lease_store.transactional_update(approved),
            self.context.idc_service.transactional_grant_user_access(account.aws_account_id, user),
            logger=self.logger,
        ).complete()
        updated = results[1]

        self.logger.info(
            "lease_approved",
            approved_by=approver,
            max_budget=updated.max_spend,
            max_duration_hours=updated.lease_duration_in_hours,
            auto_approved=approver == AUTO_APPROVED,
            creation_method=(
                "REQUESTED"
                if not updated.created_by or updated.created_by == updated.user_email
                else "ASSIGNED"
            ),
            **searchable_lease_properties(updated),
        )
        await self._publish(
            LeaseApproved(lease_id=updated.uuid, user_email=updated.user_email, approved_by=approver)
        )
        return updated

    @log_errors
    async def publish_lease(self, lease: Lease) -> Lease:
        """Activate a lease whose account is ready and grant the user access."""
        LeaseStateMachine.require_publishable(lease)
        user = await self._get_user(lease.user_email)

        now = self._now()
        active = lease.model_copy(
            update={
                "status": LeaseStatus.ACTIVE,
                "start_date": now,
                "expiration_date": _expiration(now, lease),
                "last_checked_date": now,
            }
        )
        results = await Transaction(
            self.context.lease_store.transactional_update(active),
            self.context.idc_service.transactional_grant_user_access(lease.aws_account_id, user),
            logger=self.logger,
        ).complete()
        updated: Lease = results[0]

        approved_by = updated.approved_by or AUTO_APPROVED
        self.logger.info(
            "lease_published",
            approved_by=approved_by,
            auto_approved=approved_by == AUTO_APPROVED,
            **searchable_lease_properties(updated),
        )
        await self._publish(
            LeaseApproved(lease_id=updated.uuid, user_email=updated.user_email, approved_by=approved_by)
        )
        return updated

    @log_errors
    async def reset_lease(self, lease: Lease, blueprint_name: str) -> Lease:
        """Return a lease whose provisioning failed to PendingApproval.

        The account goes back to CleanUp and the lease loses its account,
        approver and dates.
        """
        LeaseStateMachine.require_provisioning(lease)
        account = await self._get_account(lease.aws_account_id)
        AccountStateMachine.require(account.status, IsbOu.CLEAN_UP)

        reset = lease.model_copy(
            update={
                "status": LeaseStatus.PENDING_APPROVAL,
                "aws_account_id": None,
                "approved_by": None,
                "start_date": None,
                "expiration_date": None,
                "last_checked_date": None,
                "total_cost_accrued": 0.0,
            }
        )
        results = await Transaction(
            self.context.ou_service.transactional_move_account(account, account.status, IsbOu.CLEAN_UP),
            self.context.lease_store.transactional_update(reset),
            logger=self.logger,
        ).complete()
        updated: Lease = results[1]

        if lease.blueprint_id:
            await self.context.blueprint_service.delete_stack_instances_metadata(lease)

        self.logger.info(
            "lease_reset",
            reason_for_reset="ProvisioningFailed",
            blueprint_name=blueprint_name,
            previous_account_id=account.aws_account_id,
            **searchable_lease_properties(updated),
        )
        await self._publish(
            CleanAccountRequest(account_id=account.aws_account_id, reason=CleanupReason.LEASE_RESET),
            LeaseProvisioningFailed(
                lease_id=lease.key,
                account_id=account.aws_account_id,
                blueprint_name=blueprint_name,
            ),
        )
        return updated

    @log_errors
    async def freeze_lease(self, lease: Lease, reason: LeaseFrozenReason) -> Lease:
        """Freeze an Active lease: revoke access, then move account and lease to Frozen."""
        LeaseStateMachine.require_active(lease)
        account = await self._get_account(lease.aws_account_id)
        user = await self._get_user(lease.user_email)
        AccountStateMachine.require(IsbOu.ACTIVE, IsbOu.FROZEN)

        await self.context.idc_service.revoke_all_user_access(account.aws_account_id)

        results = await Transaction(
            self.context.ou_service.transactional_move_account(account, IsbOu.ACTIVE, IsbOu.FROZEN),
            self.context.lease_store.transactional_update(
                lease.model_copy(update={"status": LeaseStatus.FROZEN})
            ),
            logger=self.logger,
        ).complete()
        updated: Lease = results[1]

        self.logger.info(
            "lease_frozen",
            user=user.email,
            reason=reason.type.value,
            **searchable_lease_properties(updated),
        )
        await self._publish(
            LeaseFrozen(lease_id=lease.key, account_id=account.aws_account_id, reason=reason)
        )
        return updated

    @log_errors
    async def unfreeze_lease(self, lease: Lease) -> Lease:
        """Return a Frozen lease to Active and restore the user's access."""
        LeaseStateMachine.require_frozen(lease)
        account = await self._get_account(lease.aws_account_id)
        user = await self._get_user(lease.user_email)
        AccountStateMachine.require(IsbOu.FROZEN, IsbOu.ACTIVE)

        results = await Transaction(
            self.context.lease_store.transactional_update(
                lease.model_copy(update={"status": LeaseStatus.ACTIVE})
            ),
            self.context.ou_service.transactional_move_account(account, IsbOu.FROZEN, IsbOu.ACTIVE),
            self.context.idc_service.transactional_grant_user_access(account.aws_account_id, user),
            logger=self.logger,
        ).complete()
        updated: Lease = results[0]

        self.logger.info(
            "lease_unfrozen",
            user=user.email,
            account_status=IsbOu.ACTIVE.value,
            **searchable_lease_properties(updated),
        )
        await self._publish(
            LeaseUnfrozen(
                lease_id=lease.key,
                account_id=account.aws_account_id,
                max_budget=lease.max_spend,
                lease_duration_in_hours=lease.lease_duration_in_hours,
                reason="Manually unfrozen",
            )
        )
        return updated

    @log_errors
    async def terminate_lease(
        self,
        lease: Lease,
        expired_status: LeaseStatus,
        auto_cleanup: bool = True,
    ) -> Lease:
        """End a monitored lease with a terminal status.

        Args:
            lease: A lease in Active, Frozen or Provisioning.
            expired_status: The terminal status to record.
            auto_cleanup: Send the account to CleanUp. Ejection and quarantine
                pass False because they move the account themselves.

        Returns:
            The stored terminal lease.
        """
        LeaseStateMachine.require_expired_status(expired_status)
        LeaseStateMachine.require_monitored(lease)
        account = await self._get_account(lease.aws_account_id)
        user = await self._get_user(lease.user_email)
        log = self.logger.bind(**searchable_account_properties(account))

        now = self._now()
        steps = []
        events: list[IsbEvent] = []
        if auto_cleanup:
            AccountStateMachine.require(account.status, IsbOu.CLEAN_UP)
            steps.append(
                self.context.ou_service.transactional_move_account(account, account.status, IsbOu.CLEAN_UP)
            )
            events.append(
                CleanAccountRequest(
                    account_id=account.aws_account_id, reason=CleanupReason.LEASE_TERMINATION
                )
            )
        steps.append(
            self.context.lease_store.transactional_update(
                lease.model_copy(
                    update={
                        "status": expired_status,
                        "end_date": now,
                        "ttl": calculate_ttl_in_epoch_seconds(self.context.lease_config.ttl_days, now),
                    }
                )
            )
        )
        results = await Transaction(*steps, logger=self.logger).complete()
        updated: Lease = results[-1]

        await self.context.idc_service.revoke_all_user_access(account.aws_account_id)

        events.append(
            LeaseTerminated(
                lease_id=lease.key,
                account_id=account.aws_account_id,
                reason=LeaseTerminatedReason(type=expired_status),
            )
        )
        start_date = as_utc(lease.start_date)
        log.info(
            "lease_terminated",
            user=user.email,
            sent_for_cleanup=auto_cleanup,
            start_date=start_date.isoformat() if start_date else None,
            termination_date=now.isoformat(),
            max_budget=lease.max_spend,
            actual_spend=lease.total_cost_accrued,
            max_duration_hours=lease.lease_duration_in_hours,
            actual_duration_hours=round(hours_between(start_date, now), 2) if start_date else None,
            reason_for_termination=expired_status.value,
            lease_id=lease.uuid,
            user_email=lease.user_email,
            lease_status=updated.status.value,
        )
        await self._publish(*events)
        return updated

    @log_errors
    async def deny_lease(self, lease: Lease, denier: IsbUser) -> Lease:
        LeaseStateMachine.require_pending(lease)
        result = await self.context.lease_store.update(
            lease.model_copy(
                update={
                    "status": LeaseStatus.APPROVAL_DENIED,
                    "approved_by": denier.email,
                    "ttl": calculate_ttl_in_epoch_seconds(
                        self.context.lease_config.ttl_days, self._now()
                    ),
                }
            )
        )
        self.logger.info(
            "lease_denied", denied_by=denier.email, **searchable_lease_properties(result.new_item)
        )
        await self._publish(
            LeaseDenied(lease_id=lease.uuid, user_email=lease.user_email, denied_by=denier.email)
        )
        return result.new_item

