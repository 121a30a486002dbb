"""Collaborators an orchestrator works with, and their default wiring."""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from sandpool.config import Settings, get_settings
from sandpool.db import SqlLeaseStore, SqlLeaseTemplateStore, SqlSandboxAccountStore
from sandpool.interfaces import (
    BlueprintDeployer,
    EventPublisher,
    IdcService,
    LeaseStore,
    LeaseTemplateStore,
    OuService,
    SandboxAccountStore,
)
from sandpool.logging import get_logger
from sandpool.pool import AccountPoolSelector
from sandpool.services import (
    BlueprintDeploymentService,
    HttpEventPublisher,
    InMemoryBlueprintStore,
    InMemoryEventBus,
    InMemoryIdcService,
    InMemoryOrganizations,
    RetryPolicy,
    SandboxOuService,
    ou_ids_from_settings,
)
from sandpool.timeutils import utc_now


@dataclass(frozen=True)
class LeaseConfig:
    """Lease policy shared by every operation."""

    max_leases_per_user: int = 3
    ttl_days: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> LeaseConfig:
        return cls(max_leases_per_user=settings.max_leases_per_user, ttl_days=settings.lease_ttl_days)


@dataclass
class SandboxContext:
    lease_store: LeaseStore
    account_store: SandboxAccountStore
    template_store: LeaseTemplateStore
    ou_service: OuService
    idc_service: IdcService
    events: EventPublisher
    blueprint_service: BlueprintDeployer
    lease_config: LeaseConfig = field(default_factory=LeaseConfig)
    pool_selector: AccountPoolSelector = field(default_factory=AccountPoolSelector)
    logger: structlog.stdlib.BoundLogger = field(default_factory=lambda: get_logger("sandpool.orchestrator"))
    clock: Callable[[], datetime] = utc_now


def build_default_context(
    settings: Settings | None = None,
    engine: AsyncEngine | None = None,
    rng: random.Random | None = None,
) -> SandboxContext:
    """Wire SQL stores with the in-process organization, identity and blueprint services.

    Events go to ``settings.events_url`` when set, otherwise to an in-memory bus.
    """
    settings = settings or get_settings()
    account_store = SqlSandboxAccountStore(engine)
    blueprint_store = InMemoryBlueprintStore()

    events: EventPublisher
    if settings.events_url:
        events = HttpEventPublisher(settings.events_url, source=settings.event_source)
    else:
        events = InMemoryEventBus()

    return SandboxContext(
        lease_store=SqlLeaseStore(engine),
        account_store=account_store,
        template_store=SqlLeaseTemplateStore(engine),
        ou_service=SandboxOuService(
            InMemoryOrganizations(),
            account_store,
            ou_ids_from_settings(settings),
            RetryPolicy(
                max_attempts=settings.ou_move_max_attempts,
                backoff_ms=settings.ou_move_backoff_ms,
            ),
        ),
        idc_service=InMemoryIdcService(),
        events=events,
        blueprint_service=BlueprintDeploymentService(blueprint_store),
        lease_config=LeaseConfig.from_settings(settings),
        pool_selector=AccountPoolSelector(
            rng=rng,
            cooldown=timedelta(hours=settings.cleanup_cooldown_hours),
        ),
    )
