"""Shared test fixtures for pytest."""

import random
from datetime import UTC, datetime

import pytest
import pytest_asyncio

from sandpool.context import LeaseConfig, SandboxContext
from sandpool.db import SqlLeaseStore, SqlLeaseTemplateStore, SqlSandboxAccountStore, create_engine, init_db
from sandpool.models import (
    BudgetThreshold,
    CleanupExecutionContext,
    DurationThreshold,
    IsbOu,
    IsbUser,
    LeaseTemplate,
    OrgAccount,
    SandboxAccount,
    ThresholdAction,
)
from sandpool.orchestrator import LeaseOrchestrator
from sandpool.pool import AccountPoolSelector
from sandpool.services import (
    BlueprintDeploymentService,
    InMemoryBlueprintStore,
    InMemoryEventBus,
    InMemoryIdcService,
    InMemoryOrganizations,
    RetryPolicy,
    SandboxOuService,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

OU_IDS = {ou: f"ou-{ou.value.lower()}" for ou in IsbOu}

USERS = [
    IsbUser(email="alice@example.com", user_id="u-alice", display_name="Alice"),
    IsbUser(email="bob@example.com", user_id="u-bob", display_name="Bob"),
    IsbUser(email="approver@example.com", user_id="u-approver", display_name="Approver"),
]


def build_context(engine, organizations, idc, events, blueprint_store) -> SandboxContext:
    """Context over SQL stores on ``engine`` and in-memory collaborators."""
    account_store = SqlSandboxAccountStore(engine)
    return SandboxContext(
        lease_store=SqlLeaseStore(engine),
        account_store=account_store,
        template_store=SqlLeaseTemplateStore(engine),
        ou_service=SandboxOuService(
            organizations,
            account_store,
            OU_IDS,
            RetryPolicy(max_attempts=3, backoff_ms=0),
        ),
        idc_service=idc,
        events=events,
        blueprint_service=BlueprintDeploymentService(blueprint_store),
        lease_config=LeaseConfig(max_leases_per_user=3, ttl_days=30),
        pool_selector=AccountPoolSelector(rng=random.Random(42)),
        clock=lambda: NOW,
    )


def template_fields(**overrides) -> dict:
    fields = {
        "name": "Standard",
        "created_by": "admin@example.com",
        "requires_approval": True,
        "max_spend": 100.0,
        "lease_duration_in_hours": 24,
        "budget_thresholds": [BudgetThreshold(dollars_spent=50, action=ThresholdAction.ALERT)],
        "duration_thresholds": [DurationThreshold(hours_remaining=6, action=ThresholdAction.ALERT)],
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def now():
    """The frozen clock value every test context reports."""
    return NOW


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database for each test."""
    engine = create_engine("sqlite+aiosqlite://")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def organizations():
    return InMemoryOrganizations()


@pytest.fixture
def idc():
    return InMemoryIdcService(users=USERS)


@pytest.fixture
def events():
    return InMemoryEventBus()


@pytest.fixture
def blueprint_store():
    return InMemoryBlueprintStore()


@pytest.fixture
def context(engine, organizations, idc, events, blueprint_store):
    return build_context(engine, organizations, idc, events, blueprint_store)


@pytest.fixture
def orchestrator(context):
    return LeaseOrchestrator(context)


def _account_seeder(account_store, organizations):
    async def seed(
        account_id: str,
        status: IsbOu = IsbOu.AVAILABLE,
        cleaned_at: datetime | None = None,
        record: bool = True,
    ) -> SandboxAccount:
        organizations.add_account(
            OrgAccount(account_id=account_id, name=f"pool-{account_id}", email=f"{account_id}@pool.example.com"),
            OU_IDS[status],
        )
        account = SandboxAccount(
            aws_account_id=account_id,
            name=f"pool-{account_id}",
            status=status,
            cleanup_execution_context=(
                CleanupExecutionContext(
                    execution_arn=f"arn:cleanup:{account_id}",
                    execution_start_time=cleaned_at,
                )
                if cleaned_at is not None
                else None
            ),
        )
        if not record:
            return account
        return (await account_store.put(account)).new_item

    return seed


@pytest.fixture
def seed_account(context, organizations):
    """Place an account in the organization and record it with ``status``."""
    return _account_seeder(context.account_store, organizations)


@pytest.fixture
def seed_template(context):
    async def seed(**overrides) -> LeaseTemplate:
        return await context.template_store.create(LeaseTemplate(**template_fields(**overrides)))

    return seed


@pytest.fixture
def client(monkeypatch, organizations, idc, events, blueprint_store):
    """Create a test client for the server with an isolated in-memory database."""
    import sandpool.config
    import sandpool.db.engine

    monkeypatch.setenv("SANDPOOL_LOG_LEVEL", "WARNING")
    sandpool.config.get_settings.cache_clear()
    sandpool.db.engine._engine = None

    # Import create_app AFTER patching
    from fastapi.testclient import TestClient

    from sandpool.server import create_app

    engine = create_engine("sqlite+aiosqlite://")
    context = build_context(engine, organizations, idc, events, blueprint_store)
    app = create_app(context=context, engine=engine)
    with TestClient(app) as test_client:
        yield test_client

    sandpool.config.get_settings.cache_clear()
    sandpool.db.engine._engine = None


@pytest.fixture
def client_seed_account(client, organizations):
    """Seed accounts into the server's database from sync tests."""
    seed = _account_seeder(client.app.state.context.account_store, organizations)

    def run(
        account_id: str,
        status: IsbOu = IsbOu.AVAILABLE,
        cleaned_at: datetime | None = None,
        record: bool = True,
    ):
        return client.portal.call(seed, account_id, status, cleaned_at, record)

    return run
