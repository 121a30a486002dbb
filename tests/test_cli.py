from __future__ import annotations

import asyncio
import json

import pytest
from click.testing import CliRunner

import sandpool.cli as cli
from sandpool import __version__
from sandpool.db import SqlLeaseStore, SqlSandboxAccountStore, create_engine, init_db
from sandpool.models import IsbOu, Lease, LeaseStatus, SandboxAccount


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    """Point the CLI at a fresh SQLite file."""
    import sandpool.config
    import sandpool.db.engine

    url = f"sqlite+aiosqlite:///{tmp_path / 'sandpool.db'}"
    monkeypatch.setenv("SANDPOOL_DATABASE_URL", url)
    monkeypatch.setenv("SANDPOOL_LOG_LEVEL", "WARNING")
    sandpool.config.get_settings.cache_clear()
    sandpool.db.engine._engine = None
    yield url
    sandpool.config.get_settings.cache_clear()
    sandpool.db.engine._engine = None


def seed(url: str, accounts=(), leases=()) -> None:
    async def run() -> None:
        engine = create_engine(url)
        await init_db(engine)
        for account in accounts:
            await SqlSandboxAccountStore(engine).put(account)
        for lease in leases:
            await SqlLeaseStore(engine).create(lease)
        await engine.dispose()

    asyncio.run(run())


def active_lease(uuid: str, account_id: str) -> Lease:
    return Lease(
        user_email="alice@example.com",
        uuid=uuid,
        status=LeaseStatus.ACTIVE,
        original_lease_template_uuid="tpl-1",
        original_lease_template_name="Standard",
        aws_account_id=account_id,
        max_spend=100,
    )


def test_version() -> None:
    result = CliRunner().invoke(cli.cli, ["version"])

    assert result.exit_code == 0
    assert result.output.strip() == f"sandpool {__version__}"


def test_info_shows_settings(database_url) -> None:
    result = CliRunner().invoke(cli.cli, ["info"])

    assert result.exit_code == 0
    assert "Sandpool Configuration" in result.output
    assert database_url in result.output
    assert "in-memory" in result.output


def test_serve_dispatches_to_uvicorn(monkeypatch, database_url) -> None:
    called: dict[str, object] = {}

    def fake_run(app, **kwargs):
        called["app"] = app
        called.update(kwargs)

    monkeypatch.setattr(cli.uvicorn, "run", fake_run)

    result = CliRunner().invoke(cli.cli, ["serve", "--port", "4000"])

    assert result.exit_code == 0
    assert called["app"] == "sandpool.server:app"
    assert called["port"] == 4000
    assert called["reload"] is False


def test_init_db_creates_file(tmp_path, database_url) -> None:
    result = CliRunner().invoke(cli.cli, ["init-db"])

    assert result.exit_code == 0
    assert (tmp_path / "sandpool.db").exists()


def test_accounts_list(database_url) -> None:
    seed(
        database_url,
        accounts=[
            SandboxAccount(aws_account_id="111", status=IsbOu.AVAILABLE),
            SandboxAccount(aws_account_id="222", status=IsbOu.QUARANTINE, drift_at_last_scan=True),
        ],
    )
    runner = CliRunner()

    everything = runner.invoke(cli.cli, ["accounts", "list"])
    quarantined = runner.invoke(cli.cli, ["accounts", "list", "--status", "Quarantine"])

    assert everything.exit_code == 0
    assert "Accounts (2)" in everything.output
    assert "Accounts (1)" in quarantined.output
    assert "222" in quarantined.output
    assert "drift detected" in quarantined.output


def test_accounts_list_empty(database_url) -> None:
    result = CliRunner().invoke(cli.cli, ["accounts", "list"])

    assert result.exit_code == 0
    assert "No accounts found." in result.output


def test_leases_list_filters(database_url) -> None:
    seed(
        database_url,
        leases=[
            active_lease("lease-1", "111"),
            Lease(
                user_email="bob@example.com",
                uuid="lease-2",
                original_lease_template_uuid="tpl-1",
                original_lease_template_name="Standard",
            ),
        ],
    )
    runner = CliRunner()

    pending = runner.invoke(cli.cli, ["leases", "list", "--status", "PendingApproval"])
    alice = runner.invoke(cli.cli, ["leases", "list", "--user-email", "alice@example.com"])

    assert "lease-2" in pending.output
    assert "lease-1" not in pending.output
    assert "Leases (1)" in alice.output
    assert "account: 111" in alice.output


def test_monitor_reports_alerts(tmp_path, database_url) -> None:
    seed(database_url, leases=[active_lease("lease-1", "111")])
    costs = tmp_path / "costs.json"
    costs.write_text(json.dumps({"111": 150}), encoding="utf-8")

    result = CliRunner().invoke(cli.cli, ["monitor", str(costs)])

    assert result.exit_code == 0
    assert "LeaseBudgetExceeded" in result.output
    assert "lease: lease-1" in result.output


def test_monitor_without_alerts(tmp_path, database_url) -> None:
    costs = tmp_path / "costs.json"
    costs.write_text("{}", encoding="utf-8")

    result = CliRunner().invoke(cli.cli, ["monitor", str(costs)])

    assert result.exit_code == 0
    assert "No new lease alerts." in result.output


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("not json", "not valid JSON"),
        ("[1, 2]", "must map account ids"),
        ('{"111": "lots"}', "non-numeric spend"),
    ],
)
def test_monitor_rejects_bad_cost_report(tmp_path, database_url, content, message) -> None:
    costs = tmp_path / "costs.json"
    costs.write_text(content, encoding="utf-8")

    result = CliRunner().invoke(cli.cli, ["monitor", str(costs)])

    assert result.exit_code == 1
    assert message in result.output
