"""CLI interface for Sandpool.

Provides commands for:
- Starting the admin server
- Creating the database tables
- Inspecting accounts and leases
- Running a lease monitoring scan from a cost report
"""

import asyncio
import json
from pathlib import Path

import click
import uvicorn

from sandpool import __version__
from sandpool.config import get_settings
from sandpool.context import build_default_context
from sandpool.db import close_db, collect, get_engine, init_db
from sandpool.errors import SandboxError
from sandpool.logging import configure_logging
from sandpool.models import IsbOu, LeaseStatus
from sandpool.monitoring import LeaseAlertHandler, LeaseMonitor
from sandpool.orchestrator import LeaseOrchestrator


def _run_server(host: str | None, port: int | None, reload: bool) -> None:
    settings = get_settings()

    actual_host = host or settings.host
    actual_port = port or settings.port

    click.echo(f"Starting Sandpool server on {actual_host}:{actual_port}")

    uvicorn.run(
        "sandpool.server:app",
        host=actual_host,
        port=actual_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def _load_costs(path: Path) -> dict[str, float]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Cost report is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise click.ClickException("Cost report must map account ids to spend.")
    try:
        return {str(account_id): float(cost) for account_id, cost in data.items()}
    except (TypeError, ValueError) as exc:
        raise click.ClickException(f"Cost report has a non-numeric spend: {exc}") from exc


@click.group()
@click.version_option(version=__version__, prog_name="sandpool")
def cli() -> None:
    """Sandpool - lease and account lifecycle for pooled sandbox accounts."""
    pass


@cli.command()
@click.option("--host", "-h", default=None, help="Host to bind to")
@click.option("--port", "-p", default=None, type=int, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the admin server."""
    _run_server(host, port, reload)


@cli.command("init-db")
def init_db_command() -> None:
    """Create the database tables."""

    async def run() -> None:
        try:
            await init_db()
        finally:
            await close_db()

    asyncio.run(run())
    click.echo(click.style(f"✓ Database ready at {get_settings().database_url}", fg="green"))


@cli.command()
def version() -> None:
    """Show the installed version."""
    click.echo(f"sandpool {__version__}")


@cli.command()
def info() -> None:
    """Show configuration."""
    settings = get_settings()

    click.echo("Sandpool Configuration:\n")
    click.echo(f"  Host:       {settings.host}")
    click.echo(f"  Port:       {settings.port}")
    click.echo(f"  Debug:      {settings.debug}")
    click.echo(f"  Log Level:  {settings.log_level}")
    click.echo(f"  Database:   {settings.database_url}")
    click.echo(f"  Events:     {settings.events_url or 'in-memory'}")
    click.echo(f"  Max leases: {settings.max_leases_per_user} per user")
    click.echo(f"  Lease TTL:  {settings.lease_ttl_days} days")
    click.echo(f"  Cooldown:   {settings.cleanup_cooldown_hours} hours")


@cli.group()
def accounts() -> None:
    """Account pool commands."""
    pass


@accounts.command("list")
@click.option(
    "--status",
    "account_status",
    type=click.Choice([ou.value for ou in IsbOu]),
    default=None,
    help="Only accounts in this state",
)
def list_accounts(account_status: str | None) -> None:
    """List pooled accounts."""

    async def run():
        await init_db()
        try:
            store = build_default_context(engine=get_engine()).account_store
            if account_status is None:
                return await collect(lambda page: store.find_all(page_identifier=page))
            return await collect(lambda page: store.find_by_status(IsbOu(account_status), page_identifier=page))
        finally:
            await close_db()

    found = asyncio.run(run())
    if not found:
        click.echo("No accounts found.")
        return

    click.echo(f"Accounts ({len(found)}):\n")
    for account in found:
        click.echo(f"  {click.style(account.aws_account_id, fg='green', bold=True)}  {account.status.value}")
        if account.drift_at_last_scan:
            click.echo(click.style("    drift detected at last scan", fg="yellow"))


@cli.group()
def leases() -> None:
    """Lease commands."""
    pass


@leases.command("list")
@click.option("--user-email", default=None, help="Only leases for this user")
@click.option(
    "--status",
    "lease_status",
    type=click.Choice([s.value for s in LeaseStatus]),
    multiple=True,
    help="Only leases in this status (repeatable)",
)
def list_leases(user_email: str | None, lease_status: tuple[str, ...]) -> None:
    """List leases."""
    statuses = [LeaseStatus(s) for s in lease_status]

    async def run():
        await init_db()
        try:
            store = build_default_context(engine=get_engine()).lease_store
            if user_email is not None:
                found = await collect(lambda page: store.find_by_user_email(user_email, page_identifier=page))
                return [lease for lease in found if not statuses or lease.status in statuses]
            if statuses:
                return await collect(lambda page: store.find_by_status(statuses, page_identifier=page))
            return await collect(lambda page: store.find_all(page_identifier=page))
        finally:
            await close_db()

    found = asyncio.run(run())
    if not found:
        click.echo("No leases found.")
        return

    click.echo(f"Leases ({len(found)}):\n")
    for lease in found:
        click.echo(f"  {click.style(lease.uuid, fg='green', bold=True)}  {lease.status.value}")
        click.echo(f"    user: {lease.user_email}  account: {lease.aws_account_id or '-'}")
        click.echo(f"    spend: {lease.total_cost_accrued:.2f} / {lease.max_spend or 'unlimited'}")


@cli.command()
@click.argument("costs_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--apply", "apply_transitions", is_flag=True, help="Freeze or terminate leases as alerts demand")
def monitor(costs_file: Path, apply_transitions: bool) -> None:
    """Scan monitored leases against COSTS_FILE.

    COSTS_FILE is a JSON object mapping account ids to spend to date.
    """
    settings = get_settings()
    configure_logging(json_format=not settings.debug, level=settings.log_level)
    costs = _load_costs(costs_file)

    async def run():
        await init_db()
        try:
            context = build_default_context(settings, engine=get_engine())
            events = await LeaseMonitor(context).scan(costs)
            transitioned = []
            if apply_transitions:
                handler = LeaseAlertHandler(LeaseOrchestrator(context))
                for event in events:
                    lease = await handler.handle(event)
                    if lease is not None:
                        transitioned.append(lease)
            return events, transitioned
        finally:
            await close_db()

    try:
        events, transitioned = asyncio.run(run())
    except SandboxError as exc:
        raise click.ClickException(f"{exc.kind}: {exc}") from exc

    if not events:
        click.echo("No new lease alerts.")
        return

    click.echo(f"Lease alerts ({len(events)}):\n")
    for event in events:
        detail = event.to_detail()
        click.echo(f"  {click.style(event.detail_type, fg='yellow', bold=True)}")
        click.echo(f"    lease: {detail['lease_id']['uuid']}  account: {detail['account_id']}")
    for lease in transitioned:
        click.echo(click.style(f"✓ Lease {lease.uuid} is now {lease.status.value}", fg="green"))


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
