"""FastAPI admin server for the sandbox account pool.

Exposes the orchestrator's operations over HTTP:
- Account onboarding, ejection, quarantine and cleanup retry
- Lease templates
- Lease request, approval, denial, freeze, unfreeze, termination, reset
- A monitoring scan that turns a cost report into alerts

Domain errors map to HTTP statuses in one exception handler; routes hold no
lifecycle logic of their own.
"""

from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from sandpool import __version__
from sandpool.config import get_settings
from sandpool.context import SandboxContext, build_default_context
from sandpool.db import close_db, init_db
from sandpool.errors import (
    AccountInCleanUpError,
    AccountNotInActiveError,
    AccountNotInFrozenError,
    AccountNotInQuarantineError,
    BlueprintValidationError,
    ConcurrentModificationError,
    CouldNotFindAccountError,
    CouldNotRetrieveUserError,
    IllegalAccountTransitionError,
    InvalidLeaseStatusError,
    ItemNotFoundError,
    LeaseNotMonitoredError,
    LeaseNotPendingError,
    LeaseNotProvisioningError,
    MaxNumberOfLeasesExceededError,
    NoAccountsAvailableError,
    OuPreconditionFailedError,
    SandboxError,
    UnknownItemError,
)
from sandpool.events import LeaseFrozenReason
from sandpool.logging import configure_logging, get_logger
from sandpool.metrics import metrics
from sandpool.middleware import RequestTracingMiddleware
from sandpool.models import (
    IsbOu,
    IsbUser,
    Lease,
    LeaseKey,
    LeaseStatus,
    LeaseTemplate,
    PaginatedQueryResult,
    SandboxAccount,
)
from sandpool.monitoring import LeaseAlertHandler, LeaseMonitor
from sandpool.orchestrator import LeaseOrchestrator
from sandpool.schemas import (
    AccountListResponse,
    AccountRegisterRequest,
    ApproveRequest,
    DenyRequest,
    EjectResponse,
    FreezeRequest,
    LeaseCreateRequest,
    LeaseListResponse,
    LeaseTemplateCreate,
    LeaseTemplateListResponse,
    MonitoringScanRequest,
    MonitoringScanResponse,
    QuarantineRequest,
    ResetRequest,
    TerminateRequest,
)

logger = get_logger(__name__)

T = TypeVar("T")

ERROR_STATUS_CODES: dict[type[SandboxError], int] = {
    CouldNotFindAccountError: status.HTTP_404_NOT_FOUND,
    CouldNotRetrieveUserError: status.HTTP_404_NOT_FOUND,
    ItemNotFoundError: status.HTTP_404_NOT_FOUND,
    UnknownItemError: status.HTTP_404_NOT_FOUND,
    AccountInCleanUpError: status.HTTP_409_CONFLICT,
    AccountNotInActiveError: status.HTTP_409_CONFLICT,
    AccountNotInFrozenError: status.HTTP_409_CONFLICT,
    AccountNotInQuarantineError: status.HTTP_409_CONFLICT,
    ConcurrentModificationError: status.HTTP_409_CONFLICT,
    IllegalAccountTransitionError: status.HTTP_409_CONFLICT,
    LeaseNotMonitoredError: status.HTTP_409_CONFLICT,
    LeaseNotPendingError: status.HTTP_409_CONFLICT,
    LeaseNotProvisioningError: status.HTTP_409_CONFLICT,
    MaxNumberOfLeasesExceededError: status.HTTP_409_CONFLICT,
    OuPreconditionFailedError: status.HTTP_409_CONFLICT,
    BlueprintValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidLeaseStatusError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NoAccountsAvailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(error: SandboxError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def get_context(request: Request) -> SandboxContext:
    return request.app.state.context


def get_orchestrator(request: Request) -> LeaseOrchestrator:
    return request.app.state.orchestrator


async def _page(query: Callable[[], Awaitable[PaginatedQueryResult[T]]]) -> PaginatedQueryResult[T]:
    try:
        return await query()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


def create_app(context: SandboxContext | None = None, engine: AsyncEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        context: Collaborators to serve; built from settings at startup when omitted.
        engine: Engine whose tables are created at startup (defaults to the global engine).
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(
            json_format=not settings.debug,
            level="DEBUG" if settings.debug else settings.log_level,
        )
        logger.info(
            "server_starting",
            version=__version__,
            host=settings.host,
            port=settings.port,
            debug=settings.debug,
        )
        logger.info("database_init", database_url=settings.database_url)
        await init_db(engine)
        logger.info("database_ready")

        app.state.context = context or build_default_context(settings, engine)
        app.state.orchestrator = LeaseOrchestrator(app.state.context)
        yield
        aclose = getattr(app.state.context.events, "aclose", None)
        if aclose is not None:
            await aclose()
        if engine is None:
            await close_db()
        else:
            await engine.dispose()
        logger.info("server_shutdown")

    app = FastAPI(
        title="Sandpool",
        description="Lease and account lifecycle for pooled sandbox accounts",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(RequestTracingMiddleware)

    @app.exception_handler(SandboxError)
    async def sandbox_error_handler(request: Request, exc: SandboxError) -> JSONResponse:
        return JSONResponse(
            status_code=status_code_for(exc),
            content={"error": exc.kind, "detail": str(exc)},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.get("/metrics", include_in_schema=False)
    async def get_metrics() -> PlainTextResponse:
        return PlainTextResponse(
            content=metrics.to_prometheus(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    @app.get("/metrics/json")
    async def get_metrics_json() -> dict:
        return metrics.get_stats()

    # Accounts

    @app.post("/v1/accounts", response_model=SandboxAccount, status_code=status.HTTP_201_CREATED)
    async def register_account(
        request: AccountRegisterRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> SandboxAccount:
        """Onboard an account from the Entry unit into cleanup."""
        return await orchestrator.register_account(request.aws_account_id)

    @app.get("/v1/accounts", response_model=AccountListResponse)
    async def list_accounts(
        account_status: IsbOu | None = Query(default=None, alias="status"),
        page_size: int | None = Query(default=None, ge=1, le=500),
        page_identifier: str | None = None,
        context: SandboxContext = Depends(get_context),
    ) -> AccountListResponse:
        store = context.account_store
        if account_status is None:
            result = await _page(lambda: store.find_all(page_size, page_identifier))
        else:
            result = await _page(lambda: store.find_by_status(account_status, page_size, page_identifier))
        return AccountListResponse(accounts=result.result, next_page_identifier=result.next_page_identifier)

    @app.get("/v1/accounts/{account_id}", response_model=SandboxAccount)
    async def get_account(account_id: str, context: SandboxContext = Depends(get_context)) -> SandboxAccount:
        account = await context.account_store.get(account_id)
        if account is None:
            raise HTTPException(status_code=404, detail=f"Account not found: {account_id}")
        return account

    @app.post("/v1/accounts/{account_id}/eject", response_model=EjectResponse)
    async def eject_account(
        account_id: str,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> EjectResponse:
        account = await orchestrator.context.account_store.get(account_id)
        if account is None:
            raise HTTPException(status_code=404, detail=f"Account not found: {account_id}")
        await orchestrator.eject_account(account)
        return EjectResponse(aws_account_id=account_id)

    @app.post("/v1/accounts/{account_id}/quarantine", response_model=SandboxAccount)
    async def quarantine_account(
        account_id: str,
        request: QuarantineRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> SandboxAccount:
        """Quarantine an account, creating its record if it has none.

        ``current_ou`` is required for accounts without a record.
        """
        current_ou = request.current_ou
        if current_ou is None:
            account = await orchestrator.context.account_store.get(account_id)
            if account is None:
                raise HTTPException(
                    status_code=422,
                    detail="current_ou is required for accounts without a record",
                )
            current_ou = account.status
        return await orchestrator.quarantine_account(account_id, current_ou, request.reason)

    @app.post("/v1/accounts/{account_id}/retry-cleanup", response_model=SandboxAccount)
    async def retry_cleanup(
        account_id: str,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> SandboxAccount:
        account = await orchestrator.context.account_store.get(account_id)
        if account is None:
            raise HTTPException(status_code=404, detail=f"Account not found: {account_id}")
        return await orchestrator.retry_cleanup(account)

    # Lease templates

    @app.post("/v1/lease-templates", response_model=LeaseTemplate, status_code=status.HTTP_201_CREATED)
    async def create_lease_template(
        request: LeaseTemplateCreate,
        context: SandboxContext = Depends(get_context),
    ) -> LeaseTemplate:
        template = await context.template_store.create(request.to_template())
        logger.info("lease_template_created", lease_template_uuid=template.uuid, name=template.name)
        return template

    @app.get("/v1/lease-templates", response_model=LeaseTemplateListResponse)
    async def list_lease_templates(
        page_size: int | None = Query(default=None, ge=1, le=500),
        page_identifier: str | None = None,
        context: SandboxContext = Depends(get_context),
    ) -> LeaseTemplateListResponse:
        result = await _page(lambda: context.template_store.find_all(page_size, page_identifier))
        return LeaseTemplateListResponse(
            lease_templates=result.result,
            next_page_identifier=result.next_page_identifier,
        )

    @app.get("/v1/lease-templates/{template_uuid}", response_model=LeaseTemplate)
    async def get_lease_template(
        template_uuid: str,
        context: SandboxContext = Depends(get_context),
    ) -> LeaseTemplate:
        template = await context.template_store.get(template_uuid)
        if template is None:
            raise HTTPException(status_code=404, detail=f"Lease template not found: {template_uuid}")
        return template

    # Leases

    async def load_lease(user_email: str, lease_uuid: str, context: SandboxContext) -> Lease:
        lease = await context.lease_store.get(LeaseKey(user_email=user_email, uuid=lease_uuid))
        if lease is None:
            raise HTTPException(status_code=404, detail=f"Lease not found: {lease_uuid}")
        return lease

    @app.post("/v1/leases", response_model=Lease, status_code=status.HTTP_201_CREATED)
    async def request_lease(
        request: LeaseCreateRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> Lease:
        """Request a lease from a template.

        Templates without approval, and assignments made by an administrator,
        are approved immediately.
        """
        context = orchestrator.context
        template = await context.template_store.get(request.lease_template_uuid)
        if template is None:
            raise ItemNotFoundError(f"Lease template not found: {request.lease_template_uuid}")
        user = await context.idc_service.get_user_from_email(request.user_email)
        if user is None:
            raise CouldNotRetrieveUserError("Unable to retrieve user information.")
        return await orchestrator.request_lease(
            template,
            user,
            comments=request.comments,
            created_by=request.created_by,
        )

    @app.get("/v1/leases", response_model=LeaseListResponse)
    async def list_leases(
        user_email: str | None = None,
        lease_status: list[LeaseStatus] | None = Query(default=None, alias="status"),
        page_size: int | None = Query(default=None, ge=1, le=500),
        page_identifier: str | None = None,
        context: SandboxContext = Depends(get_context),
    ) -> LeaseListResponse:
        store = context.lease_store
        if user_email is not None:
            result = await _page(lambda: store.find_by_user_email(user_email, page_size, page_identifier))
            leases = [lease for lease in result.result if not lease_status or lease.status in lease_status]
        elif lease_status:
            result = await _page(lambda: store.find_by_status(lease_status, page_size, page_identifier))
            leases = result.result
        else:
            result = await _page(lambda: store.find_all(page_size, page_identifier))
            leases = result.result
        return LeaseListResponse(leases=leases, next_page_identifier=result.next_page_identifier)

    @app.get("/v1/leases/{user_email}/{lease_uuid}", response_model=Lease)
    async def get_lease(user_email: str, lease_uuid: str, context: SandboxContext = Depends(get_context)) -> Lease:
        return await load_lease(user_email, lease_uuid, context)

    @app.post("/v1/leases/{user_email}/{lease_uuid}/approve", response_model=Lease)
    async def approve_lease(
        user_email: str,
        lease_uuid: str,
        request: ApproveRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> Lease:
        lease = await load_lease(user_email, lease_uuid, orchestrator.context)
        return await orchestrator.approve_lease(lease, request.approver)

    @app.post("/v1/leases/{user_email}/{lease_uuid}/deny", response_model=Lease)
    async def deny_lease(
        user_email: str,
        lease_uuid: str,
        request: DenyRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> Lease:
        lease = await load_lease(user_email, lease_uuid, orchestrator.context)
        denier = await orchestrator.context.idc_service.get_user_from_email(request.denier_email)
        return await orchestrator.deny_lease(lease, denier or IsbUser(email=request.denier_email))

    @app.post("/v1/leases/{user_email}/{lease_uuid}/freeze", response_model=Lease)
    async def freeze_lease(
        user_email: str,
        lease_uuid: str,
        request: FreezeRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> Lease:
        lease = await load_lease(user_email, lease_uuid, orchestrator.context)
        reason = LeaseFrozenReason(type=request.reason_type, comment=request.comment)
        return await orchestrator.freeze_lease(lease, reason)

    @app.post("/v1/leases/{user_email}/{lease_uuid}/unfreeze", response_model=Lease)
    async def unfreeze_lease(
        user_email: str,
        lease_uuid: str,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> Lease:
        lease = await load_lease(user_email, lease_uuid, orchestrator.context)
        return await orchestrator.unfreeze_lease(lease)

    @app.post("/v1/leases/{user_email}/{lease_uuid}/terminate", response_model=Lease)
    async def terminate_lease(
        user_email: str,
        lease_uuid: str,
        request: TerminateRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> Lease:
        lease = await load_lease(user_email, lease_uuid, orchestrator.context)
        return await orchestrator.terminate_lease(lease, request.status, auto_cleanup=request.auto_cleanup)

    @app.post("/v1/leases/{user_email}/{lease_uuid}/publish", response_model=Lease)
    async def publish_lease(
        user_email: str,
        lease_uuid: str,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> Lease:
        """Activate a provisioned lease once its blueprint has deployed."""
        lease = await load_lease(user_email, lease_uuid, orchestrator.context)
        return await orchestrator.publish_lease(lease)

    @app.post("/v1/leases/{user_email}/{lease_uuid}/reset", response_model=Lease)
    async def reset_lease(
        user_email: str,
        lease_uuid: str,
        request: ResetRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> Lease:
        """Send a lease whose provisioning failed back to PendingApproval."""
        lease = await load_lease(user_email, lease_uuid, orchestrator.context)
        return await orchestrator.reset_lease(lease, request.blueprint_name)

    # Monitoring

    @app.post("/v1/monitoring/scan", response_model=MonitoringScanResponse)
    async def monitoring_scan(
        request: MonitoringScanRequest,
        orchestrator: LeaseOrchestrator = Depends(get_orchestrator),
    ) -> MonitoringScanResponse:
        """Evaluate monitored leases against a cost report.

        With ``apply_transitions`` the freeze and terminate alerts are acted on
        immediately.
        """
        events = await LeaseMonitor(orchestrator.context).scan(request.costs)
        transitioned: list[Lease] = []
        if request.apply_transitions:
            handler = LeaseAlertHandler(orchestrator)
            for event in events:
                lease = await handler.handle(event)
                if lease is not None:
                    transitioned.append(lease)
        return MonitoringScanResponse(
            events=[{"detail_type": event.detail_type, "detail": event.to_detail()} for event in events],
            transitioned_leases=transitioned,
        )

    return app


# Default app instance for uvicorn
app = create_app()
