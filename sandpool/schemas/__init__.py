"""Admin API schemas."""

from sandpool.schemas.api import (
    AccountListResponse,
    AccountRegisterRequest,
    ApproveRequest,
    DenyRequest,
    EjectResponse,
    ErrorResponse,
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

__all__ = [
    "AccountListResponse",
    "AccountRegisterRequest",
    "ApproveRequest",
    "DenyRequest",
    "EjectResponse",
    "ErrorResponse",
    "FreezeRequest",
    "LeaseCreateRequest",
    "LeaseListResponse",
    "LeaseTemplateCreate",
    "LeaseTemplateListResponse",
    "MonitoringScanRequest",
    "MonitoringScanResponse",
    "QuarantineRequest",
    "ResetRequest",
    "TerminateRequest",
]
