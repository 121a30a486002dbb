"""Request and response schemas for the admin HTTP API."""

from typing import Any

from pydantic import BaseModel, Field

from sandpool.models import (
    BudgetThreshold,
    DurationThreshold,
    FreezeReasonType,
    IsbOu,
    Lease,
    LeaseStatus,
    LeaseTemplate,
    SandboxAccount,
    Visibility,
)


class ErrorResponse(BaseModel):
    """Body returned for orchestration errors."""

    error: str = Field(..., description="Error kind, e.g. 'NoAccountsAvailable'")
    detail: str


# Accounts


class AccountRegisterRequest(BaseModel):
    aws_account_id: str = Field(..., min_length=1, description="Account to onboard from the Entry unit")


class AccountListResponse(BaseModel):
    accounts: list[SandboxAccount]
    next_page_identifier: str | None = None


class QuarantineRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    current_ou: IsbOu | None = Field(
        default=None,
        description="Unit the account is in now; defaults to the recorded status",
    )


class EjectResponse(BaseModel):
    aws_account_id: str
    ejected: bool = True


# Lease templates


class LeaseTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: str | None = None
    requires_approval: bool = True
    created_by: str
    visibility: Visibility = Visibility.PUBLIC
    max_spend: float | None = Field(default=None, gt=0)
    budget_thresholds: list[BudgetThreshold] = Field(default_factory=list)
    lease_duration_in_hours: float | None = Field(default=None, gt=0)
    duration_thresholds: list[DurationThreshold] = Field(default_factory=list)
    blueprint_id: str | None = None
    blueprint_name: str | None = None
    cost_report_group: str | None = None

    def to_template(self) -> LeaseTemplate:
        return LeaseTemplate(**self.model_dump())


class LeaseTemplateListResponse(BaseModel):
    lease_templates: list[LeaseTemplate]
    next_page_identifier: str | None = None


# Leases


class LeaseCreateRequest(BaseModel):
    lease_template_uuid: str
    user_email: str
    comments: str | None = None
    created_by: str | None = Field(
        default=None,
        description="Set when an administrator assigns the lease; assignments skip approval",
    )


class LeaseListResponse(BaseModel):
    leases: list[Lease]
    next_page_identifier: str | None = None


class ApproveRequest(BaseModel):
    approver: str = Field(..., min_length=1)


class DenyRequest(BaseModel):
    denier_email: str = Field(..., min_length=1)


class FreezeRequest(BaseModel):
    reason_type: FreezeReasonType = FreezeReasonType.MANUALLY_FROZEN
    comment: str | None = None


class TerminateRequest(BaseModel):
    status: LeaseStatus = LeaseStatus.MANUALLY_TERMINATED
    auto_cleanup: bool = True


class ResetRequest(BaseModel):
    blueprint_name: str = Field(..., min_length=1)


class MonitoringScanRequest(BaseModel):
    costs: dict[str, float] = Field(default_factory=dict, description="Spend to date by account id")
    apply_transitions: bool = False


class MonitoringScanResponse(BaseModel):
    events: list[dict[str, Any]]
    transitioned_leases: list[Lease] = Field(default_factory=list)
