"""Pooled sandbox account records."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from sandpool.models.common import ItemMetadata
from sandpool.models.enums import IsbOu


class CleanupExecutionContext(BaseModel):
    """The most recent cleanup run for an account."""

    execution_arn: str
    execution_start_time: datetime


class SandboxAccount(BaseModel):
    """A pooled account; ``status`` mirrors its organizational unit."""

    aws_account_id: str
    email: str | None = None
    name: str | None = None
    status: IsbOu
    drift_at_last_scan: bool = False
    cleanup_execution_context: CleanupExecutionContext | None = None

    meta: ItemMetadata | None = None


class OrgAccount(BaseModel):
    """An account as described by the organizations inventory."""

    account_id: str
    name: str | None = None
    email: str | None = None
