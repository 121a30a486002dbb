"""Database tables for Sandpool records.

Each row keeps the queried attributes in indexed columns and the full
record as a JSON document. ``version`` is the optimistic-concurrency token
surfaced to callers as ``meta.version``.
"""

from datetime import datetime
from typing import Any

from sqlmodel import JSON, Column, Field, SQLModel

from sandpool.timeutils import utc_now


class LeaseRow(SQLModel, table=True):
    """A lease, keyed by (user_email, uuid)."""

    __tablename__ = "leases"
    __table_args__ = {"extend_existing": True}

    user_email: str = Field(primary_key=True)
    uuid: str = Field(primary_key=True)
    status: str = Field(index=True)
    aws_account_id: str | None = Field(default=None, index=True)
    original_lease_template_uuid: str = Field(index=True)
    document: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    version: int = Field(default=1)
    created_time: datetime = Field(default_factory=utc_now)
    last_edit_time: datetime = Field(default_factory=utc_now)


class SandboxAccountRow(SQLModel, table=True):
    """A pooled account."""

    __tablename__ = "sandbox_accounts"
    __table_args__ = {"extend_existing": True}

    aws_account_id: str = Field(primary_key=True)
    status: str = Field(index=True)
    document: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    version: int = Field(default=1)
    created_time: datetime = Field(default_factory=utc_now)
    last_edit_time: datetime = Field(default_factory=utc_now)


class LeaseTemplateRow(SQLModel, table=True):
    __tablename__ = "lease_templates"
    __table_args__ = {"extend_existing": True}

    uuid: str = Field(primary_key=True)
    name: str = Field(index=True)
    document: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    version: int = Field(default=1)
    created_time: datetime = Field(default_factory=utc_now)
    last_edit_time: datetime = Field(default_factory=utc_now)
