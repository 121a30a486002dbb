"""Database module for Sandpool persistence."""

from sandpool.db.engine import close_db, create_engine, get_engine, get_session, init_db
from sandpool.db.models import LeaseRow, LeaseTemplateRow, SandboxAccountRow
from sandpool.db.paging import collect, stream
from sandpool.db.stores import SqlLeaseStore, SqlLeaseTemplateStore, SqlSandboxAccountStore

__all__ = [
    "close_db",
    "collect",
    "create_engine",
    "get_engine",
    "get_session",
    "init_db",
    "stream",
    "LeaseRow",
    "LeaseTemplateRow",
    "SandboxAccountRow",
    "SqlLeaseStore",
    "SqlLeaseTemplateStore",
    "SqlSandboxAccountStore",
]
