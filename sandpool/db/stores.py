"""SQL-backed record stores with optimistic versioning.

``update`` checks the caller's ``meta.version`` against the stored row and
raises ``ConcurrentModificationError`` when it is stale; ``put`` overwrites
unconditionally and is what saga rollbacks use to restore the old item.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import SQLModel, select

from sandpool.db.engine import get_session
from sandpool.db.models import LeaseRow, LeaseTemplateRow, SandboxAccountRow
from sandpool.db.paging import decode_page_identifier, encode_page_identifier
from sandpool.errors import ConcurrentModificationError, UnknownItemError
from sandpool.logging import get_logger
from sandpool.models import (
    IsbOu,
    ItemMetadata,
    Lease,
    LeaseKey,
    LeaseStatus,
    LeaseTemplate,
    PaginatedQueryResult,
    PutResult,
    SandboxAccount,
)
from sandpool.timeutils import as_utc, utc_now
from sandpool.transactions import TransactionStep

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class _SqlStore(Generic[ModelT]):
    """Shared row <-> model plumbing for the concrete stores."""

    row_class: type[SQLModel]
    model_class: type[ModelT]
    entity_name: str = "item"

    def __init__(self, engine: AsyncEngine | None = None) -> None:
        self._engine = engine

    # Subclass hooks

    def _primary_key(self, item: ModelT) -> Any:
        raise NotImplementedError

    def _columns(self, item: ModelT) -> dict[str, Any]:
        raise NotImplementedError

    def _order_by(self) -> list[Any]:
        raise NotImplementedError

    # Conversion

    def _to_model(self, row: Any) -> ModelT:
        document = dict(row.document)
        document["meta"] = ItemMetadata(
            version=row.version,
            created_time=as_utc(row.created_time),
            last_edit_time=as_utc(row.last_edit_time),
        ).model_dump()
        return self.model_class.model_validate(document)

    def _write_row(self, row: Any, item: ModelT, version: int) -> None:
        for name, value in self._columns(item).items():
            setattr(row, name, value)
        row.document = item.model_dump(mode="json", exclude={"meta"})
        row.version = version
        row.last_edit_time = utc_now()

    # Operations

    async def _get(self, key: Any) -> ModelT | None:
        async with get_session(self._engine) as session:
            row = await session.get(self.row_class, key)
            return self._to_model(row) if row is not None else None

    async def _create(self, item: ModelT) -> ModelT:
        async with get_session(self._engine) as session:
            if await session.get(self.row_class, self._primary_key(item)) is not None:
                raise ConcurrentModificationError(
                    f"{self.entity_name} {self._primary_key(item)} already exists"
                )
            row = self.row_class(**self._columns(item))
            self._write_row(row, item, version=1)
            row.created_time = row.last_edit_time
            session.add(row)
            await session.flush()
            return self._to_model(row)

    async def _update(self, item: ModelT) -> PutResult[ModelT]:
        key = self._primary_key(item)
        async with get_session(self._engine) as session:
            row = await session.get(self.row_class, key)
            if row is None:
                raise UnknownItemError(f"Unknown {self.entity_name}: {key}")
            meta = getattr(item, "meta", None)
            if meta is not None and meta.version != row.version:
                raise ConcurrentModificationError(
                    f"{self.entity_name} {key} was modified "
                    f"(expected version {meta.version}, found {row.version})"
                )
            old_item = self._to_model(row)
            self._write_row(row, item, version=row.version + 1)
            await session.flush()
            return PutResult(new_item=self._to_model(row), old_item=old_item)

    async def _put(self, item: ModelT) -> PutResult[ModelT]:
        key = self._primary_key(item)
        async with get_session(self._engine) as session:
            row = await session.get(self.row_class, key)
            old_item = None
            if row is None:
                row = self.row_class(**self._columns(item))
                self._write_row(row, item, version=1)
                row.created_time = row.last_edit_time
                session.add(row)
            else:
                old_item = self._to_model(row)
                self._write_row(row, item, version=row.version + 1)
            await session.flush()
            return PutResult(new_item=self._to_model(row), old_item=old_item)

    async def _delete(self, key: Any) -> ModelT | None:
        async with get_session(self._engine) as session:
            row = await session.get(self.row_class, key)
            if row is None:
                return None
            old_item = self._to_model(row)
            await session.delete(row)
            return old_item

    async def _query(
        self,
        conditions: list[Any],
        page_size: int | None,
        page_identifier: str | None,
    ) -> PaginatedQueryResult[ModelT]:
        offset = decode_page_identifier(page_identifier)
        query = select(self.row_class)
        for condition in conditions:
            query = query.where(condition)
        query = query.order_by(*self._order_by()).offset(offset)
        if page_size is not None:
            # Fetch one extra row to learn whether another page exists
            query = query.limit(page_size + 1)

        async with get_session(self._engine) as session:
            rows = list((await session.execute(query)).scalars().all())

        next_page_identifier = None
        if page_size is not None and len(rows) > page_size:
            rows = rows[:page_size]
            next_page_identifier = encode_page_identifier(offset + page_size)
        return PaginatedQueryResult(
            result=[self._to_model(row) for row in rows],
            next_page_identifier=next_page_identifier,
        )

    def transactional_update(self, item: ModelT) -> TransactionStep:
        """Update as a saga step; rollback restores the replaced item."""
        applied: list[PutResult[ModelT]] = []

        async def commit() -> ModelT:
            result = await self._update(item)
            applied.append(result)
            return result.new_item

        async def rollback() -> None:
            if not applied:
                return
            result = applied.pop()
            if result.old_item is None:
                await self._delete(self._primary_key(item))
            else:
                await self._put(result.old_item)
            logger.debug("store_update_rolled_back", entity=self.entity_name)

        return TransactionStep(commit=commit, rollback=rollback, name=f"update_{self.entity_name}")


class SqlLeaseStore(_SqlStore[Lease]):
    row_class = LeaseRow
    model_class = Lease
    entity_name = "lease"

    def _primary_key(self, item: Lease) -> tuple[str, str]:
        return (item.user_email, item.uuid)

    def _columns(self, item: Lease) -> dict[str, Any]:
        return {
            "user_email": item.user_email,
            "uuid": item.uuid,
            "status": item.status.value,
            "aws_account_id": item.aws_account_id,
            "original_lease_template_uuid": item.original_lease_template_uuid,
        }

    def _order_by(self) -> list[Any]:
        return [LeaseRow.user_email, LeaseRow.uuid]

    async def get(self, key: LeaseKey) -> Lease | None:
        return await self._get((key.user_email, key.uuid))

    async def create(self, lease: Lease) -> Lease:
        return await self._create(lease)

    async def update(self, lease: Lease) -> PutResult[Lease]:
        return await self._update(lease)

    async def put(self, lease: Lease) -> PutResult[Lease]:
        return await self._put(lease)

    async def delete(self, key: LeaseKey) -> Lease | None:
        return await self._delete((key.user_email, key.uuid))

    async def find_all(
        self, page_size: int | None = None, page_identifier: str | None = None
    ) -> PaginatedQueryResult[Lease]:
        return await self._query([], page_size, page_identifier)

    async def find_by_status(
        self,
        statuses: Iterable[LeaseStatus],
        page_size: int | None = None,
        page_identifier: str | None = None,
    ) -> PaginatedQueryResult[Lease]:
        values = [LeaseStatus(status).value for status in statuses]
        return await self._query([LeaseRow.status.in_(values)], page_size, page_identifier)

    async def find_by_user_email(
        self,
        user_email: str,
        page_size: int | None = None,
        page_identifier: str | None = None,
    ) -> PaginatedQueryResult[Lease]:
        return await self._query([LeaseRow.user_email == user_email], page_size, page_identifier)

    async def find_by_status_and_account_id(
        self,
        status: LeaseStatus,
        account_id: str,
        page_size: int | None = None,
        page_identifier: str | None = None,
    ) -> PaginatedQueryResult[Lease]:
        return await self._query(
            [LeaseRow.status == LeaseStatus(status).value, LeaseRow.aws_account_id == account_id],
            page_size,
            page_identifier,
        )


class SqlSandboxAccountStore(_SqlStore[SandboxAccount]):
    row_class = SandboxAccountRow
    model_class = SandboxAccount
    entity_name = "account"

    def _primary_key(self, item: SandboxAccount) -> str:
        return item.aws_account_id

    def _columns(self, item: SandboxAccount) -> dict[str, Any]:
        return {"aws_account_id": item.aws_account_id, "status": item.status.value}

    def _order_by(self) -> list[Any]:
        return [SandboxAccountRow.aws_account_id]

    async def get(self, account_id: str) -> SandboxAccount | None:
        return await self._get(account_id)

    async def create(self, account: SandboxAccount) -> SandboxAccount:
        return await self._create(account)

    async def update(self, account: SandboxAccount) -> PutResult[SandboxAccount]:
        return await self._update(account)

    async def put(self, account: SandboxAccount) -> PutResult[SandboxAccount]:
        return await self._put(account)

    async def delete(self, account_id: str) -> SandboxAccount | None:
        return await self._delete(account_id)

    async def find_by_status(
        self,
        status: IsbOu,
        page_size: int | None = None,
        page_identifier: str | None = None,
    ) -> PaginatedQueryResult[SandboxAccount]:
        return await self._query(
            [SandboxAccountRow.status == IsbOu(status).value], page_size, page_identifier
        )

    async def find_all(
        self, page_size: int | None = None, page_identifier: str | None = None
    ) -> PaginatedQueryResult[SandboxAccount]:
        return await self._query([], page_size, page_identifier)


class SqlLeaseTemplateStore(_SqlStore[LeaseTemplate]):
    row_class = LeaseTemplateRow
    model_class = LeaseTemplate
    entity_name = "lease_template"

    def _primary_key(self, item: LeaseTemplate) -> str:
        return item.uuid

    def _columns(self, item: LeaseTemplate) -> dict[str, Any]:
        return {"uuid": item.uuid, "name": item.name}

    def _order_by(self) -> list[Any]:
        return [LeaseTemplateRow.name, LeaseTemplateRow.uuid]

    async def get(self, uuid: str) -> LeaseTemplate | None:
        return await self._get(uuid)

    async def create(self, template: LeaseTemplate) -> LeaseTemplate:
        return await self._create(template)

    async def update(self, template: LeaseTemplate) -> PutResult[LeaseTemplate]:
        return await self._update(template)

    async def delete(self, uuid: str) -> LeaseTemplate | None:
        return await self._delete(uuid)

    async def find_all(
        self, page_size: int | None = None, page_identifier: str | None = None
    ) -> PaginatedQueryResult[LeaseTemplate]:
        return await self._query([], page_size, page_identifier)
