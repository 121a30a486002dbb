"""Tests for SQL record stores."""

from datetime import UTC, datetime

import pytest

from sandpool.db import collect, stream
from sandpool.db.paging import decode_page_identifier, encode_page_identifier
from sandpool.errors import ConcurrentModificationError, UnknownItemError
from sandpool.models import IsbOu, Lease, LeaseKey, LeaseStatus, LeaseTemplate, SandboxAccount
from sandpool.transactions import Transaction, TransactionStep


def make_lease(uuid: str, user_email: str = "alice@example.com", **overrides) -> Lease:
    fields = {
        "user_email": user_email,
        "uuid": uuid,
        "original_lease_template_uuid": "tpl-1",
        "original_lease_template_name": "Standard",
    }
    fields.update(overrides)
    return Lease(**fields)


async def failing_commit():
    raise RuntimeError("downstream failed")


async def noop():
    return None


class TestPaging:
    """Tests for page identifiers."""

    def test_identifier_round_trip(self):
        assert decode_page_identifier(encode_page_identifier(40)) == 40

    def test_missing_identifier_is_first_page(self):
        assert decode_page_identifier(None) == 0

    @pytest.mark.parametrize("garbage", ["not-base64!", "eyJmb28iOiAxfQ==", encode_page_identifier(-1)])
    def test_invalid_identifier(self, garbage):
        with pytest.raises(ValueError, match="Invalid page identifier"):
            decode_page_identifier(garbage)


@pytest.mark.asyncio
class TestLeaseStore:
    """Tests for SqlLeaseStore."""

    async def test_create_and_get(self, context):
        created = await context.lease_store.create(make_lease("l-1", max_spend=50))

        assert created.meta.version == 1
        assert created.meta.created_time is not None

        fetched = await context.lease_store.get(LeaseKey(user_email="alice@example.com", uuid="l-1"))
        assert fetched.max_spend == 50
        assert fetched.status == LeaseStatus.PENDING_APPROVAL

    async def test_get_missing(self, context):
        assert await context.lease_store.get(LeaseKey(user_email="x@example.com", uuid="none")) is None

    async def test_create_existing_raises(self, context):
        await context.lease_store.create(make_lease("l-1"))
        with pytest.raises(ConcurrentModificationError):
            await context.lease_store.create(make_lease("l-1"))

    async def test_update_bumps_version(self, context):
        created = await context.lease_store.create(make_lease("l-1"))
        result = await context.lease_store.update(created.model_copy(update={"comments": "please"}))

        assert result.old_item.comments is None
        assert result.new_item.comments == "please"
        assert result.new_item.meta.version == 2

    async def test_stale_update_raises(self, context):
        created = await context.lease_store.create(make_lease("l-1"))
        await context.lease_store.update(created.model_copy(update={"comments": "first"}))

        with pytest.raises(ConcurrentModificationError):
            await context.lease_store.update(created.model_copy(update={"comments": "second"}))

    async def test_update_unknown_raises(self, context):
        with pytest.raises(UnknownItemError):
            await context.lease_store.update(make_lease("missing"))

    async def test_put_ignores_version(self, context):
        created = await context.lease_store.create(make_lease("l-1"))
        await context.lease_store.update(created.model_copy(update={"comments": "first"}))

        result = await context.lease_store.put(created.model_copy(update={"comments": "forced"}))
        assert result.new_item.comments == "forced"
        assert result.new_item.meta.version == 3

    async def test_datetimes_come_back_as_utc(self, context):
        start = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)
        await context.lease_store.create(make_lease("l-1", start_date=start))

        fetched = await context.lease_store.get(LeaseKey(user_email="alice@example.com", uuid="l-1"))
        assert fetched.start_date == start

    async def test_delete(self, context):
        await context.lease_store.create(make_lease("l-1"))
        deleted = await context.lease_store.delete(LeaseKey(user_email="alice@example.com", uuid="l-1"))

        assert deleted.uuid == "l-1"
        assert await context.lease_store.delete(LeaseKey(user_email="alice@example.com", uuid="l-1")) is None

    async def test_find_by_status(self, context):
        await context.lease_store.create(make_lease("l-1", status=LeaseStatus.ACTIVE, aws_account_id="1"))
        await context.lease_store.create(make_lease("l-2", status=LeaseStatus.FROZEN, aws_account_id="2"))
        await context.lease_store.create(make_lease("l-3"))

        page = await context.lease_store.find_by_status([LeaseStatus.ACTIVE, LeaseStatus.FROZEN])
        assert sorted(lease.uuid for lease in page.result) == ["l-1", "l-2"]

    async def test_find_by_user_email(self, context):
        await context.lease_store.create(make_lease("l-1"))
        await context.lease_store.create(make_lease("l-2", user_email="bob@example.com"))

        page = await context.lease_store.find_by_user_email("bob@example.com")
        assert [lease.uuid for lease in page.result] == ["l-2"]

    async def test_find_by_status_and_account_id(self, context):
        await context.lease_store.create(make_lease("l-1", status=LeaseStatus.ACTIVE, aws_account_id="1"))
        await context.lease_store.create(make_lease("l-2", status=LeaseStatus.ACTIVE, aws_account_id="2"))
        await context.lease_store.create(make_lease("l-3", status=LeaseStatus.FROZEN, aws_account_id="1"))

        page = await context.lease_store.find_by_status_and_account_id(LeaseStatus.ACTIVE, "1")
        assert [lease.uuid for lease in page.result] == ["l-1"]

    async def test_pagination(self, context):
        for i in range(5):
            await context.lease_store.create(make_lease(f"l-{i}"))

        first = await context.lease_store.find_all(page_size=2)
        assert [lease.uuid for lease in first.result] == ["l-0", "l-1"]
        assert first.next_page_identifier is not None

        second = await context.lease_store.find_all(page_size=2, page_identifier=first.next_page_identifier)
        assert [lease.uuid for lease in second.result] == ["l-2", "l-3"]

        last = await context.lease_store.find_all(page_size=2, page_identifier=second.next_page_identifier)
        assert [lease.uuid for lease in last.result] == ["l-4"]
        assert last.next_page_identifier is None

    async def test_stream_and_collect_follow_pages(self, context):
        for i in range(5):
            await context.lease_store.create(make_lease(f"l-{i}"))

        pages = []

        async def query(page):
            pages.append(page)
            return await context.lease_store.find_all(page_size=2, page_identifier=page)

        streamed = [lease.uuid async for lease in stream(query)]
        assert streamed == [f"l-{i}" for i in range(5)]
        assert len(pages) == 3
        assert len(await collect(lambda page: context.lease_store.find_all(2, page))) == 5

    async def test_transactional_update_rolls_back(self, context):
        created = await context.lease_store.create(make_lease("l-1"))

        with pytest.raises(RuntimeError):
            await Transaction(
                context.lease_store.transactional_update(created.model_copy(update={"comments": "changed"})),
                TransactionStep(commit=failing_commit, rollback=noop, name="explode"),
            ).complete()

        restored = await context.lease_store.get(created.key)
        assert restored.comments is None


@pytest.mark.asyncio
class TestAccountStore:
    """Tests for SqlSandboxAccountStore."""

    async def test_put_creates_then_replaces(self, context):
        first = await context.account_store.put(SandboxAccount(aws_account_id="1", status=IsbOu.ENTRY))
        assert first.old_item is None

        second = await context.account_store.put(SandboxAccount(aws_account_id="1", status=IsbOu.CLEAN_UP))
        assert second.old_item.status == IsbOu.ENTRY
        assert second.new_item.status == IsbOu.CLEAN_UP

    async def test_find_by_status(self, context):
        await context.account_store.put(SandboxAccount(aws_account_id="1", status=IsbOu.AVAILABLE))
        await context.account_store.put(SandboxAccount(aws_account_id="2", status=IsbOu.ACTIVE))
        await context.account_store.put(SandboxAccount(aws_account_id="3", status=IsbOu.AVAILABLE))

        page = await context.account_store.find_by_status(IsbOu.AVAILABLE)
        assert [account.aws_account_id for account in page.result] == ["1", "3"]


@pytest.mark.asyncio
class TestLeaseTemplateStore:
    """Tests for SqlLeaseTemplateStore."""

    async def test_create_generates_uuid(self, context):
        template = await context.template_store.create(
            LeaseTemplate(name="Small", created_by="admin@example.com", max_spend=10)
        )
        assert template.uuid
        assert (await context.template_store.get(template.uuid)).name == "Small"

    async def test_find_all_ordered_by_name(self, context):
        await context.template_store.create(LeaseTemplate(name="Zeta", created_by="admin@example.com"))
        await context.template_store.create(LeaseTemplate(name="Alpha", created_by="admin@example.com"))

        page = await context.template_store.find_all()
        assert [template.name for template in page.result] == ["Alpha", "Zeta"]
