"""
Tests for the batch store backends.

Every test runs against the in-memory store and the Redis store, the latter
backed by fakeredis.
"""
from datetime import timedelta

import fakeredis
import pytest

from adbatch.config import RedisConfig
from adbatch.batches.models import (
    BatchOperation, BatchStatus, EntityType, ItemStatus, OperationType, StateSnapshot, utc_now
)
from adbatch.batches.processors import get_processor
from adbatch.store.memory import MemoryBatchStore
from adbatch.store.redis_store import RedisBatchStore
from adbatch.tests.fakes import bid_request, negative_keyword_request

@pytest.fixture(params=["memory", "redis"])
async def store(request):
    """Create each store backend."""
    if request.param == "memory":
        backend = MemoryBatchStore()
    else:
        backend = RedisBatchStore(
            client=fakeredis.FakeAsyncRedis(decode_responses=True),
            config=RedisConfig(prefix="test:")
        )
    yield backend
    await backend.close()

async def create(store, request=None, **fields):
    request = request or negative_keyword_request(3)
    batch = BatchOperation(
        name=request.name,
        operation_type=request.operation_type,
        total_items=len(request.items),
        **fields
    )
    items = get_processor(request.operation_type).prepare_items(batch.id, request)
    return await store.create_batch(batch, items), items

class TestBatches:
    """Test cases for batch records."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        """Test a batch is stored with its items."""
        batch, items = await create(store)

        assert await store.get_batch(batch.id) == batch
        stored_items = await store.get_items(batch.id)
        assert [i.id for i in stored_items] == [i.id for i in items]
        assert stored_items[0].change.negative_keyword == "free 1"

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, store):
        """Test a batch ID cannot be reused."""
        batch, items = await create(store)
        with pytest.raises(ValueError):
            await store.create_batch(batch, items)

    @pytest.mark.asyncio
    async def test_missing(self, store):
        """Test reads of missing records."""
        assert await store.get_batch("batch_missing") is None
        assert await store.get_item("batch_missing", "item_missing") is None
        assert await store.get_items("batch_missing") == []

    @pytest.mark.asyncio
    async def test_compare_and_set_status(self, store):
        """Test status swaps only from the expected status."""
        batch, _ = await create(store)

        updated = await store.compare_and_set_status(
            batch.id, BatchStatus.PENDING, BatchStatus.APPROVED, approved_by="alice"
        )
        assert updated.status == BatchStatus.APPROVED
        assert updated.approved_by == "alice"
        assert updated.updated_at is not None

        assert await store.compare_and_set_status(batch.id, BatchStatus.PENDING, BatchStatus.CANCELLED) is None
        assert (await store.get_batch(batch.id)).status == BatchStatus.APPROVED
        assert await store.compare_and_set_status("batch_missing", BatchStatus.PENDING, BatchStatus.APPROVED) is None

    @pytest.mark.asyncio
    async def test_increment_counters(self, store):
        """Test counters accumulate."""
        batch, _ = await create(store)
        await store.increment_counters(batch.id, processed_items=1, success_items=1)
        await store.increment_counters(batch.id, processed_items=1, failed_items=1, unverified_items=1)

        stored = await store.get_batch(batch.id)
        assert (stored.processed_items, stored.success_items, stored.failed_items) == (2, 1, 1)
        assert stored.unverified_items == 1

    @pytest.mark.asyncio
    async def test_counters_survive_status_swap(self, store):
        """Test a status write does not reset counters."""
        batch, _ = await create(store)
        await store.compare_and_set_status(batch.id, BatchStatus.PENDING, BatchStatus.APPROVED)
        await store.compare_and_set_status(batch.id, BatchStatus.APPROVED, BatchStatus.EXECUTING)
        await store.increment_counters(batch.id, processed_items=3, success_items=3)
        await store.compare_and_set_status(batch.id, BatchStatus.EXECUTING, BatchStatus.COMPLETED)

        stored = await store.get_batch(batch.id)
        assert stored.status == BatchStatus.COMPLETED
        assert stored.success_items == 3

    @pytest.mark.asyncio
    async def test_unknown_counter(self, store):
        """Test only engine counters can be incremented."""
        batch, _ = await create(store)
        with pytest.raises(ValueError):
            await store.increment_counters(batch.id, total_items=1)

    @pytest.mark.asyncio
    async def test_list_newest_first(self, store):
        """Test listing order and paging."""
        now = utc_now()
        old, _ = await create(store, created_at=now - timedelta(hours=2))
        new, _ = await create(store, created_at=now)
        middle, _ = await create(store, created_at=now - timedelta(hours=1))

        assert [b.id for b in await store.list_batches()] == [new.id, middle.id, old.id]
        assert [b.id for b in await store.list_batches(limit=1, offset=1)] == [middle.id]

    @pytest.mark.asyncio
    async def test_list_filters(self, store):
        """Test listing filters."""
        negatives, _ = await create(store, account_id="acc_1")
        bids, _ = await create(store, bid_request({"kw_1": 1.1}), account_id="acc_2")
        await store.compare_and_set_status(bids.id, BatchStatus.PENDING, BatchStatus.APPROVED)

        assert [b.id for b in await store.list_batches(status=BatchStatus.APPROVED)] == [bids.id]
        assert [b.id for b in await store.list_batches(operation_type=OperationType.NEGATIVE_KEYWORD)] == [negatives.id]
        assert [b.id for b in await store.list_batches(account_id="acc_1")] == [negatives.id]

    @pytest.mark.asyncio
    async def test_delete(self, store):
        """Test deleting a batch removes its items."""
        batch, _ = await create(store)
        assert await store.delete_batch(batch.id)
        assert await store.get_batch(batch.id) is None
        assert await store.get_items(batch.id) == []
        assert await store.list_batches() == []
        assert not await store.delete_batch(batch.id)

    @pytest.mark.asyncio
    async def test_run_claims(self, store):
        """Test a run claim is exclusive until released."""
        assert await store.claim_run("batch_1")
        assert not await store.claim_run("batch_1")
        assert await store.claim_run("batch_2")
        await store.release_run("batch_1")
        assert await store.claim_run("batch_1")

class TestItems:
    """Test cases for item records."""

    @pytest.mark.asyncio
    async def test_update_item(self, store):
        """Test item updates are persisted."""
        batch, items = await create(store)
        snapshot = StateSnapshot(
            entity_type=EntityType.KEYWORD,
            entity_id="kw_1",
            operation_type=OperationType.NEGATIVE_KEYWORD,
            state={"present": False}
        )

        updated = await store.update_item(batch.id, items[0].id, previous_state=snapshot)
        assert updated.previous_state == snapshot

        await store.update_item(batch.id, items[0].id, status=ItemStatus.FAILED, error_message="Rejected")
        stored = await store.get_item(batch.id, items[0].id)
        assert stored.status == ItemStatus.FAILED
        assert stored.error_message == "Rejected"
        assert stored.previous_state == snapshot

        await store.update_item(batch.id, items[0].id, applied=True)
        stored = await store.get_item(batch.id, items[0].id)
        assert stored.applied is True
        assert stored.status == ItemStatus.FAILED

    @pytest.mark.asyncio
    async def test_filter_and_page(self, store):
        """Test item reads by status and range."""
        batch, items = await create(store)
        await store.update_item(batch.id, items[1].id, status=ItemStatus.SUCCESS)

        assert [i.id for i in await store.get_items(batch.id, status=ItemStatus.SUCCESS)] == [items[1].id]
        assert [i.id for i in await store.get_items(batch.id, status=ItemStatus.PENDING)] == [items[0].id, items[2].id]
        assert [i.id for i in await store.get_items(batch.id, offset=1, limit=1)] == [items[1].id]

    @pytest.mark.asyncio
    async def test_returned_copies(self, store):
        """Test callers cannot change stored state through returned models."""
        batch, items = await create(store)
        item = await store.get_item(batch.id, items[0].id)
        item.status = ItemStatus.SUCCESS
        assert (await store.get_item(batch.id, items[0].id)).status == ItemStatus.PENDING
