"""Tests for the rollback engine."""
import asyncio
import copy
from datetime import timedelta
from unittest.mock import patch

import pytest

from adbatch.batches.engine import ExecutionEngine
from adbatch.batches.errors import ConcurrentExecutionRejected, InvalidTransition
from adbatch.batches.lifecycle import LifecycleController, Trigger
from adbatch.batches.models import BatchStatus, ItemStatus, utc_now
from adbatch.batches.rollback import RollbackEngine
from adbatch.remote.errors import ServiceUnavailableError, ValidationRejectedError
from adbatch.store.memory import MemoryBatchStore
from adbatch.tests.fakes import (
    bid_request, campaign_status_request, make_batch, migration_request, negative_keyword_request
)

@pytest.fixture
def engine(store, sandbox, controller, fast_retry):
    """Create an execution engine over the sandbox."""
    return ExecutionEngine(store, sandbox, controller, concurrent_limit=3, retry=fast_retry)

@pytest.fixture
def rollback_engine(store, sandbox, controller, fast_retry):
    """Create a rollback engine over the sandbox."""
    return RollbackEngine(store, sandbox, controller, concurrent_limit=3, retry=fast_retry)

async def executed_batch(store, controller, engine, request):
    """Persist, approve and execute a batch."""
    batch = await make_batch(store, request)
    await controller.transition(batch.id, Trigger.APPROVE)
    await engine.execute(batch.id)
    return batch

class TestRoundTrip:
    """Test cases for restoring remote state."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_factory", [
        lambda: negative_keyword_request(5),
        lambda: bid_request({"kw_1": 1.4, "kw_2": 0.6, "kw_3": 2.0}),
        lambda: migration_request(["kw_1", "kw_2"]),
        lambda: campaign_status_request({"camp_1": "paused", "camp_2": "enabled"}),
    ], ids=["negative_keyword", "bid_adjustment", "keyword_migration", "campaign_status"])
    async def test_state_restored(self, request_factory, engine, rollback_engine, store, controller, sandbox):
        """Test applying then rolling back leaves the platform as it was."""
        before = copy.deepcopy(sandbox.entities)
        batch = await executed_batch(store, controller, engine, request_factory())
        assert sandbox.entities != before

        result = await rollback_engine.rollback(batch.id, actor="carol")

        assert result.status == BatchStatus.ROLLED_BACK
        assert result.failed_rollbacks == 0
        assert result.rolled_back_items == batch.total_items
        assert sandbox.entities == before

        stored = await store.get_batch(batch.id)
        assert stored.rolled_back_by == "carol"
        assert stored.rolled_back_at is not None
        for item in await store.get_items(batch.id):
            assert item.status == ItemStatus.ROLLED_BACK
            assert item.rolled_back_at is not None

class TestRollbackScope:
    """Test cases for which items a rollback touches."""

    @pytest.mark.asyncio
    async def test_only_success_items(self, engine, rollback_engine, store, controller, sandbox):
        """Test failed items are not inverse-applied."""
        sandbox.fail("apply", "kw_2", ValidationRejectedError("Rejected"))
        batch = await executed_batch(
            store, controller, engine, bid_request({f"kw_{i}": 1.5 for i in range(1, 6)})
        )

        result = await rollback_engine.rollback(batch.id)

        assert result.rolled_back_items == 4
        assert sandbox.count("inverse", "kw_2") == 0
        failed = next(i for i in await store.get_items(batch.id) if i.entity_id == "kw_2")
        assert failed.status == ItemStatus.FAILED
        assert failed.rolled_back_at is None
        assert failed.error_message == "Rejected"

    @pytest.mark.asyncio
    async def test_second_rollback_rejected(self, engine, rollback_engine, store, controller, sandbox):
        """Test rolling back twice has no further effect."""
        batch = await executed_batch(store, controller, engine, bid_request({"kw_1": 1.5}))
        await rollback_engine.rollback(batch.id)
        inverse_calls = sandbox.count("inverse")

        with pytest.raises(InvalidTransition):
            await rollback_engine.rollback(batch.id)
        assert sandbox.count("inverse") == inverse_calls
        assert (await store.get_batch(batch.id)).status == BatchStatus.ROLLED_BACK

    @pytest.mark.asyncio
    async def test_pending_rejected(self, rollback_engine, store):
        """Test rollback on a pending batch."""
        batch = await make_batch(store, bid_request({"kw_1": 1.5}))
        with pytest.raises(InvalidTransition):
            await rollback_engine.rollback(batch.id)
        assert (await store.get_batch(batch.id)).status == BatchStatus.PENDING

    @pytest.mark.asyncio
    async def test_failed_batch_rejected(self, engine, rollback_engine, store, controller, sandbox):
        """Test a failed batch has nothing to roll back."""
        sandbox.fail("apply", "kw_1", ValidationRejectedError("Rejected"))
        batch = await executed_batch(store, controller, engine, bid_request({"kw_1": 1.5}))
        assert (await store.get_batch(batch.id)).status == BatchStatus.FAILED

        with pytest.raises(InvalidTransition):
            await rollback_engine.rollback(batch.id)

    @pytest.mark.asyncio
    async def test_window_expired(self, engine, rollback_engine, store, controller, sandbox):
        """Test rollback outside the window leaves everything applied."""
        batch = await executed_batch(store, controller, engine, bid_request({"kw_1": 1.5}))
        await store.compare_and_set_status(
            batch.id, BatchStatus.COMPLETED, BatchStatus.COMPLETED,
            completed_at=utc_now() - timedelta(days=30)
        )

        with pytest.raises(InvalidTransition):
            await rollback_engine.rollback(batch.id)
        assert sandbox.get_entity("keyword", "kw_1")["bid"] == 1.5
        assert await store.claim_run(batch.id)

class TestRollbackFailures:
    """Test cases for failed inverse-applies."""

    @pytest.mark.asyncio
    async def test_failed_inverse_recorded(self, engine, rollback_engine, store, controller, sandbox):
        """Test a failed inverse keeps the item applied and is counted."""
        batch = await executed_batch(
            store, controller, engine, bid_request({"kw_1": 1.5, "kw_2": 1.5})
        )
        sandbox.fail("inverse", "kw_1", ValidationRejectedError("Keyword is locked"))

        result = await rollback_engine.rollback(batch.id)

        assert result.status == BatchStatus.ROLLED_BACK
        assert (result.rolled_back_items, result.failed_rollbacks) == (1, 1)
        assert result.errors[0].error == "Keyword is locked"

        items = {item.entity_id: item for item in await store.get_items(batch.id)}
        assert items["kw_1"].status == ItemStatus.SUCCESS
        assert items["kw_1"].rollback_error == "Keyword is locked"
        assert items["kw_2"].status == ItemStatus.ROLLED_BACK
        assert sandbox.get_entity("keyword", "kw_1")["bid"] == 1.5
        assert sandbox.get_entity("keyword", "kw_2")["bid"] == 1.0

        stored = await store.get_batch(batch.id)
        assert stored.failed_rollbacks == 1
        assert stored.success_items == 2

    @pytest.mark.asyncio
    async def test_transient_inverse_retried(self, engine, rollback_engine, store, controller, sandbox):
        """Test inverse-applies use the same retry policy."""
        batch = await executed_batch(store, controller, engine, bid_request({"kw_1": 1.5}))
        sandbox.fail("inverse", "kw_1", ServiceUnavailableError("busy"))

        result = await rollback_engine.rollback(batch.id)

        assert result.rolled_back_items == 1
        assert sandbox.count("inverse", "kw_1") == 2

    @pytest.mark.asyncio
    async def test_concurrent_rollback_rejected(self, engine, rollback_engine, store, controller, sandbox):
        """Test a rollback already in flight rejects a second one."""
        batch = await executed_batch(
            store, controller, engine, bid_request({f"kw_{i}": 1.5 for i in range(1, 4)})
        )
        sandbox.latency = 0.01

        results = await asyncio.gather(
            rollback_engine.rollback(batch.id),
            rollback_engine.rollback(batch.id),
            return_exceptions=True
        )

        assert sum(isinstance(r, ConcurrentExecutionRejected) for r in results) == 1
        assert sandbox.count("inverse") == 3
        assert await store.claim_run(batch.id)

class TestUnverifiedItems:
    """Test cases for items applied on the platform but recorded as failed."""

    @pytest.fixture
    def misreporting_sandbox(self, sandbox):
        """Apply bids but report a different bid back."""
        original = sandbox._apply_bid

        def misreporting_apply(entity, change):
            original(entity, change)
            return {"bid": 9.99}

        with patch.object(sandbox, "_apply_bid", side_effect=misreporting_apply):
            yield sandbox

    @pytest.mark.asyncio
    async def test_failed_batch_restored(self, engine, rollback_engine, store, controller, misreporting_sandbox):
        """Test a failed batch with applied items can be rolled back to the captured state."""
        batch = await executed_batch(store, controller, engine, bid_request({"kw_1": 1.3}))
        stored = await store.get_batch(batch.id)
        assert stored.status == BatchStatus.FAILED
        assert controller.can_rollback(stored)

        result = await rollback_engine.rollback(batch.id)

        assert result.status == BatchStatus.ROLLED_BACK
        assert (result.rolled_back_items, result.failed_rollbacks) == (1, 0)
        assert misreporting_sandbox.get_entity("keyword", "kw_1")["bid"] == 1.0

        item = (await store.get_items(batch.id))[0]
        assert item.status == ItemStatus.FAILED
        assert not item.applied
        assert item.rolled_back_at is not None
        assert "does not match requested bid" in item.error_message

    @pytest.mark.asyncio
    async def test_mixed_batch_restored(self, engine, rollback_engine, store, controller, sandbox):
        """Test a completed batch rolls back its unverified items with the successful ones."""
        original = sandbox._apply_bid

        def misreport_kw_2(entity, change):
            state = original(entity, change)
            return {"bid": 9.99} if entity.entity_id == "kw_2" else state

        with patch.object(sandbox, "_apply_bid", side_effect=misreport_kw_2):
            batch = await executed_batch(store, controller, engine, bid_request({"kw_1": 1.3, "kw_2": 1.3}))

        result = await rollback_engine.rollback(batch.id)

        assert result.rolled_back_items == 2
        assert sandbox.get_entity("keyword", "kw_1")["bid"] == 1.0
        assert sandbox.get_entity("keyword", "kw_2")["bid"] == 1.0

class RolledBackWriteFailingStore(MemoryBatchStore):
    """Memory store that fails the first ``rolled_back`` item write."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    async def update_item(self, batch_id, item_id, **fields):
        if fields.get("status") == ItemStatus.ROLLED_BACK and self.failures:
            self.failures -= 1
            raise ConnectionError("Connection to store lost")
        return await super().update_item(batch_id, item_id, **fields)

class TestRollbackStoreFailures:
    """Test cases for store errors during a rollback run."""

    @pytest.mark.asyncio
    async def test_write_failure_isolated(self, sandbox, batch_settings, fast_retry):
        """Test a failed item write is counted and the rest of the batch is rolled back."""
        store = RolledBackWriteFailingStore()
        controller = LifecycleController(store, batch_settings)
        engine = ExecutionEngine(store, sandbox, controller, concurrent_limit=1, retry=fast_retry)
        rollback_engine = RollbackEngine(store, sandbox, controller, concurrent_limit=1, retry=fast_retry)
        batch = await executed_batch(
            store, controller, engine, bid_request({f"kw_{i}": 1.5 for i in range(1, 4)})
        )

        result = await rollback_engine.rollback(batch.id)

        assert result.status == BatchStatus.ROLLED_BACK
        assert (result.rolled_back_items, result.failed_rollbacks) == (2, 1)
        assert result.errors[0].error == "Connection to store lost"
        assert sandbox.count("inverse") == 3
        assert await store.claim_run(batch.id)
