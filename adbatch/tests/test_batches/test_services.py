"""Tests for the batch operation service."""
import pytest

from adbatch.config import BatchConfig
from adbatch.batches.errors import BatchNotFound, InvalidTransition, ValidationError
from adbatch.batches.models import BatchStatus, ItemStatus, OperationType
from adbatch.batches.services import BatchService, SYSTEM_ACTOR
from adbatch.remote.errors import ValidationRejectedError
from adbatch.tests.fakes import bid_request, campaign_status_request, negative_keyword_request

class TestCreateBatch:
    """Test cases for batch creation."""

    @pytest.mark.asyncio
    async def test_create(self, service, store):
        """Test a batch and its items are created pending."""
        batch = await service.create_batch(negative_keyword_request(3, account_id="acc_1"), actor="alice")

        assert batch.status == BatchStatus.PENDING
        assert batch.total_items == 3
        assert batch.created_by == "alice"
        assert batch.account_id == "acc_1"

        items = await store.get_items(batch.id)
        assert [item.entity_id for item in items] == ["kw_1", "kw_2", "kw_3"]
        assert all(item.status == ItemStatus.PENDING for item in items)
        assert all(item.batch_id == batch.id for item in items)

    @pytest.mark.asyncio
    async def test_auto_approve(self, service):
        """Test batches without approval are approved on creation."""
        batch = await service.create_batch(bid_request({"kw_1": 1.2}, requires_approval=False))
        assert batch.status == BatchStatus.APPROVED
        assert batch.approved_by == SYSTEM_ACTOR

    @pytest.mark.asyncio
    async def test_invalid_items_not_persisted(self, service, store):
        """Test validation failures create nothing."""
        with pytest.raises(ValidationError) as exc_info:
            await service.create_batch(bid_request({"kw_1": 1.2, "kw_2": 500.0}))
        assert exc_info.value.details["items"][0]["index"] == 1
        assert await service.list() == []

    @pytest.mark.asyncio
    async def test_batch_size_limit(self, store, sandbox, fast_retry):
        """Test the configured maximum batch size."""
        service = BatchService(store, sandbox, config=BatchConfig(max_size=2), retry=fast_retry)
        with pytest.raises(ValidationError):
            await service.create_batch(negative_keyword_request(3))

class TestPresets:
    """Test cases for preset creation."""

    @pytest.mark.asyncio
    async def test_smart_bidding(self, service):
        """Test the smart bidding preset skips approval."""
        batch = await service.create_from_preset(
            "smart_bidding",
            [{"entity_type": "keyword", "entity_id": "kw_1", "change": {"current_bid": 1.0, "new_bid": 1.1}}],
            source_task_id="task_9"
        )
        assert batch.operation_type == OperationType.BID_ADJUSTMENT
        assert batch.status == BatchStatus.APPROVED
        assert batch.source_type == "smart_bidding"
        assert batch.source_task_id == "task_9"
        assert batch.name == "Smart bid adjustment"

    @pytest.mark.asyncio
    async def test_ngram_negatives(self, service):
        """Test the n-gram preset requires approval and accepts a custom name."""
        request = negative_keyword_request(2)
        batch = await service.create_from_preset("ngram_negatives", request.items, name="Weekly n-grams")
        assert batch.status == BatchStatus.PENDING
        assert batch.name == "Weekly n-grams"
        assert batch.source_type == "ngram_analysis"
        assert batch.total_items == 2

    @pytest.mark.asyncio
    async def test_unknown_preset(self, service):
        """Test an unknown preset name."""
        with pytest.raises(ValidationError) as exc_info:
            await service.create_from_preset("nope", [])
        assert "smart_bidding" in exc_info.value.details["presets"]

class TestWorkflow:
    """Test cases for the full batch workflow."""

    @pytest.mark.asyncio
    async def test_create_approve_execute_rollback(self, service, sandbox):
        """Test a batch through its whole life."""
        batch = await service.create_batch(campaign_status_request({"camp_1": "paused"}))
        await service.approve(batch.id, actor="alice")

        result = await service.execute(batch.id, actor="bob")
        assert result.status == BatchStatus.COMPLETED
        assert sandbox.get_entity("campaign", "camp_1")["state"] == "paused"
        assert service.can_rollback((await service.get(batch.id)).batch)

        rollback = await service.rollback(batch.id, actor="carol")
        assert rollback.status == BatchStatus.ROLLED_BACK
        assert sandbox.get_entity("campaign", "camp_1")["state"] == "enabled"

        detail = await service.get(batch.id)
        assert detail.batch.approved_by == "alice"
        assert detail.batch.executed_by == "bob"
        assert detail.batch.rolled_back_by == "carol"
        assert detail.items[0].status == ItemStatus.ROLLED_BACK

    @pytest.mark.asyncio
    async def test_cancel_and_delete(self, service):
        """Test cancelled batches can be deleted."""
        batch = await service.create_batch(negative_keyword_request(1))
        with pytest.raises(InvalidTransition):
            await service.delete(batch.id)

        await service.cancel(batch.id)
        await service.delete(batch.id)
        with pytest.raises(BatchNotFound):
            await service.get(batch.id)

    @pytest.mark.asyncio
    async def test_background_style_execution(self, service):
        """Test start and run split."""
        batch = await service.create_batch(negative_keyword_request(2), actor="alice")
        await service.approve(batch.id)
        started = await service.start_execution(batch.id)
        assert started.status == BatchStatus.EXECUTING

        result = await service.run_execution(started)
        assert result.success_items == 2

class TestQueries:
    """Test cases for reads."""

    @pytest.mark.asyncio
    async def test_get_missing(self, service):
        """Test reading a missing batch."""
        with pytest.raises(BatchNotFound):
            await service.get("batch_missing")

    @pytest.mark.asyncio
    async def test_list_filters(self, service):
        """Test status, type and account filters."""
        first = await service.create_batch(negative_keyword_request(1, account_id="acc_1"))
        second = await service.create_batch(bid_request({"kw_1": 1.1}, account_id="acc_2"))
        await service.approve(second.id)

        assert {b.id for b in await service.list()} == {first.id, second.id}
        assert [b.id for b in await service.list(status=BatchStatus.APPROVED)] == [second.id]
        assert [b.id for b in await service.list(operation_type=OperationType.NEGATIVE_KEYWORD)] == [first.id]
        assert [b.id for b in await service.list(account_id="acc_2")] == [second.id]
        assert len(await service.list(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_summary(self, service, sandbox):
        """Test the summary reflects failures."""
        sandbox.fail("apply", "kw_2", ValidationRejectedError("Keyword is archived"))
        batch = await service.create_batch(bid_request({"kw_1": 1.1, "kw_2": 1.1}))
        await service.approve(batch.id)
        await service.execute(batch.id)

        summary = await service.summary(batch.id)
        assert "Succeeded: 1 (50.0%)" in summary
        assert "Keyword is archived" in summary
