"""
Execution engine.

Runs an approved batch: every pending item is read, snapshotted, applied and
verified against the remote platform, with per-item failure isolation.
"""

from typing import Dict, Optional

from adbatch.config import RetryConfig, retry_config
from adbatch.batches.errors import ItemMutationFailed
from adbatch.batches.lifecycle import LifecycleController, Trigger
from adbatch.batches.models import (
    AppliedChange, BatchOperation, BatchOperationItem, ExecutionResult, ItemStatus
)
from adbatch.batches.pool import ItemOutcome, WorkerPool
from adbatch.batches.processors import OperationProcessor, get_processor
from adbatch.remote.client import RemoteMutationClient
from adbatch.remote.errors import RemoteError, RetryStrategy, call_with_retry
from adbatch.store.base import Store
from adbatch.utils.logging import batch_logger, setup_logger

logger = setup_logger(__name__)

# Counters of an item that failed before its change reached the platform
FAILED_COUNTERS: Dict[str, int] = {"processed_items": 1, "failed_items": 1}

def build_retry_strategy(config: RetryConfig) -> RetryStrategy:
    """Create a fresh retry strategy from configuration."""
    return RetryStrategy(
        max_retries=config.max_retries,
        base_delay=config.base_delay,
        max_delay=config.max_delay,
        backoff_factor=config.backoff_factor
    )

class ExecutionEngine:
    """Drive the items of a batch through the remote mutation client."""

    def __init__(
        self,
        store: Store,
        client: RemoteMutationClient,
        controller: LifecycleController,
        concurrent_limit: Optional[int] = None,
        retry: Optional[RetryConfig] = None
    ):
        self.store = store
        self.client = client
        self.controller = controller
        self.pool = WorkerPool(store, concurrent_limit)
        self.retry = retry or retry_config

    async def start(self, batch_id: str, actor: Optional[str] = None) -> BatchOperation:
        """
        Move a batch to ``executing``.

        Raises:
            InvalidTransition: If the batch is not approved
            ConcurrentExecutionRejected: If the batch is already executing
        """
        return await self.controller.transition(batch_id, Trigger.EXECUTE, actor=actor)

    async def run(self, batch: BatchOperation) -> ExecutionResult:
        """
        Process all pending items of an executing batch and write its terminal status.

        The terminal status is written even when the run itself breaks down,
        so a batch never stays ``executing``.

        Args:
            batch: Batch returned by ``start``

        Returns:
            ExecutionResult with the final counters
        """
        log = batch_logger(logger, batch.id)
        try:
            items = await self.store.get_items(batch.id, status=ItemStatus.PENDING)
            processor = get_processor(batch.operation_type)
            log.info(f"Executing {len(items)} {batch.operation_type.value} items")

            async def handler(item: BatchOperationItem) -> ItemOutcome:
                return await self._process_item(item, processor)

            errors = await self.pool.run(batch.id, items, handler, error_counters=FAILED_COUNTERS)
        except Exception:
            log.exception("Run aborted, writing terminal status")
            await self.controller.finish_execution(batch.id)
            raise

        final = await self.controller.finish_execution(batch.id)
        log.info(
            f"Finished as {final.status.value}: "
            f"{final.success_items} succeeded, {final.failed_items} failed"
        )
        return ExecutionResult(
            batch_id=final.id,
            status=final.status,
            total_items=final.total_items,
            processed_items=final.processed_items,
            success_items=final.success_items,
            failed_items=final.failed_items,
            unverified_items=final.unverified_items,
            errors=errors
        )

    async def execute(self, batch_id: str, actor: Optional[str] = None) -> ExecutionResult:
        """Start and run a batch to completion."""
        batch = await self.start(batch_id, actor=actor)
        return await self.run(batch)

    async def _process_item(self, item: BatchOperationItem, processor: OperationProcessor) -> ItemOutcome:
        entity = item.entity
        strategy = build_retry_strategy(self.retry)
        applied: Optional[AppliedChange] = None
        try:
            snapshot = await call_with_retry(
                self.client.read_current_state, entity, item.change,
                strategy=strategy, timeout=self.retry.timeout
            )
            await self.store.update_item(item.batch_id, item.id, previous_state=snapshot)

            strategy.reset()
            applied = await call_with_retry(
                self.client.apply_change, entity, item.change,
                strategy=strategy, timeout=self.retry.timeout
            )
            mismatch = processor.verify(item.change, applied)
            if mismatch:
                raise ItemMutationFailed(item.id, mismatch)

            await self.store.update_item(
                item.batch_id,
                item.id,
                status=ItemStatus.SUCCESS,
                applied=True,
                applied_at=applied.applied_at
            )
        except (RemoteError, ItemMutationFailed) as e:
            return await self._record_failure(item, e.message, applied)
        except Exception as e:
            logger.exception(f"Unexpected error processing item {item.id}")
            return await self._record_failure(item, str(e) or type(e).__name__, applied)

        return ItemOutcome(item.id, {"processed_items": 1, "success_items": 1})

    async def _record_failure(
        self,
        item: BatchOperationItem,
        message: str,
        applied: Optional[AppliedChange]
    ) -> ItemOutcome:
        """
        Mark an item failed.

        An item whose change already reached the platform keeps ``applied``
        set and is counted as unverified, so a rollback can still undo it.
        """
        logger.warning(f"Item {item.id} ({item.entity_type.value} {item.entity_id}) failed: {message}")
        counters = dict(FAILED_COUNTERS)
        fields = {"status": ItemStatus.FAILED, "error_message": message}
        if applied is not None:
            counters["unverified_items"] = 1
            fields.update(applied=True, applied_at=applied.applied_at)
        try:
            await self.store.update_item(item.batch_id, item.id, **fields)
        except Exception:
            logger.exception(f"Could not record failure of item {item.id}")
        return ItemOutcome(item.id, counters, message)
