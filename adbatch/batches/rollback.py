"""
Rollback engine.

Undoes a batch by re-applying the captured previous state of every item
whose change reached the platform. Items that were never applied are left alone.
"""

from typing import Dict, Optional

from adbatch.config import RetryConfig, retry_config
from adbatch.batches.engine import build_retry_strategy
from adbatch.batches.errors import ItemMutationFailed
from adbatch.batches.lifecycle import LifecycleController, Trigger
from adbatch.batches.models import BatchOperationItem, ItemStatus, RollbackResult, utc_now
from adbatch.batches.pool import ItemOutcome, WorkerPool
from adbatch.remote.client import RemoteMutationClient
from adbatch.remote.errors import RemoteError, call_with_retry
from adbatch.store.base import Store
from adbatch.utils.logging import batch_logger, setup_logger

logger = setup_logger(__name__)

# Counters of an item whose inverse could not be applied
FAILED_ROLLBACK_COUNTERS: Dict[str, int] = {"failed_rollbacks": 1}

def is_applied(item: BatchOperationItem) -> bool:
    """Whether an item's change is on the platform and can be undone."""
    return item.status == ItemStatus.SUCCESS or (item.status == ItemStatus.FAILED and item.applied)

class RollbackEngine:
    """Restore the remote state of an executed batch."""

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

    async def rollback(self, batch_id: str, actor: Optional[str] = None) -> RollbackResult:
        """
        Roll back every applied item of a batch.

        Applied items are those that succeeded plus failed items whose change
        reached the platform before a later step failed. The batch moves to
        ``rolled_back`` even when some inverse-applies fail; those items keep
        their status with ``rollback_error`` set and are counted in
        ``failed_rollbacks``.

        Raises:
            BatchNotFound: If the batch does not exist
            InvalidTransition: If the batch is neither completed nor failed with
                applied items, or the window expired
            ConcurrentExecutionRejected: If a rollback is already in flight
        """
        log = batch_logger(logger, batch_id)
        await self.controller.begin_rollback(batch_id)
        try:
            items = [item for item in await self.store.get_items(batch_id) if is_applied(item)]
            log.info(f"Rolling back {len(items)} items")

            errors = await self.pool.run(
                batch_id, items, self._rollback_item, error_counters=FAILED_ROLLBACK_COUNTERS
            )
            final = await self.controller.transition(batch_id, Trigger.ROLLBACK, actor=actor)
        finally:
            await self.controller.end_rollback(batch_id)

        if final.failed_rollbacks:
            log.warning(f"Rolled back with {final.failed_rollbacks} failed items")
        return RollbackResult(
            batch_id=final.id,
            status=final.status,
            rolled_back_items=final.rolled_back_items,
            failed_rollbacks=final.failed_rollbacks,
            errors=errors
        )

    async def _rollback_item(self, item: BatchOperationItem) -> ItemOutcome:
        try:
            if item.previous_state is None:
                raise ItemMutationFailed(item.id, "No previous state captured for item")
            await call_with_retry(
                self.client.apply_inverse,
                item.entity,
                item.previous_state,
                strategy=build_retry_strategy(self.retry),
                timeout=self.retry.timeout
            )

            # Unverified items keep their failed status and error message
            status = ItemStatus.ROLLED_BACK if item.status == ItemStatus.SUCCESS else item.status
            await self.store.update_item(
                item.batch_id,
                item.id,
                status=status,
                applied=False,
                rolled_back_at=utc_now(),
                rollback_error=None
            )
        except (RemoteError, ItemMutationFailed) as e:
            return await self._record_failure(item, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error rolling back item {item.id}")
            return await self._record_failure(item, str(e) or type(e).__name__)

        return ItemOutcome(item.id, {"rolled_back_items": 1})

    async def _record_failure(self, item: BatchOperationItem, message: str) -> ItemOutcome:
        logger.warning(f"Rollback of item {item.id} failed: {message}")
        try:
            await self.store.update_item(item.batch_id, item.id, rollback_error=message)
        except Exception:
            logger.exception(f"Could not record rollback failure of item {item.id}")
        return ItemOutcome(item.id, dict(FAILED_ROLLBACK_COUNTERS), message)
