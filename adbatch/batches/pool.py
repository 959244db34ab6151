"""
Bounded worker pool shared by the execution and rollback engines.

Workers run under a semaphore and report each item's outcome over a queue.
A single aggregator coroutine drains the queue and applies the counter
increments, so the batch aggregate has exactly one writer per run.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional

from adbatch.config import batch_config
from adbatch.batches.models import BatchOperationItem, ItemError
from adbatch.store.base import BatchStore
from adbatch.utils.logging import setup_logger

logger = setup_logger(__name__)

class ItemOutcome(NamedTuple):
    """Result of processing one item."""
    item_id: str
    counters: Dict[str, int]
    error: Optional[str] = None

ItemHandler = Callable[[BatchOperationItem], Awaitable[ItemOutcome]]

class WorkerPool:
    """Process the items of one batch with proper concurrency control."""

    def __init__(self, store: BatchStore, concurrent_limit: Optional[int] = None):
        """
        Initialize worker pool.

        Args:
            store: Store receiving the counter increments
            concurrent_limit: Maximum number of items in flight at once
        """
        self.store = store
        self.concurrent_limit = concurrent_limit or batch_config.concurrent_limit

    async def _aggregate(
        self,
        batch_id: str,
        queue: "asyncio.Queue[Optional[ItemOutcome]]",
        errors: List[ItemError]
    ) -> None:
        while True:
            outcome = await queue.get()
            if outcome is None:
                return
            if outcome.error is not None:
                errors.append(ItemError(item_id=outcome.item_id, error=outcome.error))
            try:
                await self.store.increment_counters(batch_id, **outcome.counters)
            except Exception:
                # Keep draining so every worker's outcome is still seen
                logger.exception(f"Could not count outcome of item {outcome.item_id} in batch {batch_id}")

    async def run(
        self,
        batch_id: str,
        items: List[BatchOperationItem],
        handler: ItemHandler,
        error_counters: Optional[Dict[str, int]] = None
    ) -> List[ItemError]:
        """
        Run ``handler`` over all items and wait until every outcome is counted.

        Args:
            batch_id: Batch the items belong to
            items: Items to process
            handler: Coroutine processing one item
            error_counters: Counters recorded for an item whose handler raises

        Returns:
            Item errors, in item order
        """
        semaphore = asyncio.Semaphore(self.concurrent_limit)
        queue: "asyncio.Queue[Optional[ItemOutcome]]" = asyncio.Queue()
        errors: List[ItemError] = []

        async def worker(item: BatchOperationItem) -> None:
            try:
                async with semaphore:
                    outcome = await handler(item)
            except Exception as e:
                logger.exception(f"Handler failed for item {item.id} in batch {batch_id}")
                outcome = ItemOutcome(item.id, dict(error_counters or {}), str(e) or type(e).__name__)
            await queue.put(outcome)

        aggregator = asyncio.create_task(self._aggregate(batch_id, queue, errors))
        try:
            await asyncio.gather(*(worker(item) for item in items))
        finally:
            # Workers never raise, so the sentinel follows the last outcome
            await queue.put(None)
            await aggregator

        logger.info(f"Processed {len(items)} items of batch {batch_id}, {len(errors)} errors")
        order = {item.id: index for index, item in enumerate(items)}
        return sorted(errors, key=lambda e: order[e.item_id])
