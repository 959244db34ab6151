"""
Batch lifecycle state machine.

Legal moves::

    pending    --approve-->   approved
    pending    --cancel-->    cancelled
    approved   --execute-->   executing
    executing  --complete-->  completed
    executing  --fail-->      failed
    completed  --rollback-->  rolled_back
    failed     --rollback-->  rolled_back   (only with unverified applied items)

Transitions on one batch are serialized twice over: an in-process lock held
only for the check-and-write, and a compare-and-swap on the stored status so
that processes sharing a store cannot both win.
"""

import asyncio
import weakref
from datetime import timedelta
from enum import Enum
from typing import Any, NamedTuple, Optional, Tuple

from adbatch.config import BatchConfig, batch_config
from adbatch.batches.errors import BatchNotFound, ConcurrentExecutionRejected, InvalidTransition
from adbatch.batches.models import BatchOperation, BatchStatus, utc_now
from adbatch.store.base import Store
from adbatch.utils.logging import setup_logger

logger = setup_logger(__name__)

class Trigger(str, Enum):
    """Lifecycle triggers."""
    APPROVE = "approve"
    CANCEL = "cancel"
    EXECUTE = "execute"
    COMPLETE = "complete"
    FAIL = "fail"
    ROLLBACK = "rollback"

class Edge(NamedTuple):
    sources: Tuple[BatchStatus, ...]
    target: BatchStatus
    timestamp_field: Optional[str]
    actor_field: Optional[str]

EDGES = {
    Trigger.APPROVE: Edge((BatchStatus.PENDING,), BatchStatus.APPROVED, "approved_at", "approved_by"),
    Trigger.CANCEL: Edge((BatchStatus.PENDING,), BatchStatus.CANCELLED, None, None),
    Trigger.EXECUTE: Edge((BatchStatus.APPROVED,), BatchStatus.EXECUTING, "executed_at", "executed_by"),
    Trigger.COMPLETE: Edge((BatchStatus.EXECUTING,), BatchStatus.COMPLETED, "completed_at", None),
    Trigger.FAIL: Edge((BatchStatus.EXECUTING,), BatchStatus.FAILED, "completed_at", None),
    Trigger.ROLLBACK: Edge(
        (BatchStatus.COMPLETED, BatchStatus.FAILED), BatchStatus.ROLLED_BACK, "rolled_back_at", "rolled_back_by"
    ),
}

# Statuses from which a batch may be deleted
DELETABLE_STATUSES = {BatchStatus.CANCELLED, BatchStatus.FAILED, BatchStatus.ROLLED_BACK}

class LifecycleController:
    """Validates and applies lifecycle transitions."""

    def __init__(self, store: Store, config: Optional[BatchConfig] = None):
        """
        Initialize the controller.

        Args:
            store: Store holding the batches
            config: Batch configuration (rollback window)
        """
        self.store = store
        self.config = config or batch_config
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, batch_id: str) -> asyncio.Lock:
        lock = self._locks.get(batch_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[batch_id] = lock
        return lock

    async def _load(self, batch_id: str) -> BatchOperation:
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFound(batch_id)
        return batch

    def _check_rollback_window(self, batch: BatchOperation) -> None:
        if batch.completed_at is None:
            return
        window = timedelta(days=self.config.rollback_window_days)
        if utc_now() - batch.completed_at > window:
            raise InvalidTransition(
                batch.id,
                Trigger.ROLLBACK.value,
                batch.status.value,
                reason=(
                    f"Cannot rollback batch {batch.id}: rollback window of "
                    f"{self.config.rollback_window_days} days has expired"
                )
            )

    def _check(self, batch: BatchOperation, trigger: Trigger) -> Edge:
        edge = EDGES[trigger]
        if batch.status in edge.sources:
            if trigger == Trigger.ROLLBACK and batch.status == BatchStatus.FAILED and not batch.unverified_items:
                raise InvalidTransition(
                    batch.id,
                    trigger.value,
                    batch.status.value,
                    reason=f"Cannot rollback batch {batch.id}: no applied items to restore"
                )
            return edge
        if trigger == Trigger.EXECUTE and batch.status == BatchStatus.EXECUTING:
            raise ConcurrentExecutionRejected(batch.id, trigger.value)
        raise InvalidTransition(batch.id, trigger.value, batch.status.value)

    async def transition(
        self,
        batch_id: str,
        trigger: Trigger,
        actor: Optional[str] = None,
        **fields: Any
    ) -> BatchOperation:
        """
        Apply a lifecycle transition.

        Args:
            batch_id: Batch to transition
            trigger: Requested trigger
            actor: Optional user recorded on the matching ``*_by`` field
            **fields: Additional batch fields written together with the status

        Returns:
            The updated batch

        Raises:
            BatchNotFound: If the batch does not exist
            InvalidTransition: If the trigger is not legal from the current status
            ConcurrentExecutionRejected: If an execution is already in progress
        """
        trigger = Trigger(trigger)
        async with self._lock_for(batch_id):
            batch = await self._load(batch_id)
            edge = self._check(batch, trigger)

            updates = dict(fields)
            if edge.timestamp_field:
                updates[edge.timestamp_field] = utc_now()
            if edge.actor_field and actor is not None:
                updates[edge.actor_field] = actor

            updated = await self.store.compare_and_set_status(
                batch_id, batch.status, edge.target, **updates
            )
            if updated is None:
                # Another process moved the batch between our read and write
                current = await self._load(batch_id)
                logger.warning(
                    f"Lost status race on batch {batch_id}: {trigger.value} found '{current.status.value}'"
                )
                self._check(current, trigger)
                raise ConcurrentExecutionRejected(batch_id, trigger.value)

        logger.info(
            f"Batch {batch_id}: {batch.status.value} --{trigger.value}--> {edge.target.value}"
        )
        return updated

    async def finish_execution(self, batch_id: str) -> BatchOperation:
        """
        Write the terminal status of an execution run.

        ``completed`` when at least one item succeeded, ``failed`` otherwise.
        """
        batch = await self._load(batch_id)
        trigger = Trigger.COMPLETE if batch.success_items > 0 else Trigger.FAIL
        return await self.transition(batch_id, trigger)

    async def begin_rollback(self, batch_id: str) -> BatchOperation:
        """
        Check that a batch may be rolled back and claim the rollback run.

        The batch keeps its status while the run is in flight;
        the claim makes a second concurrent rollback fail fast.

        Raises:
            BatchNotFound: If the batch does not exist
            InvalidTransition: If the batch is neither completed nor failed with
                applied items, or the window expired
            ConcurrentExecutionRejected: If a rollback is already in flight
        """
        async with self._lock_for(batch_id):
            batch = await self._load(batch_id)
            self._check(batch, Trigger.ROLLBACK)
            self._check_rollback_window(batch)
            if not await self.store.claim_run(batch_id):
                raise ConcurrentExecutionRejected(batch_id, Trigger.ROLLBACK.value)
        return batch

    async def end_rollback(self, batch_id: str) -> None:
        """Release the rollback claim taken by ``begin_rollback``."""
        await self.store.release_run(batch_id)

    def can_rollback(self, batch: BatchOperation) -> bool:
        """Whether a rollback would currently pass validation."""
        try:
            self._check(batch, Trigger.ROLLBACK)
            self._check_rollback_window(batch)
        except (InvalidTransition, ConcurrentExecutionRejected):
            return False
        return True

    async def delete(self, batch_id: str) -> None:
        """
        Delete a batch that is in a terminal, no longer referenced status.

        Raises:
            BatchNotFound: If the batch does not exist
            InvalidTransition: If the batch is not deletable from its status,
                or it failed with applied changes still in place
        """
        async with self._lock_for(batch_id):
            batch = await self._load(batch_id)
            if batch.status not in DELETABLE_STATUSES:
                raise InvalidTransition(batch_id, "delete", batch.status.value)
            if batch.status == BatchStatus.FAILED and batch.unverified_items:
                raise InvalidTransition(
                    batch_id,
                    "delete",
                    batch.status.value,
                    reason=f"Cannot delete batch {batch_id}: {batch.unverified_items} applied items must be rolled back first"
                )
            await self.store.delete_batch(batch_id)
        logger.info(f"Deleted batch {batch_id}")
