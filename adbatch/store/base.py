"""
Storage interfaces for batches and their items.

A backend implements both interfaces so that a batch and its items can be
created in one atomic step.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from adbatch.batches.models import (
    BatchOperation, BatchOperationItem, BatchStatus, ItemStatus, OperationType
)

# Counters the engines may increment
COUNTER_FIELDS = (
    "processed_items",
    "success_items",
    "failed_items",
    "unverified_items",
    "rolled_back_items",
    "failed_rollbacks",
)

class ItemStore(ABC):
    """Owns BatchOperationItem records."""

    @abstractmethod
    async def get_items(
        self,
        batch_id: str,
        status: Optional[ItemStatus] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[BatchOperationItem]:
        """Range read of a batch's items in creation order, optionally by status."""

    @abstractmethod
    async def get_item(self, batch_id: str, item_id: str) -> Optional[BatchOperationItem]:
        """Get a single item."""

    @abstractmethod
    async def update_item(self, batch_id: str, item_id: str, **fields: Any) -> BatchOperationItem:
        """Update fields of an item and return the stored result."""

class BatchStore(ABC):
    """Owns BatchOperation aggregate records."""

    @abstractmethod
    async def create_batch(self, batch: BatchOperation, items: List[BatchOperationItem]) -> BatchOperation:
        """Persist a batch and all of its items atomically."""

    @abstractmethod
    async def get_batch(self, batch_id: str) -> Optional[BatchOperation]:
        """Get a batch by ID."""

    @abstractmethod
    async def list_batches(
        self,
        status: Optional[BatchStatus] = None,
        operation_type: Optional[OperationType] = None,
        account_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[BatchOperation]:
        """List batches, newest first."""

    @abstractmethod
    async def compare_and_set_status(
        self,
        batch_id: str,
        expected: BatchStatus,
        new: BatchStatus,
        **fields: Any
    ) -> Optional[BatchOperation]:
        """
        Move a batch from ``expected`` to ``new`` status.

        Returns:
            The updated batch, or None if the stored status was not ``expected``
        """

    @abstractmethod
    async def increment_counters(self, batch_id: str, **deltas: int) -> None:
        """Atomically add ``deltas`` to the named counters of a batch."""

    @abstractmethod
    async def delete_batch(self, batch_id: str) -> bool:
        """Delete a batch and its items. Returns False if it did not exist."""

    @abstractmethod
    async def claim_run(self, batch_id: str) -> bool:
        """Mark a run as in flight for a batch. Returns False if one already is."""

    @abstractmethod
    async def release_run(self, batch_id: str) -> None:
        """Clear the in-flight run marker of a batch."""

    async def close(self) -> None:
        """Release any resources held by the store."""

class Store(BatchStore, ItemStore):
    """A backend holding both batches and items."""

def check_counter_fields(deltas: dict) -> None:
    unknown = set(deltas) - set(COUNTER_FIELDS)
    if unknown:
        raise ValueError(f"Unknown counter fields: {sorted(unknown)}")
