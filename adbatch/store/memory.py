"""In-memory store backend, the default for single-process deployments and tests."""

import asyncio
from typing import Any, Dict, List, Optional, Set

from adbatch.batches.models import (
    BatchOperation, BatchOperationItem, BatchStatus, ItemStatus, OperationType, utc_now
)
from adbatch.store.base import Store, check_counter_fields

class MemoryBatchStore(Store):
    """Dict-backed store. Returned models are copies; callers cannot alias stored state."""

    def __init__(self) -> None:
        self._batches: Dict[str, BatchOperation] = {}
        self._items: Dict[str, Dict[str, BatchOperationItem]] = {}
        self._claims: Set[str] = set()
        self._lock = asyncio.Lock()

    async def create_batch(self, batch: BatchOperation, items: List[BatchOperationItem]) -> BatchOperation:
        async with self._lock:
            if batch.id in self._batches:
                raise ValueError(f"Batch {batch.id} already exists")
            self._batches[batch.id] = batch.model_copy(deep=True)
            self._items[batch.id] = {item.id: item.model_copy(deep=True) for item in items}
            return batch.model_copy(deep=True)

    async def get_batch(self, batch_id: str) -> Optional[BatchOperation]:
        batch = self._batches.get(batch_id)
        return batch.model_copy(deep=True) if batch else None

    async def list_batches(
        self,
        status: Optional[BatchStatus] = None,
        operation_type: Optional[OperationType] = None,
        account_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[BatchOperation]:
        batches = [
            b for b in self._batches.values()
            if (status is None or b.status == status)
            and (operation_type is None or b.operation_type == operation_type)
            and (account_id is None or b.account_id == account_id)
        ]
        batches.sort(key=lambda b: b.created_at, reverse=True)
        return [b.model_copy(deep=True) for b in batches[offset:offset + limit]]

    async def compare_and_set_status(
        self,
        batch_id: str,
        expected: BatchStatus,
        new: BatchStatus,
        **fields: Any
    ) -> Optional[BatchOperation]:
        async with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None or batch.status != expected:
                return None
            updated = batch.model_copy(update={**fields, "status": new, "updated_at": utc_now()})
            self._batches[batch_id] = updated
            return updated.model_copy(deep=True)

    async def increment_counters(self, batch_id: str, **deltas: int) -> None:
        check_counter_fields(deltas)
        async with self._lock:
            batch = self._batches[batch_id]
            self._batches[batch_id] = batch.model_copy(update={
                **{field: getattr(batch, field) + delta for field, delta in deltas.items()},
                "updated_at": utc_now()
            })

    async def delete_batch(self, batch_id: str) -> bool:
        async with self._lock:
            self._items.pop(batch_id, None)
            return self._batches.pop(batch_id, None) is not None

    async def claim_run(self, batch_id: str) -> bool:
        async with self._lock:
            if batch_id in self._claims:
                return False
            self._claims.add(batch_id)
            return True

    async def release_run(self, batch_id: str) -> None:
        async with self._lock:
            self._claims.discard(batch_id)

    async def get_items(
        self,
        batch_id: str,
        status: Optional[ItemStatus] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[BatchOperationItem]:
        items = [
            item for item in self._items.get(batch_id, {}).values()
            if status is None or item.status == status
        ]
        end = None if limit is None else offset + limit
        return [item.model_copy(deep=True) for item in items[offset:end]]

    async def get_item(self, batch_id: str, item_id: str) -> Optional[BatchOperationItem]:
        item = self._items.get(batch_id, {}).get(item_id)
        return item.model_copy(deep=True) if item else None

    async def update_item(self, batch_id: str, item_id: str, **fields: Any) -> BatchOperationItem:
        async with self._lock:
            item = self._items[batch_id][item_id]
            updated = item.model_copy(update=fields)
            self._items[batch_id][item_id] = updated
            return updated.model_copy(deep=True)
