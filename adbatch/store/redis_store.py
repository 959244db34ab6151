"""
Redis-based store implementation.

Layout, all keys under the configured prefix:

- ``batch:{id}``: hash with the batch JSON in ``data`` and one integer field
  per counter, so counters can be updated with HINCRBY
- ``batch:{id}:items``: hash of item ID to item JSON
- ``batch:{id}:item_ids``: list of item IDs in creation order
- ``batches``: sorted set of batch IDs scored by creation time
- ``claim:{id}``: in-flight run marker, set with NX and a TTL
"""

from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from adbatch.config import RedisConfig, redis_config
from adbatch.batches.models import (
    BatchOperation, BatchOperationItem, BatchStatus, ItemStatus, OperationType, utc_now
)
from adbatch.store.base import COUNTER_FIELDS, Store, check_counter_fields
from adbatch.utils.logging import setup_logger

logger = setup_logger(__name__)

class RedisBatchStore(Store):
    """Redis store backend."""

    def __init__(self, client: Optional[redis.Redis] = None, config: Optional[RedisConfig] = None):
        """
        Initialize Redis connection.

        Args:
            client: Existing asyncio Redis client; one is created from config if omitted
            config: Redis configuration
        """
        self.config = config or redis_config
        self.redis = client or redis.from_url(
            self.config.url,
            password=self.config.password,
            decode_responses=True
        )
        self.prefix = self.config.prefix

    def _get_key(self, key: str) -> str:
        """Get prefixed key."""
        return f"{self.prefix}{key}"

    def _batch_key(self, batch_id: str) -> str:
        return self._get_key(f"{self.config.batch_prefix}{batch_id}")

    def _items_key(self, batch_id: str) -> str:
        return f"{self._batch_key(batch_id)}:items"

    def _item_ids_key(self, batch_id: str) -> str:
        return f"{self._batch_key(batch_id)}:item_ids"

    def _index_key(self) -> str:
        return self._get_key(self.config.index_key)

    def _claim_key(self, batch_id: str) -> str:
        return self._get_key(f"{self.config.claim_prefix}{batch_id}")

    @staticmethod
    def _decode_batch(raw: Dict[str, str]) -> Optional[BatchOperation]:
        if not raw or "data" not in raw:
            return None
        batch = BatchOperation.model_validate_json(raw["data"])
        counters = {field: int(raw[field]) for field in COUNTER_FIELDS if field in raw}
        return batch.model_copy(update=counters)

    @staticmethod
    def _encode_batch(batch: BatchOperation) -> Dict[str, Any]:
        mapping: Dict[str, Any] = {"data": batch.model_dump_json()}
        for field in COUNTER_FIELDS:
            mapping[field] = getattr(batch, field)
        return mapping

    async def create_batch(self, batch: BatchOperation, items: List[BatchOperationItem]) -> BatchOperation:
        key = self._batch_key(batch.id)
        if await self.redis.exists(key):
            raise ValueError(f"Batch {batch.id} already exists")

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=self._encode_batch(batch))
            if items:
                pipe.hset(
                    self._items_key(batch.id),
                    mapping={item.id: item.model_dump_json() for item in items}
                )
                pipe.rpush(self._item_ids_key(batch.id), *[item.id for item in items])
            pipe.zadd(self._index_key(), {batch.id: batch.created_at.timestamp()})
            await pipe.execute()

        logger.info(f"Stored batch {batch.id} with {len(items)} items")
        return batch

    async def get_batch(self, batch_id: str) -> Optional[BatchOperation]:
        return self._decode_batch(await self.redis.hgetall(self._batch_key(batch_id)))

    async def list_batches(
        self,
        status: Optional[BatchStatus] = None,
        operation_type: Optional[OperationType] = None,
        account_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[BatchOperation]:
        batch_ids = await self.redis.zrevrange(self._index_key(), 0, -1)
        if not batch_ids:
            return []

        async with self.redis.pipeline(transaction=False) as pipe:
            for batch_id in batch_ids:
                pipe.hgetall(self._batch_key(batch_id))
            raw_batches = await pipe.execute()

        batches = []
        for raw in raw_batches:
            batch = self._decode_batch(raw)
            if batch is None:
                continue
            if status is not None and batch.status != status:
                continue
            if operation_type is not None and batch.operation_type != operation_type:
                continue
            if account_id is not None and batch.account_id != account_id:
                continue
            batches.append(batch)
        return batches[offset:offset + limit]

    async def compare_and_set_status(
        self,
        batch_id: str,
        expected: BatchStatus,
        new: BatchStatus,
        **fields: Any
    ) -> Optional[BatchOperation]:
        key = self._batch_key(batch_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    batch = self._decode_batch(await pipe.hgetall(key))
                    if batch is None or batch.status != expected:
                        await pipe.unwatch()
                        return None

                    updated = batch.model_copy(update={**fields, "status": new, "updated_at": utc_now()})
                    pipe.multi()
                    pipe.hset(key, "data", updated.model_dump_json())
                    await pipe.execute()
                    return updated
                except WatchError:
                    # Counters or status changed underneath us; re-read and re-check
                    logger.debug(f"Status write for batch {batch_id} raced, retrying")
                    continue

    async def increment_counters(self, batch_id: str, **deltas: int) -> None:
        check_counter_fields(deltas)
        if not deltas:
            return
        key = self._batch_key(batch_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            for field, delta in deltas.items():
                pipe.hincrby(key, field, delta)
            await pipe.execute()

    async def delete_batch(self, batch_id: str) -> bool:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._batch_key(batch_id))
            pipe.delete(self._items_key(batch_id))
            pipe.delete(self._item_ids_key(batch_id))
            pipe.zrem(self._index_key(), batch_id)
            results = await pipe.execute()
        return bool(results[0])

    async def claim_run(self, batch_id: str) -> bool:
        claimed = await self.redis.set(
            self._claim_key(batch_id), "1", nx=True, ex=self.config.run_claim_ttl
        )
        return bool(claimed)

    async def release_run(self, batch_id: str) -> None:
        await self.redis.delete(self._claim_key(batch_id))

    async def get_items(
        self,
        batch_id: str,
        status: Optional[ItemStatus] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> List[BatchOperationItem]:
        item_ids = await self.redis.lrange(self._item_ids_key(batch_id), 0, -1)
        if not item_ids:
            return []

        raw_items = await self.redis.hmget(self._items_key(batch_id), item_ids)
        items = [
            BatchOperationItem.model_validate_json(raw)
            for raw in raw_items
            if raw is not None
        ]
        if status is not None:
            items = [item for item in items if item.status == status]
        end = None if limit is None else offset + limit
        return items[offset:end]

    async def get_item(self, batch_id: str, item_id: str) -> Optional[BatchOperationItem]:
        raw = await self.redis.hget(self._items_key(batch_id), item_id)
        return BatchOperationItem.model_validate_json(raw) if raw else None

    async def update_item(self, batch_id: str, item_id: str, **fields: Any) -> BatchOperationItem:
        # Each item is written by exactly one worker at a time, so no WATCH is needed
        item = await self.get_item(batch_id, item_id)
        if item is None:
            raise KeyError(f"Item {item_id} not found in batch {batch_id}")
        updated = item.model_copy(update=fields)
        await self.redis.hset(self._items_key(batch_id), item_id, updated.model_dump_json())
        return updated

    async def close(self) -> None:
        await self.redis.aclose()
