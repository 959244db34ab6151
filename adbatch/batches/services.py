"""
Batch operation service.

This module provides the high-level service for managing batch operations:
creation and approval, execution, rollback and reporting.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

from adbatch.config import BatchConfig, RetryConfig, batch_config
from adbatch.batches.engine import ExecutionEngine
from adbatch.batches.errors import BatchNotFound
from adbatch.batches.lifecycle import LifecycleController, Trigger
from adbatch.batches.models import (
    BatchCreateRequest, BatchDetail, BatchItemInput, BatchOperation, BatchStatus,
    ExecutionResult, ItemError, ItemStatus, OperationType, RollbackResult
)
from adbatch.batches.presets import get_preset
from adbatch.batches.processors import get_processor
from adbatch.batches.rollback import RollbackEngine
from adbatch.batches.summary import estimate_execution_time, generate_batch_summary
from adbatch.batches.validators import BatchValidator
from adbatch.remote.client import RemoteMutationClient
from adbatch.store.base import Store
from adbatch.utils.logging import setup_logger

logger = setup_logger(__name__)

# Actor recorded when a batch that needs no approval is approved on creation
SYSTEM_ACTOR = "system"

class BatchService:
    """Service for managing batch operations."""

    def __init__(
        self,
        store: Store,
        client: RemoteMutationClient,
        config: Optional[BatchConfig] = None,
        retry: Optional[RetryConfig] = None
    ):
        """
        Initialize the service.

        Args:
            store: Store for batches and items
            client: Client for the remote advertising platform
            config: Batch configuration
            retry: Retry configuration for remote calls
        """
        self.store = store
        self.client = client
        self.config = config or batch_config
        self.validator = BatchValidator(self.config)
        self.controller = LifecycleController(store, self.config)
        self.engine = ExecutionEngine(
            store, client, self.controller,
            concurrent_limit=self.config.concurrent_limit,
            retry=retry
        )
        self.rollback_engine = RollbackEngine(
            store, client, self.controller,
            concurrent_limit=self.config.concurrent_limit,
            retry=retry
        )

    async def create_batch(self, request: BatchCreateRequest, actor: Optional[str] = None) -> BatchOperation:
        """
        Create a batch together with all of its items.

        Batches that do not require approval are approved immediately.

        Args:
            request: Batch creation request
            actor: User creating the batch

        Returns:
            The created batch

        Raises:
            ValidationError: If the request or any item is invalid
        """
        self.validator.validate_batch(request)

        batch = BatchOperation(
            name=request.name,
            description=request.description,
            operation_type=request.operation_type,
            total_items=len(request.items),
            account_id=request.account_id,
            requires_approval=request.requires_approval,
            source_type=request.source_type,
            source_task_id=request.source_task_id,
            created_by=actor
        )
        items = get_processor(request.operation_type).prepare_items(batch.id, request)
        batch = await self.store.create_batch(batch, items)
        logger.info(
            f"Created batch {batch.id} ({batch.operation_type.value}) with {batch.total_items} items, "
            f"estimated {estimate_execution_time(batch.total_items, batch.operation_type)}s"
        )

        if not batch.requires_approval:
            batch = await self.controller.transition(batch.id, Trigger.APPROVE, actor=SYSTEM_ACTOR)
        return batch

    async def create_from_preset(
        self,
        preset_name: str,
        items: Sequence[Union[BatchItemInput, Dict[str, Any]]],
        name: Optional[str] = None,
        description: Optional[str] = None,
        account_id: Optional[str] = None,
        source_task_id: Optional[str] = None,
        actor: Optional[str] = None
    ) -> BatchOperation:
        """
        Create a batch using the defaults of a named preset.

        Raises:
            ValidationError: If the preset is unknown or the items are invalid
        """
        preset = get_preset(preset_name)

        request = BatchCreateRequest.model_validate({
            "name": name or preset.name,
            "description": description if description is not None else preset.description,
            "operation_type": preset.operation_type,
            "items": [
                item.model_dump() if isinstance(item, BatchItemInput) else item
                for item in items
            ],
            "account_id": account_id,
            "requires_approval": preset.requires_approval,
            "source_type": preset.source_type,
            "source_task_id": source_task_id,
        })
        return await self.create_batch(request, actor=actor)

    async def approve(self, batch_id: str, actor: Optional[str] = None) -> BatchOperation:
        """Approve a pending batch."""
        return await self.controller.transition(batch_id, Trigger.APPROVE, actor=actor)

    async def cancel(self, batch_id: str, actor: Optional[str] = None) -> BatchOperation:
        """Cancel a pending batch."""
        return await self.controller.transition(batch_id, Trigger.CANCEL, actor=actor)

    async def execute(self, batch_id: str, actor: Optional[str] = None) -> ExecutionResult:
        """Execute an approved batch and wait for the run to finish."""
        return await self.engine.execute(batch_id, actor=actor)

    async def start_execution(self, batch_id: str, actor: Optional[str] = None) -> BatchOperation:
        """Move an approved batch to ``executing`` without running it yet."""
        return await self.engine.start(batch_id, actor=actor)

    async def run_execution(self, batch: BatchOperation) -> ExecutionResult:
        """Run a batch previously started with ``start_execution``."""
        return await self.engine.run(batch)

    async def rollback(self, batch_id: str, actor: Optional[str] = None) -> RollbackResult:
        """Roll back a completed batch."""
        return await self.rollback_engine.rollback(batch_id, actor=actor)

    async def delete(self, batch_id: str) -> None:
        """Delete a cancelled, failed or rolled back batch."""
        await self.controller.delete(batch_id)

    async def get(self, batch_id: str) -> BatchDetail:
        """
        Get a batch with its items.

        Raises:
            BatchNotFound: If the batch does not exist
        """
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFound(batch_id)
        items = await self.store.get_items(batch_id)
        return BatchDetail(batch=batch, items=items)

    async def list(
        self,
        status: Optional[BatchStatus] = None,
        operation_type: Optional[OperationType] = None,
        account_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[BatchOperation]:
        """List batches, newest first."""
        return await self.store.list_batches(
            status=status,
            operation_type=operation_type,
            account_id=account_id,
            limit=limit,
            offset=offset
        )

    async def summary(self, batch_id: str) -> str:
        """
        Render a human-readable summary of a batch's execution.

        Raises:
            BatchNotFound: If the batch does not exist
        """
        detail = await self.get(batch_id)
        batch = detail.batch
        errors = [
            ItemError(item_id=item.id, error=item.error_message or "Unknown error")
            for item in detail.items
            if item.status == ItemStatus.FAILED
        ]
        result = ExecutionResult(
            batch_id=batch.id,
            status=batch.status,
            total_items=batch.total_items,
            processed_items=batch.processed_items,
            success_items=batch.success_items,
            failed_items=batch.failed_items,
            unverified_items=batch.unverified_items,
            errors=errors
        )
        return generate_batch_summary(result)

    def can_rollback(self, batch: BatchOperation) -> bool:
        """Whether ``batch`` can currently be rolled back."""
        return self.controller.can_rollback(batch)

    async def close(self) -> None:
        """Release the store and client."""
        await self.client.close()
        await self.store.close()
