"""
Batch operation routes.

This module provides FastAPI routes for creating, approving, executing,
rolling back and inspecting batch operations.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request, Response
from pydantic import BaseModel
from typing import Any, Dict, List, Optional

from adbatch.batches.models import (
    BatchCreateRequest, BatchDetail, BatchOperation, BatchStatus,
    ExecutionResult, OperationType, RollbackResult
)
from adbatch.batches.presets import BATCH_PRESETS, BatchPreset
from adbatch.batches.services import BatchService
from adbatch.batches.summary import estimate_execution_time, format_operation_type
from adbatch.utils.logging import setup_logger

logger = setup_logger(__name__)

# Create router
batch_router = APIRouter(prefix="/batches", tags=["batches"])

# Request/Response Models
class PresetCreateRequest(BaseModel):
    """Request model for creating a batch from a preset."""
    items: List[Dict[str, Any]]
    name: Optional[str] = None
    description: Optional[str] = None
    account_id: Optional[str] = None
    source_task_id: Optional[str] = None

class ExecuteResponse(BaseModel):
    """Response model for batch execution."""
    batch: BatchOperation
    result: Optional[ExecutionResult] = None

class SummaryResponse(BaseModel):
    """Response model for batch summaries."""
    batch_id: str
    operation_label: str
    status: BatchStatus
    estimated_seconds: int
    can_rollback: bool
    summary: str

# Dependencies
def get_service(request: Request) -> BatchService:
    """Get the batch service attached to the application."""
    return request.app.state.batch_service

def get_actor(x_actor: Optional[str] = Header(default=None)) -> Optional[str]:
    """User performing the request, taken from the X-Actor header."""
    return x_actor

# Routes
@batch_router.post("", response_model=BatchOperation, status_code=201)
async def create_batch(
    request: BatchCreateRequest,
    service: BatchService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor)
):
    """Create a batch with all of its items."""
    return await service.create_batch(request, actor=actor)

@batch_router.get("", response_model=List[BatchOperation])
async def list_batches(
    status: Optional[BatchStatus] = None,
    operation_type: Optional[OperationType] = None,
    account_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: BatchService = Depends(get_service)
):
    """List batches, newest first."""
    return await service.list(
        status=status,
        operation_type=operation_type,
        account_id=account_id,
        limit=limit,
        offset=offset
    )

@batch_router.get("/presets", response_model=Dict[str, BatchPreset])
async def list_presets():
    """List the available batch presets."""
    return BATCH_PRESETS

@batch_router.post("/presets/{preset_name}", response_model=BatchOperation, status_code=201)
async def create_from_preset(
    preset_name: str,
    request: PresetCreateRequest,
    service: BatchService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor)
):
    """Create a batch from a named preset."""
    return await service.create_from_preset(
        preset_name,
        request.items,
        name=request.name,
        description=request.description,
        account_id=request.account_id,
        source_task_id=request.source_task_id,
        actor=actor
    )

@batch_router.get("/{batch_id}", response_model=BatchDetail)
async def get_batch(batch_id: str, service: BatchService = Depends(get_service)):
    """Get a batch with its items."""
    return await service.get(batch_id)

@batch_router.get("/{batch_id}/summary", response_model=SummaryResponse)
async def get_summary(batch_id: str, service: BatchService = Depends(get_service)):
    """Get a human-readable summary of a batch."""
    detail = await service.get(batch_id)
    batch = detail.batch
    return SummaryResponse(
        batch_id=batch.id,
        operation_label=format_operation_type(batch.operation_type),
        status=batch.status,
        estimated_seconds=estimate_execution_time(batch.total_items, batch.operation_type),
        can_rollback=service.can_rollback(batch),
        summary=await service.summary(batch_id)
    )

@batch_router.post("/{batch_id}/approve", response_model=BatchOperation)
async def approve_batch(
    batch_id: str,
    service: BatchService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor)
):
    """Approve a pending batch."""
    return await service.approve(batch_id, actor=actor)

@batch_router.post("/{batch_id}/cancel", response_model=BatchOperation)
async def cancel_batch(
    batch_id: str,
    service: BatchService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor)
):
    """Cancel a pending batch."""
    return await service.cancel(batch_id, actor=actor)

@batch_router.post("/{batch_id}/execute", response_model=ExecuteResponse)
async def execute_batch(
    batch_id: str,
    background_tasks: BackgroundTasks,
    wait: bool = False,
    service: BatchService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor)
):
    """
    Execute an approved batch.

    With ``wait=true`` the run completes before the response is sent;
    otherwise it continues in the background and the executing batch is returned.
    """
    batch = await service.start_execution(batch_id, actor=actor)
    if not wait:
        background_tasks.add_task(service.run_execution, batch)
        logger.info(f"Scheduled background run of batch {batch_id}")
        return ExecuteResponse(batch=batch)

    result = await service.run_execution(batch)
    detail = await service.get(batch_id)
    return ExecuteResponse(batch=detail.batch, result=result)

@batch_router.post("/{batch_id}/rollback", response_model=RollbackResult)
async def rollback_batch(
    batch_id: str,
    service: BatchService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor)
):
    """Roll back a completed batch."""
    return await service.rollback(batch_id, actor=actor)

@batch_router.delete("/{batch_id}", status_code=204)
async def delete_batch(batch_id: str, service: BatchService = Depends(get_service)):
    """Delete a cancelled, failed or rolled back batch."""
    await service.delete(batch_id)
    return Response(status_code=204)
