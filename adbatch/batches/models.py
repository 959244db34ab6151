"""
Batch operation models.

This module defines the core models of the batch operations engine: the batch
aggregate, its items, the per-operation proposed changes and the snapshots
exchanged with the remote advertising platform.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4
from pydantic import BaseModel, Field, model_validator

def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)

def new_batch_id() -> str:
    return f"batch_{uuid4().hex[:12]}"

def new_item_id() -> str:
    return f"item_{uuid4().hex[:12]}"

class OperationType(str, Enum):
    """Kind of change a batch applies to every one of its items."""
    NEGATIVE_KEYWORD = "negative_keyword"
    BID_ADJUSTMENT = "bid_adjustment"
    KEYWORD_MIGRATION = "keyword_migration"
    CAMPAIGN_STATUS = "campaign_status"

class BatchStatus(str, Enum):
    """Lifecycle status of a batch."""
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"

class ItemStatus(str, Enum):
    """Status of a single item within a batch."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

class EntityType(str, Enum):
    """Remote entity kinds an item can target."""
    CAMPAIGN = "campaign"
    AD_GROUP = "ad_group"
    KEYWORD = "keyword"
    PRODUCT_TARGET = "product_target"

def calculate_bid_change_percent(current_bid: float, new_bid: float) -> float:
    """
    Calculate the relative bid change in percent.

    A zero current bid counts as a 100% increase when the new bid is positive.
    """
    if current_bid == 0:
        return 100.0 if new_bid > 0 else 0.0
    return (new_bid - current_bid) / current_bid * 100

# Proposed changes, one variant per operation type

class NegativeKeywordChange(BaseModel):
    """Add a negative keyword at ad group or campaign level."""
    operation_type: Literal["negative_keyword"] = "negative_keyword"
    negative_keyword: str = Field(..., description="Negative keyword text")
    negative_match_type: Literal["negative_phrase", "negative_exact"] = "negative_phrase"
    negative_level: Literal["ad_group", "campaign"] = "ad_group"

class BidAdjustmentChange(BaseModel):
    """Change the bid of a keyword or product target."""
    operation_type: Literal["bid_adjustment"] = "bid_adjustment"
    current_bid: float = Field(..., ge=0, description="Bid when the change was proposed")
    new_bid: float = Field(..., description="Bid to apply")
    bid_change_reason: Optional[str] = None
    bid_change_percent: Optional[float] = None

    @model_validator(mode="after")
    def _derive_change_percent(self) -> "BidAdjustmentChange":
        self.bid_change_percent = round(
            calculate_bid_change_percent(self.current_bid, self.new_bid), 2
        )
        return self

class KeywordMigrationChange(BaseModel):
    """Move a keyword to a tighter match type, optionally pausing the source."""
    operation_type: Literal["keyword_migration"] = "keyword_migration"
    keyword_text: str = Field(..., description="Keyword text being migrated")
    from_match_type: Literal["broad", "phrase", "exact"] = "broad"
    to_match_type: Literal["broad", "phrase", "exact"] = "exact"
    target_ad_group_id: Optional[str] = Field(
        None, description="Ad group for the new keyword, defaults to the source ad group"
    )
    bid: Optional[float] = Field(None, description="Bid for the new keyword, defaults to the source bid")
    pause_source: bool = True

class CampaignStatusChange(BaseModel):
    """Enable, pause or archive a campaign."""
    operation_type: Literal["campaign_status"] = "campaign_status"
    target_status: Literal["enabled", "paused", "archived"]
    reason: Optional[str] = None

ProposedChange = Annotated[
    Union[NegativeKeywordChange, BidAdjustmentChange, KeywordMigrationChange, CampaignStatusChange],
    Field(discriminator="operation_type"),
]

# Remote boundary models

class EntityRef(BaseModel):
    """Reference to an entity on the remote platform."""
    entity_type: EntityType
    entity_id: str
    entity_name: Optional[str] = None

class StateSnapshot(BaseModel):
    """Remote entity state captured before a mutation."""
    entity_type: EntityType
    entity_id: str
    operation_type: OperationType
    state: Dict[str, Any] = Field(default_factory=dict)
    captured_at: datetime = Field(default_factory=utc_now)

class AppliedChange(BaseModel):
    """Result of a successful remote apply or inverse-apply."""
    entity_type: EntityType
    entity_id: str
    operation_type: OperationType
    state: Dict[str, Any] = Field(default_factory=dict)
    applied_at: datetime = Field(default_factory=utc_now)

# Aggregate and items

class BatchOperationItem(BaseModel):
    """One entity-level proposed change within a batch."""
    id: str = Field(default_factory=new_item_id)
    batch_id: str
    entity_type: EntityType
    entity_id: str
    entity_name: Optional[str] = None
    change: ProposedChange
    status: ItemStatus = ItemStatus.PENDING
    error_message: Optional[str] = None
    rollback_error: Optional[str] = None
    previous_state: Optional[StateSnapshot] = None
    # The change reached the platform and has not been undone, whatever the status
    applied: bool = False
    applied_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def entity(self) -> EntityRef:
        return EntityRef(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            entity_name=self.entity_name,
        )

class BatchOperation(BaseModel):
    """A named job applying one kind of change across many remote entities."""
    id: str = Field(default_factory=new_batch_id)
    name: str
    description: Optional[str] = None
    operation_type: OperationType
    status: BatchStatus = BatchStatus.PENDING

    total_items: int = 0
    processed_items: int = 0
    success_items: int = 0
    failed_items: int = 0
    # Failed items whose change was applied anyway, e.g. a verification mismatch
    unverified_items: int = 0
    rolled_back_items: int = 0
    failed_rollbacks: int = 0

    account_id: Optional[str] = None
    requires_approval: bool = True
    source_type: Optional[str] = None
    source_task_id: Optional[str] = None

    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    executed_by: Optional[str] = None
    rolled_back_by: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None

# Requests and results

class BatchItemInput(BaseModel):
    """Item as supplied by a batch creation request."""
    entity_type: EntityType
    entity_id: str
    entity_name: Optional[str] = None
    change: ProposedChange

class BatchCreateRequest(BaseModel):
    """Request to create a batch together with all of its items."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    operation_type: OperationType
    items: List[BatchItemInput]
    account_id: Optional[str] = None
    requires_approval: bool = True
    source_type: Optional[str] = None
    source_task_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _tag_item_changes(cls, data: Any) -> Any:
        """Let items omit the change tag; it is implied by the batch type."""
        if isinstance(data, dict) and isinstance(data.get("items"), list):
            operation_type = data.get("operation_type")
            if isinstance(operation_type, OperationType):
                operation_type = operation_type.value
            tagged = []
            for item in data["items"]:
                if isinstance(item, dict) and isinstance(item.get("change"), dict):
                    item = {**item, "change": {"operation_type": operation_type, **item["change"]}}
                tagged.append(item)
            data = {**data, "items": tagged}
        return data

class ItemError(BaseModel):
    """Error recorded against a single item."""
    item_id: str
    error: str

class ExecutionResult(BaseModel):
    """Outcome of an execution run."""
    batch_id: str
    status: BatchStatus
    total_items: int
    processed_items: int
    success_items: int
    failed_items: int
    unverified_items: int = 0
    errors: List[ItemError] = Field(default_factory=list)

class RollbackResult(BaseModel):
    """Outcome of a rollback run."""
    batch_id: str
    status: BatchStatus
    rolled_back_items: int
    failed_rollbacks: int
    errors: List[ItemError] = Field(default_factory=list)

class BatchDetail(BaseModel):
    """A batch together with its items."""
    batch: BatchOperation
    items: List[BatchOperationItem]
