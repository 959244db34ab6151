"""
Validators for batch operations.

This module provides validation functions to ensure proposed changes are
consistent and within platform limits before a batch is persisted.
"""

from typing import List, Dict, Any, Optional

from adbatch.config import BatchConfig, batch_config
from adbatch.batches.errors import ValidationError
from adbatch.batches.models import (
    BatchCreateRequest, BatchItemInput, EntityType, OperationType,
    NegativeKeywordChange, BidAdjustmentChange, KeywordMigrationChange,
    calculate_bid_change_percent
)

# Entity types each operation can target
ALLOWED_ENTITY_TYPES: Dict[OperationType, set] = {
    OperationType.NEGATIVE_KEYWORD: {
        EntityType.CAMPAIGN, EntityType.AD_GROUP, EntityType.KEYWORD, EntityType.PRODUCT_TARGET
    },
    OperationType.BID_ADJUSTMENT: {EntityType.KEYWORD, EntityType.PRODUCT_TARGET},
    OperationType.KEYWORD_MIGRATION: {EntityType.KEYWORD},
    OperationType.CAMPAIGN_STATUS: {EntityType.CAMPAIGN},
}

class BatchValidator:
    """Validates batch creation requests before they are persisted."""

    def __init__(self, config: Optional[BatchConfig] = None):
        self.config = config or batch_config

    def validate_negative_keyword(self, change: NegativeKeywordChange) -> None:
        """
        Validate a negative keyword change.

        Raises:
            ValidationError: If validation fails
        """
        keyword = change.negative_keyword
        if not keyword or not keyword.strip():
            raise ValidationError("Negative keyword cannot be empty")

        max_length = self.config.max_negative_keyword_length
        if len(keyword) > max_length:
            raise ValidationError(
                f"Negative keyword cannot exceed {max_length} characters",
                {"length": len(keyword)}
            )

    def validate_bid_adjustment(self, change: BidAdjustmentChange) -> None:
        """
        Validate a bid adjustment against the configured bid limits.

        Raises:
            ValidationError: If validation fails
        """
        if change.new_bid < self.config.min_bid:
            raise ValidationError(
                f"Bid cannot be lower than ${self.config.min_bid:.2f}",
                {"new_bid": change.new_bid}
            )

        if change.new_bid > self.config.max_bid:
            raise ValidationError(
                f"Bid cannot exceed ${self.config.max_bid:g}",
                {"new_bid": change.new_bid}
            )

        percent = abs(calculate_bid_change_percent(change.current_bid, change.new_bid))
        if percent > self.config.max_bid_change_percent:
            raise ValidationError(
                f"Single bid change cannot exceed {self.config.max_bid_change_percent:g}%",
                {"change_percent": round(percent, 2)}
            )

    def validate_keyword_migration(self, change: KeywordMigrationChange) -> None:
        """
        Validate a keyword migration.

        Raises:
            ValidationError: If validation fails
        """
        if not change.keyword_text or not change.keyword_text.strip():
            raise ValidationError("Keyword text cannot be empty")

        if change.from_match_type == change.to_match_type:
            raise ValidationError(
                "Migration must change the match type",
                {"match_type": change.to_match_type}
            )

        if change.bid is not None and not (self.config.min_bid <= change.bid <= self.config.max_bid):
            raise ValidationError(
                f"Bid must be between ${self.config.min_bid:.2f} and ${self.config.max_bid:g}",
                {"bid": change.bid}
            )

    def validate_item(self, operation_type: OperationType, item: BatchItemInput) -> None:
        """
        Validate a single item of a batch.

        Args:
            operation_type: Operation type of the owning batch
            item: Item to validate

        Raises:
            ValidationError: If validation fails
        """
        if item.change.operation_type != operation_type.value:
            raise ValidationError(
                f"Item change type '{item.change.operation_type}' does not match "
                f"batch operation type '{operation_type.value}'"
            )

        if item.entity_type not in ALLOWED_ENTITY_TYPES[operation_type]:
            raise ValidationError(
                f"Entity type '{item.entity_type.value}' is not valid for {operation_type.value}",
                {"valid_entities": sorted(e.value for e in ALLOWED_ENTITY_TYPES[operation_type])}
            )

        change = item.change
        if isinstance(change, NegativeKeywordChange):
            self.validate_negative_keyword(change)
        elif isinstance(change, BidAdjustmentChange):
            self.validate_bid_adjustment(change)
        elif isinstance(change, KeywordMigrationChange):
            self.validate_keyword_migration(change)

    def validate_batch(self, request: BatchCreateRequest) -> None:
        """
        Validate a batch creation request.

        Every item is checked; all item errors are reported together.

        Raises:
            ValidationError: If validation fails
        """
        if not request.items:
            raise ValidationError("Batch cannot be empty")

        if len(request.items) > self.config.max_size:
            raise ValidationError(
                f"Batch size {len(request.items)} exceeds maximum {self.config.max_size}",
                {"max_size": self.config.max_size}
            )

        item_errors: List[Dict[str, Any]] = []
        for index, item in enumerate(request.items):
            try:
                self.validate_item(request.operation_type, item)
            except ValidationError as e:
                item_errors.append({
                    "index": index,
                    "entity_id": item.entity_id,
                    "error": e.message
                })

        if item_errors:
            raise ValidationError(
                f"{len(item_errors)} of {len(request.items)} items failed validation",
                {"items": item_errors}
            )
