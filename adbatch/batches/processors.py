"""
Operation processors.

This module provides one processor per operation type. A processor prepares
the items of a new batch and checks that the state the remote platform reports
after an apply actually reflects the proposed change.
"""

from typing import Dict, List, Optional

from adbatch.batches.models import (
    AppliedChange, BatchCreateRequest, BatchOperationItem, OperationType,
    NegativeKeywordChange, BidAdjustmentChange, KeywordMigrationChange,
    CampaignStatusChange
)

# Tolerance when comparing bids reported back by the platform
BID_TOLERANCE = 0.005

class OperationProcessor:
    """Base processor shared by all operation types."""

    operation_type: OperationType

    def prepare_items(self, batch_id: str, request: BatchCreateRequest) -> List[BatchOperationItem]:
        """
        Build the items of a new batch from a creation request.

        Args:
            batch_id: ID of the batch being created
            request: Validated creation request

        Returns:
            Items in ``pending`` status, in request order
        """
        return [
            BatchOperationItem(
                batch_id=batch_id,
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                entity_name=item.entity_name,
                change=item.change
            )
            for item in request.items
        ]

    def verify(self, change, applied: AppliedChange) -> Optional[str]:
        """
        Compare the post-apply state with the proposed change.

        Returns:
            A mismatch description, or None when the state is consistent.
            Fields missing from the reported state are not checked.
        """
        return None

class NegativeKeywordProcessor(OperationProcessor):
    """Processor for negative keyword additions."""

    operation_type = OperationType.NEGATIVE_KEYWORD

    def verify(self, change: NegativeKeywordChange, applied: AppliedChange) -> Optional[str]:
        negatives = applied.state.get("negative_keywords")
        if negatives is None:
            return None
        expected = {"text": change.negative_keyword, "match_type": change.negative_match_type}
        if expected not in negatives:
            return f"Negative keyword '{change.negative_keyword}' not present after apply"
        return None

class BidAdjustmentProcessor(OperationProcessor):
    """Processor for bid adjustments."""

    operation_type = OperationType.BID_ADJUSTMENT

    def verify(self, change: BidAdjustmentChange, applied: AppliedChange) -> Optional[str]:
        bid = applied.state.get("bid")
        if bid is None:
            return None
        if abs(float(bid) - change.new_bid) > BID_TOLERANCE:
            return f"Remote bid {bid} does not match requested bid {change.new_bid}"
        return None

class KeywordMigrationProcessor(OperationProcessor):
    """Processor for keyword match-type migrations."""

    operation_type = OperationType.KEYWORD_MIGRATION

    def verify(self, change: KeywordMigrationChange, applied: AppliedChange) -> Optional[str]:
        if "migrated_keyword_id" in applied.state and not applied.state["migrated_keyword_id"]:
            return f"Keyword '{change.keyword_text}' was not created as {change.to_match_type}"
        source_state = applied.state.get("source_state")
        if change.pause_source and source_state is not None and source_state != "paused":
            return f"Source keyword is '{source_state}', expected 'paused'"
        return None

class CampaignStatusProcessor(OperationProcessor):
    """Processor for campaign status changes."""

    operation_type = OperationType.CAMPAIGN_STATUS

    def verify(self, change: CampaignStatusChange, applied: AppliedChange) -> Optional[str]:
        state = applied.state.get("state")
        if state is not None and state != change.target_status:
            return f"Campaign state is '{state}', expected '{change.target_status}'"
        return None

PROCESSORS: Dict[OperationType, OperationProcessor] = {
    processor.operation_type: processor
    for processor in (
        NegativeKeywordProcessor(),
        BidAdjustmentProcessor(),
        KeywordMigrationProcessor(),
        CampaignStatusProcessor(),
    )
}

def get_processor(operation_type: OperationType) -> OperationProcessor:
    """Get the processor for an operation type."""
    return PROCESSORS[OperationType(operation_type)]
