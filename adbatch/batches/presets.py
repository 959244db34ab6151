"""Named batch presets for the common sources of proposed changes."""

from typing import Dict, Optional
from pydantic import BaseModel

from adbatch.batches.errors import ValidationError
from adbatch.batches.models import OperationType

class BatchPreset(BaseModel):
    """Defaults applied when a batch is created from a preset."""
    operation_type: OperationType
    name: str
    description: Optional[str] = None
    requires_approval: bool = True
    source_type: Optional[str] = None

BATCH_PRESETS: Dict[str, BatchPreset] = {
    "ngram_negatives": BatchPreset(
        operation_type=OperationType.NEGATIVE_KEYWORD,
        name="N-gram negative keywords",
        description="Negative keyword suggestions from n-gram root analysis",
        requires_approval=True,
        source_type="ngram_analysis"
    ),
    "funnel_migration": BatchPreset(
        operation_type=OperationType.KEYWORD_MIGRATION,
        name="Funnel migration",
        description="Move well-performing broad keywords to phrase or exact match",
        requires_approval=True,
        source_type="funnel_migration"
    ),
    "smart_bidding": BatchPreset(
        operation_type=OperationType.BID_ADJUSTMENT,
        name="Smart bid adjustment",
        description="Bid optimisation based on performance data",
        requires_approval=False,
        source_type="smart_bidding"
    ),
    "conflict_resolution": BatchPreset(
        operation_type=OperationType.NEGATIVE_KEYWORD,
        name="Traffic conflict resolution",
        description="Resolve traffic conflicts across campaigns",
        requires_approval=True,
        source_type="traffic_conflict"
    ),
}

def get_preset(name: str) -> BatchPreset:
    """
    Look up a preset by name.

    Raises:
        ValidationError: If no preset has that name
    """
    preset = BATCH_PRESETS.get(name)
    if preset is None:
        raise ValidationError(
            f"Unknown batch preset '{name}'",
            {"presets": sorted(BATCH_PRESETS)}
        )
    return preset
