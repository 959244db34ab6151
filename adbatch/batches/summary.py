"""Human-readable helpers for batch results."""

import math
from typing import Union

from adbatch.batches.models import ExecutionResult, OperationType

# Estimated seconds per item, by operation type
SECONDS_PER_ITEM = {
    OperationType.NEGATIVE_KEYWORD: 0.5,
    OperationType.BID_ADJUSTMENT: 0.3,
    OperationType.KEYWORD_MIGRATION: 1.0,
    OperationType.CAMPAIGN_STATUS: 0.2,
}

# Fixed overhead of a run in seconds
BASE_EXECUTION_SECONDS = 5

# Errors listed in a summary before the rest are collapsed
MAX_SUMMARY_ERRORS = 5

OPERATION_LABELS = {
    OperationType.NEGATIVE_KEYWORD: "Negative keyword addition",
    OperationType.BID_ADJUSTMENT: "Bid adjustment",
    OperationType.KEYWORD_MIGRATION: "Keyword migration",
    OperationType.CAMPAIGN_STATUS: "Campaign status",
}

def estimate_execution_time(total_items: int, operation_type: Union[OperationType, str]) -> int:
    """
    Estimate how long a batch run will take.

    Args:
        total_items: Number of items in the batch
        operation_type: Operation type of the batch

    Returns:
        int: Estimated seconds, rounded up
    """
    per_item = SECONDS_PER_ITEM[OperationType(operation_type)]
    return math.ceil(BASE_EXECUTION_SECONDS + total_items * per_item)

def format_operation_type(operation_type: Union[OperationType, str]) -> str:
    """Display label of an operation type."""
    return OPERATION_LABELS[OperationType(operation_type)]

def generate_batch_summary(result: ExecutionResult) -> str:
    """
    Render an execution result as text.

    Lists the totals, the success rate and at most the first five errors.
    """
    success_rate = (
        f"{result.success_items / result.total_items * 100:.1f}"
        if result.total_items > 0 else "0"
    )

    lines = [
        "Batch operation finished",
        "━" * 22,
        f"Total items: {result.total_items}",
        f"Succeeded: {result.success_items} ({success_rate}%)",
        f"Failed: {result.failed_items}",
    ]

    if result.errors:
        lines.append("")
        lines.append("Errors:")
        for index, error in enumerate(result.errors[:MAX_SUMMARY_ERRORS], start=1):
            lines.append(f"{index}. Item #{error.item_id}: {error.error}")
        remaining = len(result.errors) - MAX_SUMMARY_ERRORS
        if remaining > 0:
            lines.append(f"... and {remaining} more errors")

    return "\n".join(lines) + "\n"
