from typing import Dict, Any, Optional

class BatchError(Exception):
    """Base class for batch-related errors."""
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Initialize batch error.

        Args:
            message: Error message
            details: Optional dictionary containing error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary format."""
        return {
            "status": "error",
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details
        }

class ValidationError(BatchError):
    """Raised when a batch creation request fails validation."""
    status_code = 422

class BatchNotFound(BatchError):
    """Raised when a batch does not exist."""
    status_code = 404

    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Batch {batch_id} not found", {"batch_id": batch_id})

class InvalidTransition(BatchError):
    """Raised when a lifecycle move is not legal from the current status."""
    status_code = 409

    def __init__(
        self,
        batch_id: str,
        trigger: str,
        current_status: str,
        reason: Optional[str] = None
    ) -> None:
        """Initialize invalid transition error.

        Args:
            batch_id: Batch the transition was requested for
            trigger: Requested trigger (approve, cancel, execute, ...)
            current_status: Status the batch was in
            reason: Optional explanation overriding the default message
        """
        message = reason or f"Cannot {trigger} batch {batch_id} in status '{current_status}'"
        super().__init__(
            message,
            {"batch_id": batch_id, "trigger": trigger, "current_status": current_status}
        )
        self.batch_id = batch_id
        self.trigger = trigger
        self.current_status = current_status

class ConcurrentExecutionRejected(BatchError):
    """Raised when a run is requested for a batch that already has one in flight."""
    status_code = 409

    def __init__(self, batch_id: str, trigger: str) -> None:
        super().__init__(
            f"Batch {batch_id} already has a run in progress; {trigger} rejected",
            {"batch_id": batch_id, "trigger": trigger}
        )
        self.batch_id = batch_id
        self.trigger = trigger

class ItemMutationFailed(BatchError):
    """Raised inside an item worker when its remote mutation cannot be completed."""

    def __init__(self, item_id: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, {"item_id": item_id, **(details or {})})
        self.item_id = item_id
