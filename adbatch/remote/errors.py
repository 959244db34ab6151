"""
Error handling module for remote advertising platform calls.

This module provides the error system used at the remote boundary:
- Custom exception hierarchy
- Error classification (retryable vs. non-retryable)
- Retry strategy with exponential backoff
"""
from typing import Optional, Dict, Any, Callable
from enum import Enum
import logging
from datetime import datetime, timezone
import asyncio

logger = logging.getLogger(__name__)

class ErrorSeverity(str, Enum):
    """Severity levels for errors."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

class ErrorCategory(str, Enum):
    """Categories of errors that can occur."""
    NETWORK = "network"
    API = "api"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    SERVICE = "service"

class RemoteError(Exception):
    """Base error class for remote platform failures."""
    retryable: bool = False

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        category: ErrorCategory = ErrorCategory.API,
        severity: ErrorSeverity = ErrorSeverity.ERROR
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.details = details or {}
        self.category = category
        self.severity = severity
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary format."""
        return {
            "status": "error",
            "message": self.message,
            "operation": self.operation,
            "details": self.details,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat()
        }

class EntityNotFoundError(RemoteError):
    """The referenced entity does not exist on the platform."""
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            operation=operation,
            details=details,
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.ERROR
        )

class ValidationRejectedError(RemoteError):
    """The platform rejected the requested change."""
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            operation=operation,
            details=details,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.WARNING
        )

class RemoteTransientError(RemoteError):
    """Base class for errors that can be retried."""
    retryable = True

class RateLimitError(RemoteTransientError):
    """Rate limit exceeded errors."""
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(
            message=message,
            operation=operation,
            details={
                **(details or {}),
                "retry_after": retry_after
            },
            category=ErrorCategory.RATE_LIMIT,
            severity=ErrorSeverity.WARNING
        )
        self.retry_after = retry_after

class ServiceUnavailableError(RemoteTransientError):
    """Service unavailable or transient network errors."""
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            operation=operation,
            details=details,
            category=ErrorCategory.SERVICE,
            severity=ErrorSeverity.WARNING
        )

class RemoteTimeoutError(RemoteTransientError):
    """Timeout errors."""
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ):
        super().__init__(
            message=message,
            operation=operation,
            details={
                **(details or {}),
                "timeout": timeout
            },
            category=ErrorCategory.TIMEOUT,
            severity=ErrorSeverity.WARNING
        )

class RetryStrategy:
    """Strategy for retrying failed remote calls."""
    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
        backoff_factor: float = 2.0
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.attempts = 0
        self.last_error: Optional[Exception] = None

    def should_retry(self, error: Exception) -> bool:
        """Record a failed attempt and decide whether to try again."""
        self.last_error = error
        self.attempts += 1
        if not isinstance(error, RemoteTransientError):
            return False
        return self.attempts < self.max_retries

    def get_delay(self) -> float:
        """Get delay before next retry."""
        delay = self.base_delay * (self.backoff_factor ** (self.attempts - 1))
        retry_after = getattr(self.last_error, "retry_after", None)
        if retry_after:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)

    def reset(self) -> None:
        """Reset retry counter."""
        self.attempts = 0
        self.last_error = None

async def call_with_retry(
    func: Callable,
    *args,
    strategy: Optional[RetryStrategy] = None,
    timeout: Optional[float] = None,
    **kwargs
):
    """
    Await ``func(*args, **kwargs)``, retrying transient remote errors.

    Args:
        func: Async callable to invoke
        strategy: Retry strategy; a default one is used if omitted
        timeout: Seconds allowed per attempt; an attempt that runs over
            raises RemoteTimeoutError, which is retried like any transient error

    Returns:
        Whatever ``func`` returns

    Raises:
        RemoteError: The last error once retries are exhausted, or any
            non-retryable error immediately
    """
    strategy = strategy or RetryStrategy()
    name = getattr(func, "__name__", repr(func))
    while True:
        try:
            if timeout is None:
                return await func(*args, **kwargs)
            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
            except asyncio.TimeoutError:
                raise RemoteTimeoutError(
                    f"{name} timed out after {timeout:g}s",
                    operation=name,
                    timeout=timeout
                ) from None
        except RemoteError as e:
            if not strategy.should_retry(e):
                raise
            delay = strategy.get_delay()
            logger.warning(
                f"Transient error calling {name} "
                f"(attempt {strategy.attempts}/{strategy.max_retries}), "
                f"retrying in {delay:.2f}s: {e.message}"
            )
            await asyncio.sleep(delay)
