"""
Pytest configuration for the batch operations engine.
"""
import pytest

from adbatch.config import BatchConfig, RetryConfig
from adbatch.batches.lifecycle import LifecycleController
from adbatch.batches.services import BatchService
from adbatch.store.memory import MemoryBatchStore
from adbatch.tests.fakes import ScriptedSandbox, seed_account

@pytest.fixture
def batch_settings() -> BatchConfig:
    """Batch configuration with a small worker pool."""
    return BatchConfig(concurrent_limit=3)

@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry configuration without backoff delays."""
    return RetryConfig(max_retries=3, base_delay=0, max_delay=0, backoff_factor=1)

@pytest.fixture
def store() -> MemoryBatchStore:
    """Create an empty in-memory store."""
    return MemoryBatchStore()

@pytest.fixture
def sandbox() -> ScriptedSandbox:
    """Create a sandbox seeded with one account."""
    client = ScriptedSandbox()
    seed_account(client)
    return client

@pytest.fixture
def controller(store, batch_settings) -> LifecycleController:
    """Create a lifecycle controller over the store."""
    return LifecycleController(store, batch_settings)

@pytest.fixture
def service(store, sandbox, batch_settings, fast_retry) -> BatchService:
    """Create a batch service over the sandbox."""
    return BatchService(store, sandbox, config=batch_settings, retry=fast_retry)
