"""
Main FastAPI application module.

This module sets up the FastAPI application with all routes and middleware.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adbatch.config import Settings, settings as default_settings
from adbatch.api.routes import batch_router
from adbatch.batches.errors import BatchError
from adbatch.batches.services import BatchService
from adbatch.remote.rate_limit import RateLimitedClient, RateLimiter
from adbatch.remote.sandbox import SandboxAdsClient
from adbatch.store.base import Store
from adbatch.store.memory import MemoryBatchStore
from adbatch.store.redis_store import RedisBatchStore
from adbatch.utils.logging import setup_logger

logger = setup_logger(__name__)

def build_store(settings: Settings) -> Store:
    """Create the configured store backend."""
    if settings.store.backend == "redis":
        return RedisBatchStore(config=settings.redis)
    return MemoryBatchStore()

def build_service(settings: Settings) -> BatchService:
    """Create the batch service from settings."""
    client = RateLimitedClient(
        SandboxAdsClient(),
        RateLimiter(max_requests=settings.remote.max_requests_per_second, window_seconds=1.0)
    )
    logger.info(
        f"Using {settings.store.backend} store, sandbox client limited to "
        f"{settings.remote.max_requests_per_second} requests per second"
    )
    return BatchService(build_store(settings), client, config=settings.batch, retry=settings.retry)

def create_app(service: Optional[BatchService] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        service: Batch service to serve; built from settings if omitted
        settings: Application settings

    Returns:
        FastAPI: Configured application
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.batch_service.close()

    app = FastAPI(
        title="Ad Batch Operations Engine",
        description="Bulk mutations against a remote advertising platform with approval and rollback",
        version="1.0.0",
        debug=settings.server.debug,
        lifespan=lifespan
    )
    app.state.batch_service = service or build_service(settings)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    @app.exception_handler(BatchError)
    async def batch_error_handler(request: Request, exc: BatchError):
        """Map batch errors to their HTTP status codes."""
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Include routers
    app.include_router(batch_router)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app

app = create_app()
