# src/delegation_sync/main.py
"""Main entry point for the delegation sync API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from delegation_sync.api.v1 import data_router
from delegation_sync.core.settings import settings
from delegation_sync.services.koios import get_koios_client
from delegation_sync.services.worker import DelegationSyncWorker, get_delegation_sync_worker

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Incremental DRep delegation sync from Koios",
    version=settings.app_version,
)

# Include API routers
app.include_router(data_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.delegation_sync_enabled:
        worker = get_delegation_sync_worker()
        await worker.start()
        app.state.sync_worker = worker
    else:
        app.state.sync_worker = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: DelegationSyncWorker | None = getattr(app.state, "sync_worker", None)
    if worker:
        await worker.stop()
    await get_koios_client().close()


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint to verify the service is running."""
    worker: DelegationSyncWorker | None = getattr(app.state, "sync_worker", None)
    return {
        "status": "ok",
        "sync_worker_running": bool(worker and worker.running),
        "koios": get_koios_client().get_metrics(),
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("delegation_sync.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
