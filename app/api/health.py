"""
Health check endpoint.
"""

from datetime import datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    database_connected: bool
    pipeline_running: bool
    in_flight: int
    version: str


@router.get("/v1/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Verifies:
    - API is running
    - The record store is reachable
    - The pipeline has not been cancelled
    """
    runtime = request.app.state.runtime
    database_connected = runtime.store.is_connected()
    pipeline_running = runtime.pipeline.running

    return HealthResponse(
        status="healthy" if database_connected and pipeline_running else "degraded",
        timestamp=datetime.now(),
        database_connected=database_connected,
        pipeline_running=pipeline_running,
        in_flight=runtime.pipeline.in_flight,
        version=runtime.settings.api_version,
    )
