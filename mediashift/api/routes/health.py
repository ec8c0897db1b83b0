"""
Health and stats API routes for MediaShift
"""

import time
from fastapi import APIRouter

from ... import __version__
from ...config import get_config
from ...jobs import get_job_manager
from ...models import CapabilitiesResponse, EngineInfo, HealthResponse, StatsResponse
from ...transcoding import OPERATIONS, BackendKind

router = APIRouter()

# Start time - set by lifespan
start_time: float = time.time()


def set_start_time(t: float) -> None:
    """Set the server start time."""
    global start_time
    start_time = t


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    job_manager = get_job_manager()

    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=time.time() - start_time,
        current_jobs=job_manager.get_active_count(),
    )


@router.get("/api/capabilities", response_model=CapabilitiesResponse)
async def get_capabilities_endpoint():
    """Which execution backends this instance can use."""
    config = get_config()
    job_manager = get_job_manager()

    ffmpeg_path = None
    engine_loaded = False
    for backend in job_manager.controller.backends:
        if backend.kind == BackendKind.LOCAL_PROCESS:
            ffmpeg_path = backend.find_ffmpeg()
        elif backend.kind == BackendKind.EMBEDDED_ENGINE:
            engine_loaded = backend.engine.loaded

    return CapabilitiesResponse(
        ffmpeg_path=ffmpeg_path,
        embedded_engine=EngineInfo(
            enabled=config.transcoding.enable_embedded_engine,
            loaded=engine_loaded,
        ),
        operations=[kind.value for kind in OPERATIONS],
    )


@router.get("/api/stats", response_model=StatsResponse)
async def get_stats():
    """Get service statistics."""
    job_manager = get_job_manager()

    return StatsResponse(
        active_jobs=job_manager.get_active_count(),
        **job_manager.stats.to_dict(),
    )
