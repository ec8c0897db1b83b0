"""
FastAPI application for MediaShift
"""

import time
import logging
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..errors import MediaShiftError
from ..jobs import JobManager, set_job_manager
from .routes import convert, health
from .websocket import broadcast_progress, broadcast_status, websocket_progress_handler

logger = logging.getLogger(__name__)


def create_app(job_manager: Optional[JobManager] = None) -> FastAPI:
    """
    Build the application.

    A prebuilt job manager may be passed in; otherwise one is created from the
    global config when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = get_config()
        health.set_start_time(time.time())

        manager = job_manager or JobManager(config)
        set_job_manager(manager)

        manager.register_progress_callback(broadcast_progress)
        manager.register_status_callback(broadcast_status)
        await manager.start()

        logger.info(f"MediaShift v{__version__} started on {config.server.host}:{config.server.port}")

        yield

        logger.info("Shutting down MediaShift...")
        await manager.stop()
        set_job_manager(None)
        logger.info("MediaShift shutdown complete")

    config = get_config()
    app = FastAPI(
        title="MediaShift",
        description="Media conversion service over ffmpeg",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Original-Size", "X-Output-Size", "X-Job-Id"],
    )

    @app.exception_handler(MediaShiftError)
    async def mediashift_error_handler(request: Request, exc: MediaShiftError):
        if exc.status_code >= 500:
            logger.error(f"[API] {request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
        else:
            logger.info(f"[API] {request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Fixed paths must be registered before /api/{operation}
    app.include_router(health.router)
    app.include_router(convert.router)

    @app.websocket("/ws/progress")
    async def websocket_progress(websocket: WebSocket):
        await websocket_progress_handler(websocket)

    return app


app = create_app()
