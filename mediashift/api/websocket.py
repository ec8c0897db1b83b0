"""
WebSocket handling for MediaShift
"""

import asyncio
import json
import logging
from typing import List

from fastapi import WebSocket, WebSocketDisconnect

from ..jobs import JobStatus
from ..models import WebSocketMessage

logger = logging.getLogger(__name__)

# Global WebSocket connections
websocket_connections: List[WebSocket] = []


def _schedule(message: WebSocketMessage) -> None:
    if not websocket_connections:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    loop.create_task(_broadcast_message(message.model_dump()))


def broadcast_progress(job_id: str, fraction: float) -> None:
    """Broadcast progress update to all WebSocket clients."""
    _schedule(WebSocketMessage(
        type="progress",
        job_id=job_id,
        data={"fraction": round(fraction, 4), "progress": round(fraction * 100, 1)},
    ))


def broadcast_status(job_id: str, status: JobStatus) -> None:
    """Broadcast status change to all WebSocket clients."""
    _schedule(WebSocketMessage(
        type="status_change",
        job_id=job_id,
        data={"status": status.value},
    ))


async def _broadcast_message(message: dict) -> None:
    """Send message to all connected WebSocket clients."""
    disconnected = []
    for ws in websocket_connections[:]:  # Iterate over a copy
        try:
            await ws.send_json(message)
        except Exception:
            disconnected.append(ws)

    for ws in disconnected:
        if ws in websocket_connections:
            websocket_connections.remove(ws)


async def websocket_progress_handler(websocket: WebSocket) -> None:
    """WebSocket endpoint handler for real-time progress updates."""
    await websocket.accept()
    websocket_connections.append(websocket)

    logger.info(f"WebSocket client connected. Total connections: {len(websocket_connections)}")

    try:
        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=30.0)

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(message, dict) and message.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})

            except asyncio.TimeoutError:
                # Keep idle connections alive
                await websocket.send_json({"type": "ping"})

    except WebSocketDisconnect:
        pass
    except RuntimeError as e:
        logger.debug(f"WebSocket closed: {e}")
    finally:
        if websocket in websocket_connections:
            websocket_connections.remove(websocket)
        logger.info(f"WebSocket client disconnected. Total connections: {len(websocket_connections)}")
