"""
Google Drive push notification endpoint.

Drive expects a quick 2xx; the notification itself is handled as a
background task after the response is sent.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header, Request
from loguru import logger

from app.models.schemas import NotificationAccepted


def build_webhook_router(path: str) -> APIRouter:
    """Router serving POST ``path`` for the runtime's watcher."""
    router = APIRouter()

    @router.post(path, response_model=NotificationAccepted)
    async def drive_notification(
        request: Request,
        background_tasks: BackgroundTasks,
        x_goog_resource_state: Optional[str] = Header(default=None),
        x_goog_channel_id: Optional[str] = Header(default=None),
        x_goog_resource_id: Optional[str] = Header(default=None),
    ):
        logger.debug(
            f"Notification: channel={x_goog_channel_id} resource={x_goog_resource_id} "
            f"state={x_goog_resource_state}"
        )
        watcher = request.app.state.runtime.watcher
        background_tasks.add_task(
            watcher.handle_notification,
            x_goog_channel_id or "",
            x_goog_resource_id,
            x_goog_resource_state,
        )
        return NotificationAccepted()

    return router
