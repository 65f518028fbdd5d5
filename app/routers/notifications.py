"""
Notification Router - per-user notification feed

Provides endpoints for:
- Retrieving the caller's notifications
- Marking notifications as read
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query

from ..auth.dependencies import get_current_user
from ..models.database_models import Actor
from ..models.notification_models import MarkAsReadRequest
from ..services.notification_service import NotificationService, notification_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_service() -> NotificationService:
    return notification_service


@router.get("/")
async def get_user_notifications(
    unread_only: bool = Query(False, description="Return only unread notifications"),
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of notifications to return (defaults to NOTIFICATION_FEED_LIMIT)"),
    current_user: Actor = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """Get notifications for the current user, newest first"""
    notifications = await service.get_user_notifications(current_user.id, limit=limit, unread_only=unread_only)
    return {
        "data": [n.model_dump(mode="json") for n in notifications],
        "count": len(notifications),
        "unread_count": sum(1 for n in notifications if not n.read),
    }


@router.post("/read-all")
async def mark_all_as_read(
    current_user: Actor = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    updated = await service.mark_all_as_read(current_user.id)
    return {"success": True, "updated": updated}


@router.post("/read")
async def mark_notifications_as_read(
    body: MarkAsReadRequest,
    current_user: Actor = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    updated = await service.mark_notifications_as_read(current_user.id, body.notification_ids)
    return {"success": True, "updated": updated}


@router.post("/{notification_id}/read")
async def mark_notification_as_read(
    notification_id: str,
    current_user: Actor = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    if not await service.mark_as_read(current_user.id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True, "notification_id": notification_id}
