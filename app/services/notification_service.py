from typing import List, Optional
from datetime import datetime, timezone
import logging
import uuid

from ..models.notification_models import Notification, NotificationType
from ..database.database_service import DatabaseService, database_service
from ..database.collections import COLLECTIONS
from ..core.config import settings

logger = logging.getLogger(__name__)


class NotificationService:
    """In-app notification emitter and per-user feed.

    Emission is fire-and-forget: ``create_notification`` reports failure via
    its return value and never raises, so a lost notification can't undo
    the transition that produced it.
    """

    def __init__(self, db: Optional[DatabaseService] = None):
        self.db = db or database_service

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: NotificationType = NotificationType.STATUS_UPDATE,
        related_id: Optional[str] = None,
    ) -> bool:
        """Enqueue an in-app notification for one user"""
        try:
            notification = Notification(
                id=str(uuid.uuid4()),
                user_id=str(user_id),
                type=notification_type,
                title=title,
                body=message,
                request_id=related_id,
                created_at=datetime.now(timezone.utc),
                read=False,
            )
            success, notification_id, error = await self.db.create_document(
                COLLECTIONS['notifications'],
                notification.model_dump(mode="json"),
                notification.id,
            )

            if not success:
                logger.error(f"Failed to create in-app notification: {error}")
                return False

            logger.debug(f"Notification {notification_id} ({notification_type.value}) queued for {user_id}")
            return True

        except Exception as e:
            logger.error(f"Failed to create notification for {user_id}: {str(e)}")
            return False

    async def get_user_notifications(
        self, user_id: str, limit: Optional[int] = None, unread_only: bool = False
    ) -> List[Notification]:
        """Get notifications for a user, newest first"""
        filters = [('user_id', '==', str(user_id))]
        if unread_only:
            filters.append(('read', '==', False))

        success, documents, error = await self.db.query_documents(
            COLLECTIONS['notifications'],
            filters,
            order_by=[('created_at', 'desc')],
            limit=limit or settings.NOTIFICATION_FEED_LIMIT,
        )
        if not success:
            logger.error(f"Failed to get notifications for {user_id}: {error}")
            return []

        notifications = []
        for raw in documents:
            try:
                notifications.append(Notification.model_validate({k: v for k, v in raw.items() if not k.startswith("_")}))
            except Exception as exc:
                logger.warning("Skipping malformed notification: %s", exc)
        return notifications

    async def get_unread_notifications(self, user_id: str) -> List[Notification]:
        return await self.get_user_notifications(user_id, unread_only=True)

    async def get_unread_count(self, user_id: str) -> int:
        return len(await self.get_unread_notifications(user_id))

    async def mark_as_read(self, user_id: str, notification_id: str) -> bool:
        """Mark one notification read; only its recipient may do so."""
        success, notification, error = await self.db.get_document(
            COLLECTIONS['notifications'],
            notification_id
        )
        if not success or not notification:
            return False
        if notification.get('user_id') != str(user_id):
            logger.warning(f"User {user_id} tried to mark notification {notification_id} owned by someone else")
            return False
        if notification.get('read'):
            return True

        updated, error = await self.db.update_document(
            COLLECTIONS['notifications'],
            notification_id,
            {'read': True, 'read_at': datetime.now(timezone.utc).isoformat()}
        )
        if not updated:
            logger.error(f"Failed to mark notification {notification_id} as read: {error}")
        return updated

    async def mark_notifications_as_read(self, user_id: str, notification_ids: List[str]) -> int:
        """Mark several notifications as read; returns how many were updated"""
        count = 0
        for notification_id in notification_ids:
            if await self.mark_as_read(user_id, notification_id):
                count += 1
        return count

    async def mark_all_as_read(self, user_id: str) -> int:
        unread = await self.get_unread_notifications(user_id)
        return await self.mark_notifications_as_read(user_id, [n.id for n in unread if n.id])


notification_service = NotificationService()
