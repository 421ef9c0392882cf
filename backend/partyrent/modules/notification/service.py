"""Notification service."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.exceptions import NotFoundError
from partyrent.modules.booking.repository import BookingRepository
from partyrent.modules.notification.models import Notification, NotificationType
from partyrent.modules.notification.repository import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationService:
    """Create and read in-app notifications."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = NotificationRepository(session)

    async def create(
        self,
        user_id: uuid.UUID,
        title: str,
        content: str,
        type: NotificationType = NotificationType.SYSTEM,
        data: Optional[dict] = None,
    ) -> Notification:
        notification = await self.repository.create(
            user_id=user_id,
            type=type.value,
            title=title,
            content=content,
            data=data,
        )
        logger.info(f"Notification '{title}' created for user {user_id}")
        return notification

    async def notify_admins(
        self,
        title: str,
        content: str,
        data: Optional[dict] = None,
    ) -> int:
        """Send the same SYSTEM notification to every active admin.

        Returns:
            Number of notifications created
        """
        admin_ids = await BookingRepository(self.session).get_admin_ids()
        for admin_id in admin_ids:
            await self.create(admin_id, title, content, NotificationType.SYSTEM, data)
        if not admin_ids:
            logger.warning(f"No admin to notify about: {title}")
        return len(admin_ids)

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        return await self.repository.list_for_user(user_id, unread_only, limit, offset)

    async def count_unread(self, user_id: uuid.UUID) -> int:
        return await self.repository.count_unread(user_id)

    async def mark_as_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        """Mark one of the user's notifications as read.

        Raises:
            NotFoundError: Unknown id, or the notification belongs to someone else
        """
        notification = await self.repository.get_by_id(notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification not found")
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
            await self.session.flush()
        return notification

    async def mark_all_as_read(self, user_id: uuid.UUID) -> int:
        count = await self.repository.mark_all_read(user_id)
        logger.info(f"Marked {count} notifications read for user {user_id}")
        return count
