"""Service for emitting operator notifications."""

import logging
from typing import Optional

from sqlalchemy import select

from ..orm.notification import Notification, NotificationPriority
from .database import DatabaseService

logger = logging.getLogger(__name__)


class NotificationService:
    """Notification sink backed by the notifications table."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def emit(
        self,
        organization_id: str,
        type: str,
        message: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        priority: NotificationPriority | str = NotificationPriority.NORMAL,
    ) -> Notification:
        """Store a notification for an organization."""
        priority_value = NotificationPriority(priority).value
        async with self.db_service.session() as session:
            notification = Notification(
                organization_id=organization_id,
                type=type,
                message=message,
                target_type=target_type,
                target_id=target_id,
                priority=priority_value,
            )
            session.add(notification)
            await session.commit()
            await session.refresh(notification)
            logger.debug(
                "Notification %s (%s) for organization %s: %s",
                type,
                priority_value,
                organization_id,
                message,
            )
            return notification

    async def list_for_organization(
        self, organization_id: str, type: Optional[str] = None
    ) -> list[Notification]:
        async with self.db_service.session() as session:
            query = select(Notification).where(Notification.organization_id == organization_id)
            if type is not None:
                query = query.where(Notification.type == type)
            result = await session.execute(query.order_by(Notification.created_at.asc()))
            return list(result.scalars().all())
