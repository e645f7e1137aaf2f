"""Notification model for operator-facing alerts."""

from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"


class Notification(SqlalchemyBase):
    """A record surfaced to organization operators."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_org_created_at", "organization_id", "created_at"),
        Index("idx_notifications_type", "type"),
        Index("idx_notifications_target", "target_type", "target_id"),
    )

    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    target_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    target_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    priority: Mapped[str] = mapped_column(
        String, nullable=False, default=NotificationPriority.NORMAL.value
    )
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, type={self.type}, "
            f"priority={self.priority}, target={self.target_type}:{self.target_id})>"
        )
