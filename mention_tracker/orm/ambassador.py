"""Ambassador model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase, UTCDateTime


class Ambassador(SqlalchemyBase):
    """A person promoting an organization's fiestas on Instagram."""

    __tablename__ = "ambassadors"
    __table_args__ = (
        Index("idx_ambassadors_org_user_id", "organization_id", "instagram_user_id"),
        Index("idx_ambassadors_org_username", "organization_id", "instagram_username"),
    )

    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    instagram_username: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    instagram_user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # Set once, when the "connect your account" request has been raised
    permission_requested_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        if full_name:
            return full_name
        return f"@{self.instagram_username}" if self.instagram_username else self.id
