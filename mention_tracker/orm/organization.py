"""Organization model: the tenant boundary."""

from typing import Optional

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase


class Organization(SqlalchemyBase):
    """A tenant owning ambassadors, fiestas and mentions."""

    __tablename__ = "organizations"
    __table_args__ = (
        Index("idx_organizations_instagram_account_id", "instagram_account_id"),
        Index("idx_organizations_instagram_user_id", "instagram_user_id"),
    )

    name: Mapped[str] = mapped_column(String, nullable=False)
    # Business account id Instagram puts in entry[].id / recipient.id
    instagram_account_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    instagram_user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    instagram_username: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    facebook_page_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    webhook_app_secret: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"
