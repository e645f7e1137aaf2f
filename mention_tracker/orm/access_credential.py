"""Stored platform access credentials."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase, UTCDateTime


class AccessCredential(SqlalchemyBase):
    """An Instagram access token owned by an organization or an ambassador."""

    __tablename__ = "access_credentials"
    __table_args__ = (
        Index("idx_access_credentials_organization_id", "organization_id"),
        Index("idx_access_credentials_ambassador_id", "ambassador_id"),
    )

    organization_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    ambassador_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("ambassadors.id", ondelete="CASCADE"), nullable=True
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    # NULL means the token does not expire
    token_expiry: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
