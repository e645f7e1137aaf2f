"""Fiesta (party/event) model."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase, UTCDateTime


class FiestaStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class Fiesta(SqlalchemyBase):
    """A marketing event mentions can be attributed to."""

    __tablename__ = "fiestas"
    __table_args__ = (
        Index("idx_fiestas_org_status_date", "organization_id", "status", "event_date"),
    )

    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    event_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    instagram_handle: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=FiestaStatus.DRAFT.value)

    def __repr__(self) -> str:
        return f"<Fiesta(id={self.id}, name={self.name}, status={self.status})>"
