"""StoryInsightsSnapshot model for point-in-time story metrics."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase, UTCDateTime


class StoryInsightsSnapshot(SqlalchemyBase):
    """Insights captured for a story at a given age."""

    __tablename__ = "story_insights_snapshots"
    __table_args__ = (
        Index("idx_snapshots_mention_id", "social_mention_id"),
        Index("idx_snapshots_story_id", "instagram_story_id"),
    )

    social_mention_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("social_mentions.id"), nullable=True
    )
    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    instagram_story_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    instagram_media_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    snapshot_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    story_age_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    reach: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    replies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shares: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    profile_visits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_interactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    impressions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # deprecated metric
    exits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    taps_forward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    taps_back: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    navigation: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    raw_insights: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
