"""Service for persisting story insights snapshots."""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, or_, select

from ..instagram_client import StoryInsights
from ..orm.social_mention import SocialMention
from ..orm.story_insights_snapshot import StoryInsightsSnapshot
from .database import DatabaseService

logger = logging.getLogger(__name__)


def _story_age_hours(mentioned_at: Optional[datetime], now: datetime) -> Optional[float]:
    if mentioned_at is None:
        return None
    return round((now - mentioned_at).total_seconds() / 3600, 2)


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


class InsightsService:
    """Writes insights snapshots linked to story mentions."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def capture_snapshot(
        self, mention: SocialMention, insights: StoryInsights, now: datetime
    ) -> StoryInsightsSnapshot:
        """Store a snapshot of fetched insights for a mention."""
        async with self.db_service.session() as session:
            snapshot = StoryInsightsSnapshot(
                social_mention_id=mention.id,
                organization_id=mention.organization_id,
                instagram_story_id=mention.instagram_story_id,
                instagram_media_id=mention.instagram_media_id or mention.instagram_story_id,
                snapshot_at=now,
                story_age_hours=_story_age_hours(mention.mentioned_at, now),
                reach=insights.reach,
                replies=insights.replies,
                shares=insights.shares,
                profile_visits=insights.profile_visits,
                total_interactions=insights.total_interactions,
                views=insights.views,
                impressions=insights.impressions,
                exits=insights.exits,
                taps_forward=insights.taps_forward,
                taps_back=insights.taps_back,
                navigation=insights.navigation if insights.navigation is not None else {},
                raw_insights=insights.raw,
            )
            session.add(snapshot)
            await session.commit()
            await session.refresh(snapshot)
            logger.info("Captured insights snapshot for story %s", mention.instagram_story_id)
            return snapshot

    async def record_webhook_insights(
        self,
        organization_id: str,
        media_id: str,
        metrics: dict[str, Any],
        raw: dict[str, Any],
        now: datetime,
    ) -> Optional[StoryInsightsSnapshot]:
        """Store insights pushed by the platform for a known story mention."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SocialMention)
                .where(
                    SocialMention.organization_id == organization_id,
                    or_(
                        SocialMention.instagram_story_id == media_id,
                        SocialMention.instagram_media_id == media_id,
                    ),
                )
                .order_by(SocialMention.mentioned_at.desc())
                .limit(1)
            )
            mention = result.scalar_one_or_none()
            if mention is None:
                logger.info("Insights received for media %s but no mention found yet", media_id)
                return None

            navigation = metrics.get("navigation")
            snapshot = StoryInsightsSnapshot(
                social_mention_id=mention.id,
                organization_id=organization_id,
                instagram_story_id=mention.instagram_story_id,
                instagram_media_id=media_id,
                snapshot_at=now,
                story_age_hours=_story_age_hours(mention.mentioned_at, now),
                reach=_as_int(metrics.get("reach")),
                replies=_as_int(metrics.get("replies")),
                shares=_as_int(metrics.get("shares")),
                impressions=_as_int(metrics.get("impressions")),
                exits=_as_int(metrics.get("exits")),
                taps_forward=_as_int(metrics.get("taps_forward")),
                taps_back=_as_int(metrics.get("taps_back")),
                navigation=navigation if isinstance(navigation, dict) else {},
                raw_insights=raw,
            )
            session.add(snapshot)
            await session.commit()
            await session.refresh(snapshot)
            logger.info("Stored webhook insights snapshot for media %s", media_id)
            return snapshot

    async def count_for_mention(self, mention_id: str) -> int:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(func.count(StoryInsightsSnapshot.id)).where(
                    StoryInsightsSnapshot.social_mention_id == mention_id
                )
            )
            return result.scalar_one()
