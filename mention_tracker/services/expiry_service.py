"""Closes out story referrals whose lifetime has elapsed."""

import logging
from datetime import datetime
from typing import Any, Optional

from ..instagram_client import InstagramApiError, InstagramClient, StoryInsights
from ..orm.base import utcnow
from ..orm.notification import NotificationPriority
from ..orm.social_mention import SocialMention
from .credential_service import CredentialService
from .insights_service import InsightsService
from .mention_service import MentionService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


class ExpiryService:
    """Moves expired ``new`` mentions to ``completed`` with a final snapshot."""

    def __init__(
        self,
        mention_service: MentionService,
        credential_service: CredentialService,
        insights_service: InsightsService,
        notification_service: NotificationService,
        client: InstagramClient,
    ):
        self.mention_service = mention_service
        self.credential_service = credential_service
        self.insights_service = insights_service
        self.notification_service = notification_service
        self.client = client

    async def run(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or utcnow()
        results = {"found": 0, "completed": 0, "snapshots": 0, "notifications": 0, "skipped": 0, "errors": 0}

        mentions = await self.mention_service.select_expired(now)
        results["found"] = len(mentions)
        logger.info("Starting expiry sweep: %d expired mentions", len(mentions))

        for mention in mentions:
            try:
                await self.finalize(mention, now, results)
            except Exception as e:
                logger.error("Error finalizing mention %s: %s", mention.id, e, exc_info=True)
                results["errors"] += 1

        logger.info("Expiry sweep finished: %s", results)
        return results

    async def _final_insights(self, mention: SocialMention, now: datetime) -> Optional[StoryInsights]:
        """Best effort: any failure yields None."""
        if not mention.instagram_story_id:
            return None
        token = await self.credential_service.get_access_token(
            organization_id=mention.organization_id
        )
        if token is None or token.is_expired(now):
            logger.info("No usable token for final insights of mention %s", mention.id)
            return None
        try:
            return await self.client.fetch_story_insights(mention.instagram_story_id, token.token)
        except InstagramApiError as e:
            logger.warning("Final insights fetch failed for mention %s: %s", mention.id, e)
            return None

    async def finalize(self, mention: SocialMention, now: datetime, results: dict[str, Any]) -> None:
        insights = await self._final_insights(mention, now)

        if not await self.mention_service.complete(mention.id, now):
            logger.info("Mention %s already finalized, skipping", mention.id)
            results["skipped"] += 1
            return
        results["completed"] += 1

        captured = False
        if insights is not None:
            try:
                await self.insights_service.capture_snapshot(mention, insights, now)
                captured = True
                results["snapshots"] += 1
            except Exception as e:
                logger.error("Could not store final snapshot for mention %s: %s", mention.id, e, exc_info=True)

        suffix = "final insights captured" if captured else "no final insights available"
        await self.notification_service.emit(
            mention.organization_id,
            "story_mention_completed",
            f"Story from {mention.display_username} reached its natural expiry ({suffix})",
            target_type="social_mention",
            target_id=mention.id,
            priority=NotificationPriority.LOW,
        )
        results["notifications"] += 1
