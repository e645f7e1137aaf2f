"""Scheduled re-checks of story referrals during their lifetime."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from ..config import LifecycleConfig
from ..instagram_client import InstagramClient, VerificationOutcome
from ..orm.base import utcnow
from ..orm.notification import NotificationPriority
from ..orm.social_mention import AccountVisibility, MentionState, SocialMention
from .ambassador_service import AmbassadorService
from .credential_service import CredentialService
from .mention_service import MentionService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

_VISIBILITY = {
    VerificationOutcome.EXISTS: AccountVisibility.PUBLIC,
    VerificationOutcome.DELETED: AccountVisibility.PUBLIC,
    VerificationOutcome.PRIVATE_OR_NO_PERMISSION: AccountVisibility.PRIVATE,
}


class VerificationService:
    """Detects stories deleted before their natural expiry."""

    def __init__(
        self,
        mention_service: MentionService,
        credential_service: CredentialService,
        ambassador_service: AmbassadorService,
        notification_service: NotificationService,
        client: InstagramClient,
        lifecycle: LifecycleConfig | None = None,
    ):
        self.mention_service = mention_service
        self.credential_service = credential_service
        self.ambassador_service = ambassador_service
        self.notification_service = notification_service
        self.client = client
        self.lifecycle = lifecycle or LifecycleConfig()

    async def run(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Check every mention due at one of the configured offsets."""
        now = now or utcnow()
        results = {
            "checked": 0,
            "transient": 0,
            "skipped": 0,
            "flagged_early_delete": 0,
            "expired_unknown": 0,
            "permission_requests": 0,
            "notifications": 0,
            "errors": 0,
        }
        logger.info("Starting story verification sweep at %s", now.isoformat())

        seen: set[str] = set()
        for offset in self.lifecycle.verification_offsets_minutes:
            mentions = await self.mention_service.select_for_verification(offset, now)
            if mentions:
                logger.info("Offset %dm: %d mentions due", offset, len(mentions))
            for mention in mentions:
                if mention.id in seen:
                    continue
                seen.add(mention.id)
                try:
                    await self.check_mention(mention, now, results)
                except Exception as e:
                    logger.error("Error verifying mention %s: %s", mention.id, e, exc_info=True)
                    results["errors"] += 1

        logger.info("Story verification sweep finished: %s", results)
        return results

    async def _outcome(self, mention: SocialMention, now: datetime) -> VerificationOutcome:
        token = await self.credential_service.get_access_token(
            organization_id=mention.organization_id
        )
        if token is None or token.is_expired(now):
            logger.warning("No usable token for organization %s", mention.organization_id)
            return VerificationOutcome.TOKEN_INVALID
        return await self.client.story_exists(mention.instagram_story_id, token.token)

    async def check_mention(
        self, mention: SocialMention, now: datetime, results: dict[str, Any]
    ) -> None:
        if not mention.instagram_story_id:
            logger.info("Mention %s has no story id, counting check only", mention.id)
            if await self.mention_service.record_check(mention.id, now):
                results["checked"] += 1
            else:
                results["skipped"] += 1
            return

        outcome = await self._outcome(mention, now)
        if outcome.is_transient:
            logger.info("Transient outcome %s for mention %s, retrying later", outcome.value, mention.id)
            results["transient"] += 1
            return

        age = now - mention.mentioned_at
        within_lifetime = age < timedelta(hours=self.lifecycle.story_lifetime_hours)
        terminal_state = None
        if within_lifetime and outcome is VerificationOutcome.DELETED:
            terminal_state = MentionState.FLAGGED_EARLY_DELETE
        elif within_lifetime and outcome in (
            VerificationOutcome.PRIVATE_OR_NO_PERMISSION,
            VerificationOutcome.TOKEN_INVALID,
        ):
            terminal_state = MentionState.EXPIRED_UNKNOWN

        visibility = _VISIBILITY.get(outcome)
        if not await self.mention_service.record_check(
            mention.id, now, visibility=visibility, terminal_state=terminal_state
        ):
            logger.info("Mention %s changed concurrently, skipping", mention.id)
            results["skipped"] += 1
            return
        results["checked"] += 1
        logger.debug("Mention %s: %s (state=%s)", mention.id, outcome.value,
                     terminal_state.value if terminal_state else mention.state)

        hours = age.total_seconds() / 3600
        if terminal_state is MentionState.FLAGGED_EARLY_DELETE:
            results["flagged_early_delete"] += 1
            await self.notification_service.emit(
                mention.organization_id,
                "story_early_delete",
                f"Story from {mention.display_username} was deleted {hours:.1f}h after posting",
                target_type="social_mention",
                target_id=mention.id,
                priority=NotificationPriority.MEDIUM,
            )
            results["notifications"] += 1
        elif terminal_state is MentionState.EXPIRED_UNKNOWN:
            results["expired_unknown"] += 1
            reason = "the access token is invalid" if outcome is VerificationOutcome.TOKEN_INVALID \
                else "the account is private"
            await self.notification_service.emit(
                mention.organization_id,
                "story_unverifiable",
                f"Story from {mention.display_username} can no longer be verified because {reason}",
                target_type="social_mention",
                target_id=mention.id,
                priority=NotificationPriority.LOW,
            )
            results["notifications"] += 1

        if visibility is AccountVisibility.PUBLIC and mention.matched_ambassador_id:
            await self._request_permission(mention, now, results)

    async def _request_permission(
        self, mention: SocialMention, now: datetime, results: dict[str, Any]
    ) -> None:
        """Ask operators, once per ambassador, to get the ambassador's account connected."""
        ambassador_id = mention.matched_ambassador_id
        if await self.credential_service.has_stored_credential(ambassador_id):
            return
        if not await self.ambassador_service.mark_permission_requested(ambassador_id, now):
            return

        ambassador = await self.ambassador_service.get(ambassador_id)
        name = ambassador.display_name if ambassador else mention.display_username
        await self.notification_service.emit(
            mention.organization_id,
            "ambassador_permission_request",
            f"{name} has a public account. Ask them to connect Instagram "
            "so their story insights can be collected",
            target_type="ambassador",
            target_id=ambassador_id,
        )
        results["permission_requests"] += 1
        results["notifications"] += 1
