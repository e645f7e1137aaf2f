"""Instagram webhook event handler."""

import logging
from datetime import timedelta
from typing import Any, Optional

from ..config import InstagramConfig
from ..instagram_client import InstagramApiError, InstagramClient
from ..orm.base import utcnow
from ..orm.notification import NotificationPriority
from ..orm.organization import Organization
from ..orm.social_mention import MentionType, SocialMention
from ..webhook_events import (
    CommentEvent,
    DirectMessage,
    StoryInsightsEvent,
    StoryReferral,
    StoryUpload,
    TagEvent,
    WebhookEvent,
    iter_events,
)
from .ambassador_service import AmbassadorService
from .credential_service import CredentialService
from .insights_service import InsightsService
from .mention_service import MentionService
from .notification_service import NotificationService
from .organization_service import OrganizationService
from .party_selection_service import PartySelectionService

logger = logging.getLogger(__name__)

STORY_MATCH_WINDOW = timedelta(minutes=5)


def story_fallback_link(username: Optional[str]) -> Optional[str]:
    """Best-effort link to a user's stories when the exact story is unknown."""
    return f"https://www.instagram.com/stories/{username}/" if username else None


def referral_deep_link(event: StoryReferral) -> Optional[str]:
    if event.story_ref:
        return f"instagram://story-camera/?ref={event.story_ref}"
    if event.referer_uri and "instagram.com" in event.referer_uri:
        return event.referer_uri
    if event.sender_username:
        return f"https://instagram.com/{event.sender_username}"
    return None


class WebhookHandler:
    """Routes Instagram webhook events to appropriate handlers."""

    def __init__(
        self,
        organization_service: OrganizationService,
        mention_service: MentionService,
        ambassador_service: AmbassadorService,
        credential_service: CredentialService,
        notification_service: NotificationService,
        insights_service: InsightsService,
        party_selection_service: PartySelectionService,
        client: InstagramClient,
        instagram_config: InstagramConfig | None = None,
    ):
        """Initialize webhook handler.

        Args:
            organization_service: Tenant resolution by account id
            mention_service: Mention store
            ambassador_service: Ambassador directory
            credential_service: Access tokens for enrichment calls
            notification_service: Operator notification sink
            insights_service: Snapshot storage for pushed insights
            party_selection_service: Dialog started after a referral is stored
            client: Instagram Graph API client
            instagram_config: Link construction settings
        """
        self.organization_service = organization_service
        self.mention_service = mention_service
        self.ambassador_service = ambassador_service
        self.credential_service = credential_service
        self.notification_service = notification_service
        self.insights_service = insights_service
        self.party_selection_service = party_selection_service
        self.client = client
        self.instagram_config = instagram_config or InstagramConfig()

    async def handle_payload(self, payload: dict[str, Any], delivery_id: str = "") -> int:
        """Process every event in a verified payload.

        Args:
            payload: Parsed webhook body
            delivery_id: Identifier used in logs

        Returns:
            Number of events handled without error
        """
        handled = 0
        for event in iter_events(payload):
            try:
                await self.handle_event(event)
                handled += 1
            except Exception as e:
                logger.error(
                    f"Error processing {type(event).__name__} in delivery {delivery_id}: {e}",
                    exc_info=True,
                )
        logger.info(f"Delivery {delivery_id}: handled {handled} events")
        return handled

    async def handle_event(self, event: WebhookEvent) -> None:
        """Route one event to its handler."""
        organization = await self.organization_service.resolve_by_account_id(event.account_id)
        if organization is None:
            logger.warning(f"No organization for Instagram account {event.account_id}, ignoring")
            return

        match event:
            case StoryReferral():
                await self._handle_story_referral(organization, event)
            case DirectMessage():
                await self._handle_direct_message(organization, event)
            case StoryUpload():
                await self._handle_story_upload(organization, event)
            case CommentEvent():
                await self._handle_comment(organization, event)
            case TagEvent():
                await self._handle_tag(organization, event)
            case StoryInsightsEvent():
                await self._handle_story_insights(organization, event)

    async def _handle_story_referral(self, organization: Organization, event: StoryReferral) -> None:
        """Store a story mention referral and start the party dialog."""
        if not event.sender_id:
            logger.warning("Story referral without sender id, ignoring")
            return

        mentioned_at = event.timestamp or utcnow()
        external_event_id = f"story_referral_{event.message_id}_{event.sender_id}"
        if event.timestamp is not None:
            existing = await self.mention_service.find_story_referral(
                organization.id, event.sender_id, mentioned_at
            )
        elif event.message_id:
            # No timestamp to key on, so redeliveries are matched by message id
            existing = await self.mention_service.find_by_external_event_id(
                organization.id, external_event_id
            )
        else:
            existing = None
        if existing is not None:
            logger.info(
                f"Story referral from {event.sender_id[:8]}... at {mentioned_at.isoformat()} "
                "already stored, skipping"
            )
            return

        ambassador = await self.ambassador_service.find_by_platform_user_id(
            organization.id, event.sender_id
        )
        conversation_id = event.message_id
        inbox_link = None
        if conversation_id and organization.facebook_page_id:
            inbox_link = (
                f"{self.instagram_config.inbox_base_url.rstrip('/')}/"
                f"{organization.facebook_page_id}/?conversation_id={conversation_id}"
            )

        mention = await self.mention_service.create(
            organization.id,
            MentionType.STORY_REFERRAL,
            mentioned_at,
            external_event_id=external_event_id,
            recipient_page_id=organization.facebook_page_id,
            instagram_user_id=event.sender_id,
            instagram_username=event.sender_username,
            instagram_story_id=event.story_ref,
            story_url=event.referer_uri,
            deep_link=referral_deep_link(event),
            content=event.text,
            raw_data=event.raw,
            matched_ambassador_id=ambassador.id if ambassador else None,
            conversation_id=conversation_id,
            inbox_link=inbox_link,
        )
        if mention is None:
            return

        logger.info(
            f"Stored story referral {mention.id} from {event.sender_id[:8]}... "
            f"(ambassador={'yes' if ambassador else 'no'})"
        )

        if ambassador is not None:
            await self.notification_service.emit(
                organization.id,
                "story_mention_referral",
                f"{ambassador.display_name} mentioned you in a story and sent a message",
                target_type="social_mention",
                target_id=mention.id,
                priority=NotificationPriority.HIGH,
            )
        else:
            await self.notification_service.emit(
                organization.id,
                "story_mention_unassigned",
                f"New story mention from {mention.display_username} needs an ambassador",
                target_type="social_mention",
                target_id=mention.id,
                priority=NotificationPriority.HIGH,
            )

        await self._enrich_story_referral(organization, mention)
        await self.party_selection_service.decide_and_dispatch(mention.id)

    async def _enrich_story_referral(self, organization: Organization, mention: SocialMention) -> None:
        """Fill in username and story details. Failures only cost precision."""
        username = mention.instagram_username
        story_id = mention.instagram_story_id
        story_url = None
        try:
            token = await self.credential_service.get_access_token(organization_id=organization.id)
            if token is None or token.is_expired():
                logger.info(f"No usable token to enrich mention {mention.id}")
            else:
                if not username:
                    info = await self.client.fetch_account_info(mention.instagram_user_id, token.token)
                    username = info.get("username")
                if not story_id:
                    media = await self.client.find_story_media(
                        mention.instagram_user_id, mention.mentioned_at, token.token, STORY_MATCH_WINDOW
                    )
                    if media is not None:
                        story_id = media.id
                        story_url = media.permalink
        except InstagramApiError as e:
            logger.warning(f"Could not enrich mention {mention.id}: {e}")

        deep_link = mention.deep_link or story_url or story_fallback_link(username)

        await self.mention_service.update_enrichment(
            mention.id,
            instagram_username=username if username != mention.instagram_username else None,
            instagram_story_id=story_id if story_id != mention.instagram_story_id else None,
            story_url=story_url,
            deep_link=deep_link if deep_link != mention.deep_link else None,
        )

    async def _handle_direct_message(self, organization: Organization, event: DirectMessage) -> None:
        """A reply to a party dialog, otherwise a one-shot DM mention."""
        if not event.sender_id:
            logger.debug("Direct message without sender id, ignoring")
            return

        if await self.party_selection_service.handle_reply(
            organization.id, event.sender_id, event.text, event.quick_reply_payload
        ):
            return

        await self._store_one_shot(
            organization,
            MentionType.MENTION,
            external_event_id=event.message_id,
            mentioned_at=event.timestamp,
            instagram_user_id=event.sender_id,
            instagram_username=event.sender_username,
            content=event.text,
            raw_data=event.raw,
        )

    async def _handle_story_upload(self, organization: Organization, event: StoryUpload) -> None:
        await self._store_one_shot(
            organization,
            MentionType.STORY,
            external_event_id=event.media_id,
            instagram_username=event.username,
            instagram_media_id=event.media_id,
            deep_link=story_fallback_link(event.username),
            raw_data=event.raw,
        )

    async def _handle_comment(self, organization: Organization, event: CommentEvent) -> None:
        await self._store_one_shot(
            organization,
            MentionType.COMMENT,
            external_event_id=event.comment_id,
            instagram_user_id=event.author_id,
            instagram_username=event.author_username,
            instagram_media_id=event.media_id,
            content=event.text,
            raw_data=event.raw,
        )

    async def _handle_tag(self, organization: Organization, event: TagEvent) -> None:
        await self._store_one_shot(
            organization,
            MentionType.TAG,
            external_event_id=event.comment_id or event.media_id,
            instagram_media_id=event.media_id,
            raw_data=event.raw,
        )

    async def _handle_story_insights(self, organization: Organization, event: StoryInsightsEvent) -> None:
        if not event.media_id:
            logger.warning("Story insights without media id, ignoring")
            return
        await self.insights_service.record_webhook_insights(
            organization.id, event.media_id, event.metric_values, event.raw, utcnow()
        )

    async def _store_one_shot(
        self,
        organization: Organization,
        mention_type: MentionType,
        external_event_id: Optional[str],
        mentioned_at=None,
        **fields: Any,
    ) -> Optional[SocialMention]:
        """Store a mention outside the story lifecycle, once per external event id."""
        if external_event_id:
            existing = await self.mention_service.find_by_external_event_id(
                organization.id, external_event_id
            )
            if existing is not None:
                logger.info(f"{mention_type.value} event {external_event_id} already stored, skipping")
                return None

        ambassador = None
        if fields.get("instagram_user_id"):
            ambassador = await self.ambassador_service.find_by_platform_user_id(
                organization.id, fields["instagram_user_id"]
            )
        if ambassador is None and fields.get("instagram_username"):
            ambassador = await self.ambassador_service.find_by_username(
                organization.id, fields["instagram_username"]
            )

        mention = await self.mention_service.create(
            organization.id,
            mention_type,
            mentioned_at or utcnow(),
            external_event_id=external_event_id,
            matched_ambassador_id=ambassador.id if ambassador else None,
            **fields,
        )
        if mention is None:
            return None

        if ambassador is not None:
            await self.notification_service.emit(
                organization.id,
                "new_mention",
                f"{ambassador.display_name} mentioned you ({mention_type.value})",
                target_type="social_mention",
                target_id=mention.id,
            )
        else:
            await self.notification_service.emit(
                organization.id,
                "mention_unassigned",
                f"New {mention_type.value} from {mention.display_username} needs an ambassador",
                target_type="social_mention",
                target_id=mention.id,
            )
        logger.info(f"Stored {mention_type.value} mention {mention.id}")
        return mention
