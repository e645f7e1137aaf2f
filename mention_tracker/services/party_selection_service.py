"""Party selection dialog: ask the sender which fiesta a story belongs to."""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Optional

from ..config import PartySelectionConfig
from ..instagram_client import InstagramApiError, InstagramClient
from ..orm.base import utcnow
from ..orm.notification import NotificationPriority
from ..orm.social_mention import PartySelectionStatus, SocialMention
from ..party_selection import (
    ActiveParty,
    PartyOption,
    PartySelectionAction,
    build_party_options,
    build_quick_replies,
    build_selection_message,
    decide,
    parse_party_response,
)
from .credential_service import CredentialService
from .fiesta_service import FiestaService
from .mention_service import MentionService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

MAX_TIMEOUT_EXAMPLES = 3


class PartySelectionService:
    """Drives the none → pending_response → resolved/timeout dialog."""

    def __init__(
        self,
        mention_service: MentionService,
        fiesta_service: FiestaService,
        credential_service: CredentialService,
        notification_service: NotificationService,
        client: InstagramClient,
        config: PartySelectionConfig | None = None,
    ):
        self.mention_service = mention_service
        self.fiesta_service = fiesta_service
        self.credential_service = credential_service
        self.notification_service = notification_service
        self.client = client
        self.config = config or PartySelectionConfig()

    @property
    def timeout(self) -> timedelta:
        return timedelta(hours=self.config.timeout_hours)

    async def _usable_token(self, organization_id: str, now: datetime) -> Optional[str]:
        token = await self.credential_service.get_access_token(organization_id=organization_id)
        if token is None:
            logger.warning("No access token for organization %s", organization_id)
            return None
        if token.is_expired(now):
            logger.warning("Access token expired for organization %s", organization_id)
            return None
        return token.token

    async def decide_and_dispatch(
        self, mention_id: str, now: Optional[datetime] = None
    ) -> Optional[PartySelectionAction]:
        """
        Link a new mention to a fiesta, asking the sender when it is ambiguous.

        Returns:
            The action taken, or None if the mention needs no selection.
        """
        now = now or utcnow()
        mention = await self.mention_service.get(mention_id)
        if mention is None:
            logger.warning("Mention %s not found for party selection", mention_id)
            return None
        if mention.matched_fiesta_id or mention.party_selection_status != PartySelectionStatus.NONE.value:
            logger.debug("Mention %s already linked or in dialog, skipping", mention_id)
            return None

        parties = await self.fiesta_service.get_active_events(mention.organization_id)
        decision = decide(parties)

        if decision.action is PartySelectionAction.NO_PARTIES:
            logger.info("No active parties for organization %s, leaving mention %s unlinked",
                        mention.organization_id, mention_id)
        elif decision.action is PartySelectionAction.AUTO_MATCH:
            if await self.mention_service.assign_fiesta(mention_id, decision.matched_party_id):
                logger.info("Auto-matched mention %s to party %s", mention_id, decision.matched_party_id)
        else:
            await self.dispatch(mention, decision.parties, now)

        return decision.action

    async def dispatch(
        self, mention: SocialMention, parties: list[ActiveParty], now: Optional[datetime] = None
    ) -> bool:
        """
        Send the party options message, at most once per mention.

        The send slot is claimed before the message goes out and released if
        the send fails, so concurrent callers never both message the user.

        Returns:
            True if this call sent the message.
        """
        now = now or utcnow()
        if not mention.instagram_user_id:
            logger.warning("Mention %s has no sender id, cannot offer parties", mention.id)
            return False

        token = await self._usable_token(mention.organization_id, now)
        if token is None:
            logger.info("Skipping party selection for mention %s", mention.id)
            return False

        if not await self.mention_service.claim_party_dispatch(mention.id, now):
            logger.info("Party options already offered for mention %s", mention.id)
            return False

        options = build_party_options(parties)
        quick_replies = build_quick_replies(
            options,
            max_options=self.config.max_quick_replies,
            title_length=self.config.quick_reply_title_length,
        )
        if len(options) > len(quick_replies):
            logger.warning(
                "Organization %s has %d active parties; only the first %d get quick replies",
                mention.organization_id,
                len(options),
                len(quick_replies),
            )
        text = build_selection_message(parties, self.config.header_text)

        try:
            sent = await self.client.send_message_with_quick_replies(
                mention.instagram_user_id, text, quick_replies, token
            )
        except InstagramApiError as e:
            logger.error("Failed to send party options for mention %s: %s", mention.id, e)
            await self.mention_service.release_party_dispatch(mention.id)
            return False

        await self.mention_service.mark_party_pending(
            mention.id, [option.to_dict() for option in options], sent.message_id
        )
        await self.notification_service.emit(
            mention.organization_id,
            "party_selection_sent",
            f"Asked {mention.display_username} which party their story is about "
            f"({len(options)} options)",
            target_type="social_mention",
            target_id=mention.id,
        )
        logger.info("Sent %d party options for mention %s", len(options), mention.id)
        return True

    async def handle_reply(
        self,
        organization_id: str,
        sender_id: str,
        text: Optional[str],
        payload: Optional[str],
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Resolve the sender's pending dialog from their reply.

        Returns:
            True if the reply selected a party. Unmatched replies leave the
            mention pending.
        """
        now = now or utcnow()
        pending = await self.mention_service.find_pending_for_user(organization_id, sender_id)
        if pending is None:
            return False

        options = [PartyOption.from_dict(option) for option in pending.party_options_sent or []]
        selected = parse_party_response(text, payload, options)
        if selected is None:
            logger.info("Could not match reply to a party for mention %s", pending.id)
            return False

        if not await self.mention_service.resolve_party(pending.id, selected.id, now):
            logger.info("Mention %s was resolved concurrently", pending.id)
            return True

        logger.info("Mention %s resolved to party %s", pending.id, selected.id)
        await self._send_confirmation(organization_id, sender_id, selected, now)
        await self.notification_service.emit(
            organization_id,
            "fiesta_mention_linked",
            f"{pending.display_username} linked their story to {selected.name}",
            target_type="social_mention",
            target_id=pending.id,
        )
        return True

    async def _send_confirmation(
        self, organization_id: str, sender_id: str, selected: PartyOption, now: datetime
    ) -> None:
        token = await self._usable_token(organization_id, now)
        if token is None:
            return
        try:
            await self.client.send_message(
                sender_id, self.config.confirmation_text.format(party_name=selected.name), token
            )
        except InstagramApiError as e:
            logger.warning("Confirmation message to %s... failed: %s", sender_id[:8], e)

    async def sweep_timeouts(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Time out dialogs with no reply and notify each organization once."""
        now = now or utcnow()
        cutoff = now - self.timeout
        results = {"found": 0, "timed_out": 0, "skipped": 0, "notifications": 0, "errors": 0}

        mentions = await self.mention_service.select_timed_out(cutoff)
        results["found"] = len(mentions)
        logger.info("Party selection timeout sweep: %d pending past %s", len(mentions), cutoff.isoformat())

        timed_out: dict[str, list[SocialMention]] = defaultdict(list)
        for mention in mentions:
            try:
                if await self.mention_service.mark_party_timeout(mention.id):
                    timed_out[mention.organization_id].append(mention)
                    results["timed_out"] += 1
                else:
                    results["skipped"] += 1
            except Exception as e:
                logger.error("Error timing out mention %s: %s", mention.id, e, exc_info=True)
                results["errors"] += 1

        for organization_id, org_mentions in timed_out.items():
            try:
                await self.notification_service.emit(
                    organization_id,
                    "party_selection_timeout",
                    timeout_summary(org_mentions, self.config.timeout_hours),
                    priority=NotificationPriority.MEDIUM,
                )
                results["notifications"] += 1
            except Exception as e:
                logger.error(
                    "Error notifying organization %s of timeouts: %s", organization_id, e, exc_info=True
                )
                results["errors"] += 1

        logger.info("Party selection timeout sweep finished: %s", results)
        return results


def timeout_summary(mentions: list[SocialMention], timeout_hours: int) -> str:
    """One-line summary naming up to three senders."""
    names = [mention.display_username for mention in mentions[:MAX_TIMEOUT_EXAMPLES]]
    listed = ", ".join(names)
    remaining = len(mentions) - len(names)
    if remaining > 0:
        listed += f" and {remaining} more"
    noun = "story mention" if len(mentions) == 1 else "story mentions"
    return (
        f"{len(mentions)} {noun} got no party selection reply within {timeout_hours}h: {listed}"
    )
