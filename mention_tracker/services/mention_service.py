"""Mention store: persistence and guarded state transitions for social mentions."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..config import LifecycleConfig
from ..orm.social_mention import (
    AccountVisibility,
    MentionState,
    MentionType,
    PartySelectionStatus,
    SocialMention,
)
from .database import DatabaseService

logger = logging.getLogger(__name__)


class MentionService:
    """Service for creating, selecting and transitioning social mentions.

    Every transition is a conditional UPDATE whose WHERE clause restates the
    precondition (for example ``state = 'new'``). The returned bool tells the
    caller whether it won the transition; losing is not an error.
    """

    def __init__(self, db_service: DatabaseService, lifecycle: LifecycleConfig | None = None):
        self.db_service = db_service
        self.lifecycle = lifecycle or LifecycleConfig()

    @property
    def story_lifetime(self) -> timedelta:
        return timedelta(hours=self.lifecycle.story_lifetime_hours)

    async def get(self, mention_id: str) -> Optional[SocialMention]:
        async with self.db_service.session() as session:
            return await session.get(SocialMention, mention_id)

    async def find_story_referral(
        self, organization_id: str, instagram_user_id: str, mentioned_at: datetime
    ) -> Optional[SocialMention]:
        """Look up a story referral by its idempotency key."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SocialMention)
                .where(
                    SocialMention.organization_id == organization_id,
                    SocialMention.instagram_user_id == instagram_user_id,
                    SocialMention.mentioned_at == mentioned_at,
                    SocialMention.mention_type == MentionType.STORY_REFERRAL.value,
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_by_external_event_id(
        self, organization_id: str, external_event_id: str
    ) -> Optional[SocialMention]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SocialMention)
                .where(
                    SocialMention.organization_id == organization_id,
                    SocialMention.external_event_id == external_event_id,
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def create(
        self,
        organization_id: str,
        mention_type: MentionType,
        mentioned_at: datetime,
        **fields: Any,
    ) -> Optional[SocialMention]:
        """
        Insert a mention.

        Story referrals get ``expires_at = mentioned_at + story lifetime`` and
        start in state ``new``.

        Returns:
            The new mention, or None if the idempotency key already exists.
        """
        if mention_type is MentionType.STORY_REFERRAL:
            fields["expires_at"] = mentioned_at + self.story_lifetime
            fields["state"] = MentionState.NEW.value

        async with self.db_service.session() as session:
            mention = SocialMention(
                organization_id=organization_id,
                mention_type=mention_type.value,
                mentioned_at=mentioned_at,
                **fields,
            )
            session.add(mention)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Duplicate %s mention for organization %s at %s, skipping",
                    mention_type.value,
                    organization_id,
                    mentioned_at.isoformat(),
                )
                return None
            await session.refresh(mention)
            return mention

    async def _conditional_update(self, *conditions, **values) -> bool:
        async with self.db_service.session() as session:
            result = await session.execute(
                update(SocialMention)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def update_enrichment(
        self,
        mention_id: str,
        instagram_username: Optional[str] = None,
        instagram_story_id: Optional[str] = None,
        story_url: Optional[str] = None,
        deep_link: Optional[str] = None,
        raw_data: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Fill in details discovered after ingestion."""
        values = {
            key: value
            for key, value in {
                "instagram_username": instagram_username,
                "instagram_story_id": instagram_story_id,
                "story_url": story_url,
                "deep_link": deep_link,
                "raw_data": raw_data,
            }.items()
            if value is not None
        }
        if not values:
            return False
        return await self._conditional_update(SocialMention.id == mention_id, **values)

    # -- lifecycle ---------------------------------------------------------

    async def select_for_verification(
        self, offset_minutes: int, now: datetime
    ) -> list[SocialMention]:
        """Story referrals due for the check at ``offset_minutes`` after mention."""
        target = now - timedelta(minutes=offset_minutes)
        window = timedelta(minutes=self.lifecycle.verification_window_minutes)
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SocialMention)
                .where(
                    SocialMention.mention_type == MentionType.STORY_REFERRAL.value,
                    SocialMention.state == MentionState.NEW.value,
                    SocialMention.checks_count < self.lifecycle.max_verification_checks,
                    SocialMention.mentioned_at >= target - window,
                    SocialMention.mentioned_at <= target + window,
                )
                .order_by(SocialMention.mentioned_at.asc())
            )
            return list(result.scalars().all())

    async def select_expired(self, now: datetime) -> list[SocialMention]:
        """Story referrals still ``new`` whose window has elapsed."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SocialMention)
                .where(
                    SocialMention.mention_type == MentionType.STORY_REFERRAL.value,
                    SocialMention.state == MentionState.NEW.value,
                    SocialMention.expires_at < now,
                )
                .order_by(SocialMention.expires_at.asc())
            )
            return list(result.scalars().all())

    async def record_check(
        self,
        mention_id: str,
        now: datetime,
        visibility: Optional[AccountVisibility] = None,
        terminal_state: Optional[MentionState] = None,
    ) -> bool:
        """Count a verification check and optionally close the mention."""
        values: dict[str, Any] = {
            "checks_count": SocialMention.checks_count + 1,
            "last_check_at": now,
        }
        if visibility is not None:
            values["account_visibility"] = visibility.value
        if terminal_state is not None:
            values.update(state=terminal_state.value, processed=True, processed_at=now)

        return await self._conditional_update(
            SocialMention.id == mention_id,
            SocialMention.state == MentionState.NEW.value,
            SocialMention.checks_count < self.lifecycle.max_verification_checks,
            **values,
        )

    async def complete(self, mention_id: str, now: datetime) -> bool:
        """Close a mention that reached its natural expiry."""
        return await self._conditional_update(
            SocialMention.id == mention_id,
            SocialMention.state == MentionState.NEW.value,
            state=MentionState.COMPLETED.value,
            processed=True,
            processed_at=now,
        )

    # -- party selection ---------------------------------------------------

    async def assign_fiesta(self, mention_id: str, fiesta_id: str) -> bool:
        """Link a fiesta to a mention that has none."""
        return await self._conditional_update(
            SocialMention.id == mention_id,
            SocialMention.matched_fiesta_id.is_(None),
            matched_fiesta_id=fiesta_id,
        )

    async def claim_party_dispatch(self, mention_id: str, now: datetime) -> bool:
        """Reserve the single party-options message for a mention."""
        return await self._conditional_update(
            SocialMention.id == mention_id,
            SocialMention.party_selection_message_sent_at.is_(None),
            SocialMention.party_selection_status == PartySelectionStatus.NONE.value,
            SocialMention.matched_fiesta_id.is_(None),
            party_selection_message_sent_at=now,
        )

    async def release_party_dispatch(self, mention_id: str) -> bool:
        """Undo a claim whose message could not be sent."""
        return await self._conditional_update(
            SocialMention.id == mention_id,
            SocialMention.party_selection_status == PartySelectionStatus.NONE.value,
            party_selection_message_sent_at=None,
        )

    async def mark_party_pending(
        self, mention_id: str, options: list[dict[str, Any]], message_id: Optional[str]
    ) -> bool:
        return await self._conditional_update(
            SocialMention.id == mention_id,
            SocialMention.party_selection_status == PartySelectionStatus.NONE.value,
            SocialMention.party_selection_message_sent_at.is_not(None),
            party_selection_status=PartySelectionStatus.PENDING_RESPONSE.value,
            party_options_sent=options,
            party_selection_message_id=message_id,
        )

    async def find_pending_for_user(
        self, organization_id: str, instagram_user_id: str
    ) -> Optional[SocialMention]:
        """Most recently asked mention still waiting for this user's reply."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SocialMention)
                .where(
                    SocialMention.organization_id == organization_id,
                    SocialMention.instagram_user_id == instagram_user_id,
                    SocialMention.party_selection_status
                    == PartySelectionStatus.PENDING_RESPONSE.value,
                )
                .order_by(SocialMention.party_selection_message_sent_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def resolve_party(self, mention_id: str, fiesta_id: str, now: datetime) -> bool:
        return await self._conditional_update(
            SocialMention.id == mention_id,
            SocialMention.party_selection_status == PartySelectionStatus.PENDING_RESPONSE.value,
            SocialMention.matched_fiesta_id.is_(None),
            matched_fiesta_id=fiesta_id,
            party_selection_status=PartySelectionStatus.RESOLVED.value,
            processed=True,
            processed_at=now,
        )

    async def select_timed_out(self, cutoff: datetime) -> list[SocialMention]:
        """Pending dialogs whose message was sent before ``cutoff``."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SocialMention)
                .where(
                    SocialMention.party_selection_status
                    == PartySelectionStatus.PENDING_RESPONSE.value,
                    SocialMention.party_selection_message_sent_at < cutoff,
                )
                .order_by(SocialMention.organization_id, SocialMention.party_selection_message_sent_at)
            )
            return list(result.scalars().all())

    async def mark_party_timeout(self, mention_id: str) -> bool:
        """Give up waiting; left unprocessed for manual follow-up."""
        return await self._conditional_update(
            SocialMention.id == mention_id,
            SocialMention.party_selection_status == PartySelectionStatus.PENDING_RESPONSE.value,
            party_selection_status=PartySelectionStatus.TIMEOUT.value,
            processed=False,
        )
