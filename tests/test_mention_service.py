"""Tests for the mention store and its guarded transitions."""

from datetime import datetime, timedelta, timezone

import pytest

from mention_tracker.orm import AccountVisibility, MentionState, MentionType, PartySelectionStatus

T0 = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class TestCreate:
    """Test mention creation."""

    @pytest.mark.asyncio
    async def test_story_referral_defaults(self, make_story_mention):
        """Story referrals start new and expire after the story lifetime."""
        mention = await make_story_mention()

        assert mention.state == MentionState.NEW.value
        assert mention.expires_at == T0 + timedelta(hours=24)
        assert mention.checks_count == 0
        assert mention.party_selection_status == PartySelectionStatus.NONE.value
        assert mention.account_visibility == AccountVisibility.UNKNOWN.value
        assert mention.processed is False

    @pytest.mark.asyncio
    async def test_duplicate_story_referral_returns_none(self, context, organization, make_story_mention):
        """The idempotency key rejects a second insert."""
        await make_story_mention()

        duplicate = await context.mentions.create(
            organization.id,
            MentionType.STORY_REFERRAL,
            T0,
            instagram_user_id="user-1",
            instagram_story_id="story-1",
        )

        assert duplicate is None
        found = await context.mentions.find_story_referral(organization.id, "user-1", T0)
        assert found is not None

    @pytest.mark.asyncio
    async def test_other_types_not_unique_on_time(self, context, organization):
        """Only story referrals share the idempotency index."""
        for event_id in ("c1", "c2"):
            mention = await context.mentions.create(
                organization.id,
                MentionType.COMMENT,
                T0,
                instagram_user_id="user-1",
                external_event_id=event_id,
            )
            assert mention is not None
            assert mention.expires_at is None

        assert await context.mentions.find_by_external_event_id(organization.id, "c2") is not None


class TestTransitions:
    """Test compare-and-swap updates."""

    @pytest.mark.asyncio
    async def test_terminal_state_is_final(self, context, make_story_mention):
        """Once terminal, no transition changes the state."""
        mention = await make_story_mention()
        now = T0 + timedelta(hours=4)

        assert await context.mentions.record_check(
            mention.id, now, AccountVisibility.PUBLIC, MentionState.FLAGGED_EARLY_DELETE
        )
        assert not await context.mentions.complete(mention.id, now)
        assert not await context.mentions.record_check(
            mention.id, now, terminal_state=MentionState.EXPIRED_UNKNOWN
        )

        stored = await context.mentions.get(mention.id)
        assert stored.state == MentionState.FLAGGED_EARLY_DELETE.value
        assert stored.checks_count == 1
        assert stored.processed is True
        assert stored.processed_at == now

    @pytest.mark.asyncio
    async def test_checks_budget(self, context, make_story_mention):
        """checks_count stops at the configured maximum."""
        mention = await make_story_mention()
        results = [await context.mentions.record_check(mention.id, T0) for _ in range(8)]

        assert results.count(True) == 6
        assert (await context.mentions.get(mention.id)).checks_count == 6

    @pytest.mark.asyncio
    async def test_assign_fiesta_only_once(self, context, make_story_mention, make_fiestas):
        """A linked fiesta is never replaced."""
        first, second = await make_fiestas("A", "B")
        mention = await make_story_mention()

        assert await context.mentions.assign_fiesta(mention.id, first.id)
        assert not await context.mentions.assign_fiesta(mention.id, second.id)
        assert (await context.mentions.get(mention.id)).matched_fiesta_id == first.id

    @pytest.mark.asyncio
    async def test_dispatch_claim_and_release(self, context, make_story_mention):
        """A claim blocks a second claim until released."""
        mention = await make_story_mention()

        assert await context.mentions.claim_party_dispatch(mention.id, T0)
        assert not await context.mentions.claim_party_dispatch(mention.id, T0)
        assert await context.mentions.release_party_dispatch(mention.id)
        assert await context.mentions.claim_party_dispatch(mention.id, T0)


class TestSelections:
    """Test the sweep queries."""

    @pytest.mark.asyncio
    async def test_select_for_verification_window(self, context, make_story_mention):
        """Mentions are due within ±window of now - offset."""
        inside = await make_story_mention(mentioned_at=T0, user_id="u1")
        edge = await make_story_mention(mentioned_at=T0 + timedelta(minutes=30), user_id="u2")
        outside = await make_story_mention(mentioned_at=T0 + timedelta(minutes=31), user_id="u3")

        due = await context.mentions.select_for_verification(240, T0 + timedelta(hours=4))
        ids = {mention.id for mention in due}

        assert inside.id in ids
        assert edge.id in ids
        assert outside.id not in ids

    @pytest.mark.asyncio
    async def test_select_expired_only_new(self, context, make_story_mention):
        """Expired selection skips terminal mentions."""
        open_mention = await make_story_mention(user_id="u1")
        closed = await make_story_mention(user_id="u2")
        await context.mentions.record_check(
            closed.id, T0, terminal_state=MentionState.EXPIRED_UNKNOWN
        )

        expired = await context.mentions.select_expired(T0 + timedelta(hours=24, minutes=1))

        assert [mention.id for mention in expired] == [open_mention.id]
