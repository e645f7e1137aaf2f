"""Tests for the story verification sweep."""

from datetime import datetime, timedelta, timezone

import pytest

from mention_tracker.instagram_client import VerificationOutcome
from mention_tracker.orm import AccessCredential, AccountVisibility, MentionState

T0 = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
FIRST_CHECK = T0 + timedelta(hours=4)


async def _notification_types(context, organization) -> list[str]:
    return [n.type for n in await context.notifications.list_for_organization(organization.id)]


class TestVerificationOutcomes:
    """Test how each outcome changes a mention."""

    @pytest.mark.asyncio
    async def test_deleted_flags_early_delete(self, context, organization, fake_client, make_story_mention):
        """A story gone before expiry is flagged with a medium notification."""
        mention = await make_story_mention()
        fake_client.default_outcome = VerificationOutcome.DELETED

        results = await context.verification.run(FIRST_CHECK)

        stored = await context.mentions.get(mention.id)
        assert stored.state == MentionState.FLAGGED_EARLY_DELETE.value
        assert stored.processed is True
        assert stored.checks_count == 1
        assert stored.account_visibility == AccountVisibility.PUBLIC.value
        assert results["flagged_early_delete"] == 1

        (notification,) = await context.notifications.list_for_organization(organization.id)
        assert notification.type == "story_early_delete"
        assert notification.priority == "medium"
        assert notification.target_id == mention.id

    @pytest.mark.asyncio
    async def test_exists_records_public_visibility(self, context, organization, make_story_mention):
        """A live story only counts the check."""
        mention = await make_story_mention()

        results = await context.verification.run(FIRST_CHECK)

        stored = await context.mentions.get(mention.id)
        assert stored.state == MentionState.NEW.value
        assert stored.checks_count == 1
        assert stored.last_check_at == FIRST_CHECK
        assert stored.account_visibility == AccountVisibility.PUBLIC.value
        assert results["checked"] == 1
        assert await _notification_types(context, organization) == []

    @pytest.mark.asyncio
    async def test_private_becomes_expired_unknown(self, context, organization, fake_client, make_story_mention):
        """A private account cannot be verified."""
        mention = await make_story_mention()
        fake_client.default_outcome = VerificationOutcome.PRIVATE_OR_NO_PERMISSION

        await context.verification.run(FIRST_CHECK)

        stored = await context.mentions.get(mention.id)
        assert stored.state == MentionState.EXPIRED_UNKNOWN.value
        assert stored.account_visibility == AccountVisibility.PRIVATE.value
        (notification,) = await context.notifications.list_for_organization(organization.id)
        assert notification.priority == "low"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "outcome", [VerificationOutcome.RATE_LIMITED, VerificationOutcome.NETWORK_ERROR]
    )
    async def test_transient_outcomes_leave_mention_untouched(
        self, context, fake_client, make_story_mention, outcome
    ):
        """Transient failures never use up a check."""
        mention = await make_story_mention()
        fake_client.default_outcome = outcome

        results = await context.verification.run(FIRST_CHECK)

        stored = await context.mentions.get(mention.id)
        assert stored.checks_count == 0
        assert stored.last_check_at is None
        assert stored.state == MentionState.NEW.value
        assert results["transient"] == 1

    @pytest.mark.asyncio
    async def test_expired_token_is_token_invalid(self, context, add, organization, fake_client, make_story_mention):
        """Without a usable token the mention cannot be verified."""
        mention = await make_story_mention()
        await add(
            AccessCredential(
                organization_id=organization.id,
                access_token="stale-token",
                token_expiry=T0,
                created_at=datetime(2100, 1, 1, tzinfo=timezone.utc),
            )
        )

        await context.verification.run(FIRST_CHECK)

        stored = await context.mentions.get(mention.id)
        assert stored.state == MentionState.EXPIRED_UNKNOWN.value
        assert stored.checks_count == 1
        assert stored.account_visibility == AccountVisibility.UNKNOWN.value
        assert fake_client.story_checks == []

    @pytest.mark.asyncio
    async def test_missing_story_id_counts_check(self, context, fake_client, make_story_mention):
        """No story id means the check is counted with no state change."""
        mention = await make_story_mention(story_id=None)

        await context.verification.run(FIRST_CHECK)

        stored = await context.mentions.get(mention.id)
        assert stored.checks_count == 1
        assert stored.state == MentionState.NEW.value
        assert fake_client.story_checks == []


class TestVerificationSweep:
    """Test batch behaviour."""

    @pytest.mark.asyncio
    async def test_not_due_mentions_ignored(self, context, fake_client, make_story_mention):
        """Mentions outside every offset window are not checked."""
        await make_story_mention()

        results = await context.verification.run(T0 + timedelta(hours=2))

        assert results["checked"] == 0
        assert fake_client.story_checks == []

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, context, fake_client, make_story_mention, monkeypatch):
        """An exception on one mention is isolated."""
        await make_story_mention(user_id="u1", story_id="bad")
        good = await make_story_mention(user_id="u2", story_id="good")
        original = fake_client.story_exists

        async def flaky(story_id, token):
            if story_id == "bad":
                raise RuntimeError("unexpected")
            return await original(story_id, token)

        monkeypatch.setattr(fake_client, "story_exists", flaky)

        results = await context.verification.run(FIRST_CHECK)

        assert results["errors"] == 1
        assert results["checked"] == 1
        assert (await context.mentions.get(good.id)).checks_count == 1

    @pytest.mark.asyncio
    async def test_permission_request_emitted_once(
        self, context, organization, make_ambassador, make_story_mention
    ):
        """A public ambassador without a credential is asked for access once."""
        ambassador = await make_ambassador()
        await make_story_mention(user_id="user-1", matched_ambassador_id=ambassador.id)
        await make_story_mention(
            mentioned_at=T0 + timedelta(minutes=10), user_id="user-1", matched_ambassador_id=ambassador.id
        )

        first = await context.verification.run(FIRST_CHECK)
        second = await context.verification.run(T0 + timedelta(hours=8))

        assert first["permission_requests"] == 1
        assert second["permission_requests"] == 0
        types = await _notification_types(context, organization)
        assert types.count("ambassador_permission_request") == 1
        stored = await context.ambassadors.get(ambassador.id)
        assert stored.permission_requested_at == FIRST_CHECK

    @pytest.mark.asyncio
    async def test_no_permission_request_with_credential(
        self, context, organization, add, make_ambassador, make_story_mention
    ):
        """Ambassadors who already connected are not asked."""
        ambassador = await make_ambassador()
        await add(AccessCredential(ambassador_id=ambassador.id, access_token="amb-token"))
        await make_story_mention(matched_ambassador_id=ambassador.id)

        results = await context.verification.run(FIRST_CHECK)

        assert results["permission_requests"] == 0
