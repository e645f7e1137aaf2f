"""Tests for webhook payload classification."""

from datetime import datetime, timezone

from mention_tracker.webhook_events import (
    CommentEvent,
    DirectMessage,
    StoryInsightsEvent,
    StoryReferral,
    StoryUpload,
    TagEvent,
    iter_events,
    parse_epoch,
)


def _payload(**entry) -> dict:
    return {"object": "instagram", "entry": [{"id": "acct-1", "time": 1760788800, **entry}]}


class TestParseEpoch:
    """Test timestamp conversion."""

    def test_seconds_and_milliseconds(self):
        """Both units convert to the same instant."""
        expected = datetime(2025, 10, 18, 12, 0, tzinfo=timezone.utc)
        assert parse_epoch(1760788800) == expected
        assert parse_epoch(1760788800000) == expected

    def test_invalid(self):
        """Garbage yields None."""
        assert parse_epoch(None) is None
        assert parse_epoch("soon") is None


class TestIterEvents:
    """Test routing of messaging and changes items."""

    def test_story_referral(self):
        """A SHORTLINK/STORY referral becomes a StoryReferral."""
        payload = _payload(
            messaging=[
                {
                    "sender": {"id": "user-1", "username": "fan"},
                    "recipient": {"id": "acct-1"},
                    "timestamp": 1760788800000,
                    "message": {"mid": "m1", "text": "hi"},
                    "referral": {
                        "source": "SHORTLINK",
                        "type": "STORY",
                        "ref": "story-1",
                        "referer_uri": "https://www.instagram.com/stories/fan/1/",
                    },
                }
            ]
        )
        (event,) = list(iter_events(payload))

        assert isinstance(event, StoryReferral)
        assert event.account_id == "acct-1"
        assert event.sender_id == "user-1"
        assert event.story_ref == "story-1"
        assert event.message_id == "m1"

    def test_quick_reply_is_direct_message(self):
        """Quick replies carry their payload."""
        payload = _payload(
            messaging=[
                {
                    "sender": {"id": "user-1"},
                    "recipient": {"id": "acct-1"},
                    "message": {"mid": "m2", "text": "Neon", "quick_reply": {"payload": "party_2_f"}},
                }
            ]
        )
        (event,) = list(iter_events(payload))

        assert isinstance(event, DirectMessage)
        assert event.quick_reply_payload == "party_2_f"

    def test_echo_and_read_skipped(self):
        """Echoes of our own messages and read receipts are ignored."""
        payload = _payload(
            messaging=[
                {"sender": {"id": "acct-1"}, "message": {"mid": "m3", "is_echo": True}},
                {"sender": {"id": "user-1"}, "read": {"mid": "m3"}},
            ]
        )
        assert list(iter_events(payload)) == []

    def test_changes_fields(self):
        """Each known changes field maps to its variant."""
        payload = _payload(
            changes=[
                {"field": "media", "value": {"id": "media-1", "username": "fan"}},
                {
                    "field": "comments",
                    "value": {"id": "c1", "text": "wow", "from": {"id": "u2", "username": "x"}, "media": {"id": "p1"}},
                },
                {"field": "mentions", "value": {"media_id": "p2", "comment_id": "c2"}},
                {
                    "field": "story_insights",
                    "value": {"media_id": "story-1", "impressions": 10, "reach": 8, "exits": 1},
                },
                {"field": "live_comments", "value": {}},
            ]
        )
        events = list(iter_events(payload))

        assert [type(event) for event in events] == [StoryUpload, CommentEvent, TagEvent, StoryInsightsEvent]
        assert events[1].author_username == "x"
        assert events[3].metric_values == {"impressions": 10, "reach": 8, "exits": 1}

    def test_other_objects_ignored(self):
        """Only instagram payloads are processed."""
        assert list(iter_events({"object": "page", "entry": [{"id": "1", "messaging": [{}]}]})) == []
