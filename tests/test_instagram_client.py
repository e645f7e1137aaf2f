"""Tests for the Instagram Graph API client."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from mention_tracker.config import InstagramConfig
from mention_tracker.instagram_client import (
    InstagramApiError,
    InstagramClient,
    QuickReply,
    VerificationOutcome,
    parse_story_insights,
)


def _client(handler) -> InstagramClient:
    return InstagramClient(InstagramConfig(), transport=httpx.MockTransport(handler))


def _error(status: int, code: int, message: str = "error") -> httpx.Response:
    return httpx.Response(status, json={"error": {"message": message, "code": code}})


class TestStoryExists:
    """Test mapping of story lookups to verification outcomes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response, expected",
        [
            (httpx.Response(200, json={"id": "s1"}), VerificationOutcome.EXISTS),
            (_error(404, 100), VerificationOutcome.DELETED),
            (_error(400, 100, "Unsupported get request"), VerificationOutcome.DELETED),
            (_error(429, 4), VerificationOutcome.RATE_LIMITED),
            (_error(400, 613), VerificationOutcome.RATE_LIMITED),
            (_error(401, 190), VerificationOutcome.TOKEN_INVALID),
            (_error(400, 190), VerificationOutcome.TOKEN_INVALID),
            (_error(403, 10), VerificationOutcome.PRIVATE_OR_NO_PERMISSION),
            (_error(400, 200), VerificationOutcome.PRIVATE_OR_NO_PERMISSION),
            (httpx.Response(503, text="unavailable"), VerificationOutcome.NETWORK_ERROR),
            (_error(400, 1, "An unknown error occurred"), VerificationOutcome.NETWORK_ERROR),
            (_error(400, 2, "Service temporarily unavailable"), VerificationOutcome.NETWORK_ERROR),
            (
                httpx.Response(400, json={"error": {"code": 2, "is_transient": True}}),
                VerificationOutcome.NETWORK_ERROR,
            ),
            (
                httpx.Response(400, json={"error": {"code": 100, "error_subcode": 33}}),
                VerificationOutcome.DELETED,
            ),
        ],
    )
    async def test_outcomes(self, response, expected):
        """Each HTTP status and error code maps to one outcome."""
        client = _client(lambda request: response)
        assert await client.story_exists("s1", "token") == expected

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        """Timeouts never raise."""

        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        assert await _client(handler).story_exists("s1", "token") == VerificationOutcome.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_request_shape(self):
        """The lookup hits the versioned story path with the token."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "s1"})

        await _client(handler).story_exists("s1", "tok")

        assert seen[0].url.path == "/v24.0/s1"
        assert seen[0].url.params["access_token"] == "tok"
        assert seen[0].url.params["fields"] == "id"

    def test_transient_outcomes(self):
        """Only rate limits and network errors are transient."""
        transient = {outcome for outcome in VerificationOutcome if outcome.is_transient}
        assert transient == {VerificationOutcome.RATE_LIMITED, VerificationOutcome.NETWORK_ERROR}


class TestStoryInsights:
    """Test insights fetching and parsing."""

    def test_parse_values_and_navigation_breakdown(self):
        """Metric values and navigation breakdowns are extracted."""
        data = {
            "data": [
                {"name": "reach", "values": [{"value": 120}]},
                {"name": "replies", "values": [{"value": 3}]},
                {"name": "shares", "total_value": {"value": 2}},
                {"name": "views", "values": [{"value": 150}]},
                {
                    "name": "navigation",
                    "total_value": {
                        "value": 40,
                        "breakdowns": [
                            {
                                "results": [
                                    {"dimension_values": ["tap_forward"], "value": 20},
                                    {"dimension_values": ["swipe_forward"], "value": 5},
                                    {"dimension_values": ["tap_back"], "value": 7},
                                    {"dimension_values": ["tap_exit"], "value": 8},
                                ]
                            }
                        ],
                    },
                },
            ]
        }
        insights = parse_story_insights(data)

        assert insights.reach == 120
        assert insights.replies == 3
        assert insights.shares == 2
        assert insights.views == 150
        assert insights.taps_forward == 25
        assert insights.taps_back == 7
        assert insights.exits == 8
        assert insights.navigation["tap_exit"] == 8
        assert insights.raw is data

    def test_parse_numeric_navigation(self):
        """A plain navigation number is kept as is."""
        insights = parse_story_insights({"data": [{"name": "navigation", "values": [{"value": 12}]}]})
        assert insights.navigation == 12

    @pytest.mark.asyncio
    async def test_unavailable_returns_none(self):
        """Code 10 means insights are not available."""
        client = _client(lambda request: _error(400, 10, "Not enough viewers"))
        assert await client.fetch_story_insights("s1", "token") is None

    @pytest.mark.asyncio
    async def test_other_errors_raise(self):
        """Unexpected API errors surface as InstagramApiError."""
        client = _client(lambda request: _error(400, 190, "Invalid OAuth token"))
        with pytest.raises(InstagramApiError) as exc_info:
            await client.fetch_story_insights("s1", "token")
        assert exc_info.value.error_code == 190
        assert exc_info.value.status_code == 400


class TestMessaging:
    """Test the send API."""

    @pytest.mark.asyncio
    async def test_quick_reply_payload(self):
        """Quick replies are posted with the recipient and options."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"message_id": "mid.1", "recipient_id": "u1"})

        sent = await _client(handler).send_message_with_quick_replies(
            "u1", "Which?", [QuickReply("A", "party_1_a"), QuickReply("B", "party_2_b")], "tok"
        )

        assert sent.message_id == "mid.1"
        assert bodies[0]["recipient"] == {"id": "u1"}
        assert bodies[0]["message"]["quick_replies"][1] == {
            "content_type": "text",
            "title": "B",
            "payload": "party_2_b",
        }

    @pytest.mark.asyncio
    async def test_more_than_thirteen_options_refused(self):
        """The platform limit is enforced before sending."""
        client = _client(lambda request: httpx.Response(200, json={}))
        options = [QuickReply(str(i), f"p{i}") for i in range(14)]
        with pytest.raises(ValueError):
            await client.send_message_with_quick_replies("u1", "Which?", options, "tok")

    @pytest.mark.asyncio
    async def test_send_failure_raises(self):
        """A rejected send raises InstagramApiError."""
        client = _client(lambda request: _error(400, 551, "User unavailable"))
        with pytest.raises(InstagramApiError):
            await client.send_message("u1", "hi", "tok")


class TestFindStoryMedia:
    """Test locating the mentioned story."""

    @pytest.mark.asyncio
    async def test_matches_story_within_window(self):
        """Only stories close to the mention time match."""
        mentioned_at = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        media = [
            {"id": "post", "media_product_type": "FEED", "timestamp": "2026-10-18T12:00:00+0000"},
            {"id": "old", "media_product_type": "STORY", "timestamp": "2026-10-18T10:00:00+0000"},
            {
                "id": "story-9",
                "media_product_type": "STORY",
                "timestamp": "2026-10-18T12:03:00+0000",
                "permalink": "https://www.instagram.com/stories/fan/9/",
            },
        ]
        client = _client(lambda request: httpx.Response(200, json={"mentioned_media": {"data": media}}))

        found = await client.find_story_media("u1", mentioned_at, "tok", timedelta(minutes=5))

        assert found.id == "story-9"
        assert found.permalink == "https://www.instagram.com/stories/fan/9/"
