"""Instagram Graph API client for story checks, insights and messaging."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

import httpx

from .config import InstagramConfig

logger = logging.getLogger(__name__)

STORY_INSIGHTS_METRICS = (
    "reach",
    "replies",
    "profile_visits",
    "total_interactions",
    "shares",
    "navigation",
    "views",
)

# Hard platform limits for quick replies
MAX_QUICK_REPLIES = 13
MAX_QUICK_REPLY_TITLE = 20

RATE_LIMIT_CODES = frozenset({4, 17, 32, 613})
TOKEN_INVALID_CODES = frozenset({190})
MISSING_OBJECT_CODES = frozenset({100})
PERMISSION_CODES = frozenset({10})
TRANSIENT_CODES = frozenset({1, 2})


class VerificationOutcome(str, Enum):
    """Result of asking the platform whether a story still exists."""

    EXISTS = "exists"
    DELETED = "deleted"
    PRIVATE_OR_NO_PERMISSION = "private_or_no_permission"
    RATE_LIMITED = "rate_limited"
    TOKEN_INVALID = "token_invalid"
    NETWORK_ERROR = "network_error"

    @property
    def is_transient(self) -> bool:
        """Transient outcomes are retried later and never use up a check."""
        return self in (VerificationOutcome.RATE_LIMITED, VerificationOutcome.NETWORK_ERROR)


class InstagramApiError(Exception):
    """Raised when the Graph API rejects a call."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.payload = payload


@dataclass
class StoryInsights:
    """Parsed story insights."""

    reach: int = 0
    replies: int = 0
    shares: int = 0
    profile_visits: int = 0
    total_interactions: int = 0
    views: int = 0
    impressions: int = 0
    exits: int = 0
    taps_forward: int = 0
    taps_back: int = 0
    navigation: int | dict[str, int] | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class QuickReply:
    """A tappable reply option attached to a direct message."""

    title: str
    payload: str

    def to_api(self) -> dict[str, str]:
        return {"content_type": "text", "title": self.title, "payload": self.payload}


@dataclass
class SentMessage:
    """Identifiers returned by the send API."""

    message_id: str
    recipient_id: Optional[str] = None


@dataclass
class StoryMedia:
    """A story the platform reports as mentioning the account."""

    id: str
    permalink: Optional[str]
    timestamp: Optional[datetime]


def _graph_error(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}


def classify_story_response(response: httpx.Response) -> VerificationOutcome:
    """Map a story lookup response onto a verification outcome."""
    if response.is_success:
        return VerificationOutcome.EXISTS

    error = _graph_error(response)
    code = error.get("code")
    status = response.status_code

    if status == 429 or code in RATE_LIMIT_CODES:
        return VerificationOutcome.RATE_LIMITED
    if status == 401 or code in TOKEN_INVALID_CODES:
        return VerificationOutcome.TOKEN_INVALID
    if status == 403 or code in PERMISSION_CODES or (isinstance(code, int) and 200 <= code < 300):
        return VerificationOutcome.PRIVATE_OR_NO_PERMISSION
    if error.get("is_transient") or code in TRANSIENT_CODES or status >= 500:
        return VerificationOutcome.NETWORK_ERROR
    # 404, code 100 and any other client error: the story is gone
    return VerificationOutcome.DELETED


def parse_story_insights(data: dict[str, Any]) -> StoryInsights:
    """Parse an insights response body into StoryInsights."""
    insights = StoryInsights(raw=data)

    for metric in data.get("data") or []:
        name = metric.get("name")
        values = metric.get("values") or []
        value = values[0].get("value") if values else None
        if value is None and isinstance(metric.get("total_value"), dict):
            value = metric["total_value"].get("value")

        if name == "navigation":
            breakdowns = (metric.get("total_value") or {}).get("breakdowns") or []
            if breakdowns and breakdowns[0].get("results"):
                breakdown: dict[str, int] = {}
                for result in breakdowns[0]["results"]:
                    dimension_values = result.get("dimension_values") or []
                    if dimension_values:
                        breakdown[dimension_values[0]] = result.get("value") or 0
                insights.navigation = breakdown
                insights.exits = breakdown.get("tap_exit", 0)
                insights.taps_forward = breakdown.get("tap_forward", 0) + breakdown.get(
                    "swipe_forward", 0
                )
                insights.taps_back = breakdown.get("tap_back", 0)
            elif isinstance(value, int):
                insights.navigation = value
        elif name in (
            "reach",
            "replies",
            "shares",
            "profile_visits",
            "total_interactions",
            "views",
            "impressions",
            "exits",
            "taps_forward",
            "taps_back",
        ):
            setattr(insights, name, value or 0)

    return insights


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        # Graph API uses "+0000" offsets
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None


class InstagramClient:
    """Thin async wrapper around the Instagram Graph API."""

    def __init__(self, config: InstagramConfig, transport: httpx.AsyncBaseTransport | None = None):
        """
        Initialize the client.

        Args:
            config: Instagram settings (base URL, version, timeout).
            transport: Optional httpx transport, used to stub the API.
        """
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.request_timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, token: str, params: dict[str, str]) -> httpx.Response:
        async with self._client() as client:
            return await client.get(f"/{path}", params={**params, "access_token": token})

    @staticmethod
    def _raise_for_error(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        error = _graph_error(response)
        message = error.get("message") or response.text or "Unknown error"
        raise InstagramApiError(
            f"Failed to {action}: {message}",
            status_code=response.status_code,
            error_code=error.get("code"),
            payload=error or None,
        )

    async def story_exists(self, story_id: str, token: str) -> VerificationOutcome:
        """
        Check whether a story is still reachable.

        Never raises: transport problems are reported as NETWORK_ERROR.
        """
        try:
            response = await self._get(story_id, token, {"fields": "id"})
        except httpx.TimeoutException:
            logger.warning("Timed out checking story %s", story_id)
            return VerificationOutcome.NETWORK_ERROR
        except httpx.HTTPError as e:
            logger.warning("Network error checking story %s: %s", story_id, e)
            return VerificationOutcome.NETWORK_ERROR

        outcome = classify_story_response(response)
        logger.debug("Story %s check: HTTP %d -> %s", story_id, response.status_code, outcome.value)
        return outcome

    async def fetch_story_insights(self, story_id: str, token: str) -> Optional[StoryInsights]:
        """
        Fetch insights for a story.

        Returns:
            Parsed insights, or None when insights are unavailable.

        Raises:
            InstagramApiError: For API errors other than "not available".
        """
        try:
            response = await self._get(
                f"{story_id}/insights", token, {"metric": ",".join(STORY_INSIGHTS_METRICS)}
            )
        except httpx.HTTPError as e:
            logger.warning("Could not fetch insights for story %s: %s", story_id, e)
            return None

        if not response.is_success:
            error = _graph_error(response)
            if error.get("code") == 10 or "insights" in (error.get("message") or "").lower():
                logger.info("Insights not available for story %s", story_id)
                return None
            self._raise_for_error(response, "fetch insights")

        return parse_story_insights(response.json())

    async def send_message(self, recipient_id: str, text: str, token: str) -> SentMessage:
        """Send a plain direct message."""
        return await self._send(recipient_id, {"text": text}, token)

    async def send_message_with_quick_replies(
        self, recipient_id: str, text: str, options: list[QuickReply], token: str
    ) -> SentMessage:
        """Send a direct message with quick-reply options (at most 13)."""
        if not options:
            raise ValueError("At least one quick reply option is required")
        if len(options) > MAX_QUICK_REPLIES:
            raise ValueError(f"At most {MAX_QUICK_REPLIES} quick replies are allowed, got {len(options)}")

        message = {"text": text, "quick_replies": [option.to_api() for option in options]}
        return await self._send(recipient_id, message, token)

    async def _send(self, recipient_id: str, message: dict[str, Any], token: str) -> SentMessage:
        payload = {"recipient": {"id": recipient_id}, "message": message}

        async with self._client() as client:
            try:
                response = await client.post(
                    "/me/messages", params={"access_token": token}, json=payload
                )
            except httpx.HTTPError as e:
                raise InstagramApiError(f"Failed to send message: {e}") from e

        self._raise_for_error(response, "send message")
        data = response.json()
        logger.info("Sent message %s to %s...", data.get("message_id"), recipient_id[:8])
        return SentMessage(message_id=data.get("message_id", ""), recipient_id=data.get("recipient_id"))

    async def fetch_account_info(
        self, user_id: str, token: str, fields: str = "id,username,name"
    ) -> dict[str, Any]:
        """Fetch profile fields for an Instagram user."""
        try:
            response = await self._get(user_id, token, {"fields": fields})
        except httpx.HTTPError as e:
            raise InstagramApiError(f"Failed to fetch account info: {e}") from e
        self._raise_for_error(response, "fetch account info")
        return response.json()

    async def find_story_media(
        self,
        user_id: str,
        mentioned_at: datetime,
        token: str,
        window: timedelta = timedelta(minutes=5),
    ) -> Optional[StoryMedia]:
        """Find the story the user published around the time of the mention."""
        fields = "mentioned_media.media_type,media_product_type,owner,username,timestamp,permalink"
        data = await self.fetch_account_info(user_id, token, fields=fields)

        for media in (data.get("mentioned_media") or {}).get("data") or []:
            if media.get("media_product_type") != "STORY":
                continue
            published_at = _parse_timestamp(media.get("timestamp"))
            if published_at and abs(published_at - mentioned_at) <= window:
                return StoryMedia(
                    id=media.get("id"), permalink=media.get("permalink"), timestamp=published_at
                )
        return None
