"""Typed webhook events parsed from Instagram payloads."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Union

from .orm.social_mention import MentionType

logger = logging.getLogger(__name__)

# Epoch values above this are milliseconds
_MILLISECONDS_THRESHOLD = 10**12


def parse_epoch(value: Any) -> Optional[datetime]:
    """Convert an epoch timestamp in seconds or milliseconds to UTC."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number > _MILLISECONDS_THRESHOLD:
        number /= 1000
    return datetime.fromtimestamp(int(number), tz=timezone.utc)


@dataclass
class StoryReferral:
    """A user opened a DM through a story mention shortlink."""

    mention_type = MentionType.STORY_REFERRAL

    account_id: str
    sender_id: Optional[str]
    sender_username: Optional[str]
    story_ref: Optional[str]
    referer_uri: Optional[str]
    message_id: Optional[str]
    text: Optional[str]
    timestamp: Optional[datetime]
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class DirectMessage:
    """A plain or quick-reply direct message."""

    mention_type = MentionType.MENTION

    account_id: str
    sender_id: Optional[str]
    sender_username: Optional[str]
    message_id: Optional[str]
    text: Optional[str]
    quick_reply_payload: Optional[str]
    timestamp: Optional[datetime]
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoryUpload:
    """A media change notification for a story."""

    mention_type = MentionType.STORY

    account_id: str
    media_id: Optional[str]
    username: Optional[str]
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class CommentEvent:
    """A comment on the account's media."""

    mention_type = MentionType.COMMENT

    account_id: str
    comment_id: Optional[str]
    text: Optional[str]
    author_id: Optional[str]
    author_username: Optional[str]
    media_id: Optional[str]
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class TagEvent:
    """The account was @mentioned in a caption or comment."""

    mention_type = MentionType.TAG

    account_id: str
    media_id: Optional[str]
    comment_id: Optional[str]
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoryInsightsEvent:
    """Final insights pushed by the platform for an expired story."""

    account_id: str
    media_id: Optional[str]
    metric_values: dict[str, Any]
    raw: dict[str, Any] = field(default_factory=dict)


WebhookEvent = Union[
    StoryReferral, DirectMessage, StoryUpload, CommentEvent, TagEvent, StoryInsightsEvent
]


def _is_story_referral(referral: Any) -> bool:
    return (
        isinstance(referral, dict)
        and referral.get("source") == "SHORTLINK"
        and referral.get("type") == "STORY"
    )


def classify_messaging(account_id: str, item: dict[str, Any]) -> Optional[WebhookEvent]:
    """Turn a messaging item (entry.messaging[] or a "messages" change) into an event."""
    message = item.get("message") or {}
    if message.get("is_echo") or "read" in item or "reaction" in item:
        return None

    sender = item.get("sender") or {}
    message_id = message.get("mid") or item.get("mid") or item.get("id")
    text = message.get("text") or item.get("text")
    timestamp = parse_epoch(item.get("timestamp"))
    quick_reply = message.get("quick_reply") or item.get("quick_reply") or {}

    if quick_reply.get("payload"):
        return DirectMessage(
            account_id=account_id,
            sender_id=sender.get("id"),
            sender_username=sender.get("username"),
            message_id=message_id,
            text=text,
            quick_reply_payload=quick_reply["payload"],
            timestamp=timestamp,
            raw=item,
        )

    referral = item.get("referral") or message.get("referral")
    if _is_story_referral(referral):
        return StoryReferral(
            account_id=account_id,
            sender_id=sender.get("id"),
            sender_username=sender.get("username"),
            story_ref=referral.get("ref"),
            referer_uri=referral.get("referer_uri"),
            message_id=message_id,
            text=text,
            timestamp=timestamp,
            raw=item,
        )

    return DirectMessage(
        account_id=account_id,
        sender_id=sender.get("id"),
        sender_username=sender.get("username"),
        message_id=message_id,
        text=text,
        quick_reply_payload=None,
        timestamp=timestamp,
        raw=item,
    )


def classify_change(account_id: str, change: dict[str, Any]) -> Optional[WebhookEvent]:
    """Turn an entry.changes[] item into an event."""
    field_name = change.get("field")
    value = change.get("value") or {}

    if field_name == "messages":
        return classify_messaging(account_id, value)
    if field_name == "media":
        return StoryUpload(
            account_id=account_id,
            media_id=value.get("id") or value.get("media_id"),
            username=value.get("username"),
            raw=value,
        )
    if field_name == "comments":
        author = value.get("from") or {}
        return CommentEvent(
            account_id=account_id,
            comment_id=value.get("id"),
            text=value.get("text"),
            author_id=author.get("id"),
            author_username=author.get("username"),
            media_id=(value.get("media") or {}).get("id"),
            raw=value,
        )
    if field_name == "mentions":
        return TagEvent(
            account_id=account_id,
            media_id=value.get("media_id"),
            comment_id=value.get("comment_id"),
            raw=value,
        )
    if field_name == "story_insights":
        metrics: dict[str, Any] = {}
        for metric in value.get("metric_values") or []:
            if metric.get("name") and metric.get("value") is not None:
                metrics[metric["name"]] = metric["value"]
        for name in ("impressions", "reach", "replies", "exits", "taps_forward", "taps_back"):
            if name in value and name not in metrics:
                metrics[name] = value[name]
        return StoryInsightsEvent(
            account_id=account_id,
            media_id=value.get("media_id") or value.get("id"),
            metric_values=metrics,
            raw=value,
        )

    logger.info("Ignoring unhandled webhook field: %s", field_name)
    return None


def iter_events(payload: dict[str, Any]) -> Iterator[WebhookEvent]:
    """Yield every recognised event in an Instagram webhook payload."""
    if payload.get("object") != "instagram":
        logger.info("Ignoring webhook for object=%s", payload.get("object"))
        return

    for entry in payload.get("entry") or []:
        account_id = str(entry.get("id", ""))
        for change in entry.get("changes") or []:
            event = classify_change(account_id, change)
            if event is not None:
                yield event
        for item in entry.get("messaging") or []:
            recipient_id = (item.get("recipient") or {}).get("id")
            event = classify_messaging(str(recipient_id or account_id), item)
            if event is not None:
                yield event
