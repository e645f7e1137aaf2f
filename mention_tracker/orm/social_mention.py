"""SocialMention model: one inbound signal tied to an organization."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase, UTCDateTime


class MentionType(str, Enum):
    STORY = "story"
    STORY_REFERRAL = "story_referral"
    COMMENT = "comment"
    MENTION = "mention"
    TAG = "tag"
    HASHTAG = "hashtag"


class MentionState(str, Enum):
    NEW = "new"
    FLAGGED_EARLY_DELETE = "flagged_early_delete"
    COMPLETED = "completed"
    EXPIRED_UNKNOWN = "expired_unknown"


TERMINAL_STATES = frozenset(
    {MentionState.FLAGGED_EARLY_DELETE, MentionState.COMPLETED, MentionState.EXPIRED_UNKNOWN}
)


class PartySelectionStatus(str, Enum):
    NONE = "none"
    PENDING_RESPONSE = "pending_response"
    RESOLVED = "resolved"
    TIMEOUT = "timeout"


class AccountVisibility(str, Enum):
    UNKNOWN = "unknown"
    PUBLIC = "public"
    PRIVATE = "private"


_STORY_REFERRAL_ONLY = text("mention_type = 'story_referral'")


class SocialMention(SqlalchemyBase):
    """A mention row. Rows are never deleted; they are the audit trail."""

    __tablename__ = "social_mentions"
    __table_args__ = (
        # Idempotency key for replayed story referral webhooks
        Index(
            "uq_social_mentions_story_referral",
            "organization_id",
            "instagram_user_id",
            "mentioned_at",
            "mention_type",
            unique=True,
            sqlite_where=_STORY_REFERRAL_ONLY,
            postgresql_where=_STORY_REFERRAL_ONLY,
        ),
        Index("idx_social_mentions_type_state_mentioned", "mention_type", "state", "mentioned_at"),
        Index("idx_social_mentions_expires_at", "expires_at"),
        Index("idx_social_mentions_party_status", "party_selection_status"),
        Index("idx_social_mentions_external_event", "organization_id", "external_event_id"),
        Index("idx_social_mentions_story_id", "instagram_story_id"),
    )

    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String, nullable=False, default="instagram")

    # Source identity
    instagram_user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    instagram_username: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    mention_type: Mapped[str] = mapped_column(String, nullable=False)
    external_event_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    recipient_page_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Linkage, each set at most once
    matched_ambassador_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("ambassadors.id"), nullable=True
    )
    matched_fiesta_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("fiestas.id"), nullable=True
    )
    matched_external_event_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_task_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Content
    instagram_story_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    instagram_media_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    story_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deep_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    # Timing
    mentioned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_check_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    checks_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Lifecycle
    state: Mapped[str] = mapped_column(String, nullable=False, default=MentionState.NEW.value)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    account_visibility: Mapped[str] = mapped_column(
        String, nullable=False, default=AccountVisibility.UNKNOWN.value
    )

    # Party selection dialog
    party_selection_status: Mapped[str] = mapped_column(
        String, nullable=False, default=PartySelectionStatus.NONE.value
    )
    party_selection_message_sent_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    party_options_sent: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    party_selection_message_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Conversation linkage
    conversation_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    inbox_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def display_username(self) -> str:
        return f"@{self.instagram_username}" if self.instagram_username else "unknown user"

    def __repr__(self) -> str:
        return (
            f"<SocialMention(id={self.id}, type={self.mention_type}, state={self.state}, "
            f"party_selection={self.party_selection_status}, checks={self.checks_count})>"
        )
