"""ORM models for database persistence."""

from .access_credential import AccessCredential
from .ambassador import Ambassador
from .base import Base, SqlalchemyBase, UTCDateTime, utcnow
from .fiesta import Fiesta, FiestaStatus
from .notification import Notification, NotificationPriority
from .organization import Organization
from .social_mention import (
    TERMINAL_STATES,
    AccountVisibility,
    MentionState,
    MentionType,
    PartySelectionStatus,
    SocialMention,
)
from .story_insights_snapshot import StoryInsightsSnapshot

__all__ = [
    "AccessCredential",
    "AccountVisibility",
    "Ambassador",
    "Base",
    "Fiesta",
    "FiestaStatus",
    "MentionState",
    "MentionType",
    "Notification",
    "NotificationPriority",
    "Organization",
    "PartySelectionStatus",
    "SocialMention",
    "SqlalchemyBase",
    "StoryInsightsSnapshot",
    "TERMINAL_STATES",
    "UTCDateTime",
    "utcnow",
]
