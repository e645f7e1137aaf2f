"""Service layer for business logic and database operations."""

from .ambassador_service import AmbassadorService
from .credential_service import AccessToken, CredentialService
from .database import DatabaseService, open_database, sqlite_url
from .expiry_service import ExpiryService
from .fiesta_service import FiestaService
from .insights_service import InsightsService
from .mention_service import MentionService
from .notification_service import NotificationService
from .organization_service import OrganizationService
from .party_selection_service import PartySelectionService
from .verification_service import VerificationService
from .webhook_handler import WebhookHandler

__all__ = [
    "AccessToken",
    "AmbassadorService",
    "CredentialService",
    "DatabaseService",
    "ExpiryService",
    "FiestaService",
    "InsightsService",
    "MentionService",
    "NotificationService",
    "OrganizationService",
    "PartySelectionService",
    "VerificationService",
    "WebhookHandler",
    "open_database",
    "sqlite_url",
]
