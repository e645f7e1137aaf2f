"""Service wiring and the scheduled job entry points."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .config import Config
from .instagram_client import InstagramClient
from .orm.base import utcnow
from .services import (
    AmbassadorService,
    CredentialService,
    DatabaseService,
    ExpiryService,
    FiestaService,
    InsightsService,
    MentionService,
    NotificationService,
    OrganizationService,
    PartySelectionService,
    VerificationService,
    WebhookHandler,
)

logger = logging.getLogger(__name__)


class StoryStateJobType(str, Enum):
    VERIFICATION = "verification"
    EXPIRY = "expiry"
    BOTH = "both"


@dataclass
class ServiceContext:
    """Every service, wired against one database and one platform client."""

    config: Config
    db_service: DatabaseService
    client: InstagramClient
    organizations: OrganizationService
    mentions: MentionService
    ambassadors: AmbassadorService
    fiestas: FiestaService
    credentials: CredentialService
    notifications: NotificationService
    insights: InsightsService
    party_selection: PartySelectionService
    verification: VerificationService
    expiry: ExpiryService
    webhook_handler: WebhookHandler


def build_context(
    config: Config, db_service: DatabaseService, client: Optional[InstagramClient] = None
) -> ServiceContext:
    """Create all services from configuration."""
    client = client or InstagramClient(config.instagram)
    app_secret = config.instagram.app_secret
    organizations = OrganizationService(
        db_service, app_secret.get_secret_value() if app_secret else None
    )
    mentions = MentionService(db_service, config.lifecycle)
    ambassadors = AmbassadorService(db_service)
    fiestas = FiestaService(db_service)
    credentials = CredentialService(db_service)
    notifications = NotificationService(db_service)
    insights = InsightsService(db_service)
    party_selection = PartySelectionService(
        mentions, fiestas, credentials, notifications, client, config.party_selection
    )
    verification = VerificationService(
        mentions, credentials, ambassadors, notifications, client, config.lifecycle
    )
    expiry = ExpiryService(mentions, credentials, insights, notifications, client)
    webhook_handler = WebhookHandler(
        organizations,
        mentions,
        ambassadors,
        credentials,
        notifications,
        insights,
        party_selection,
        client,
        config.instagram,
    )
    return ServiceContext(
        config=config,
        db_service=db_service,
        client=client,
        organizations=organizations,
        mentions=mentions,
        ambassadors=ambassadors,
        fiestas=fiestas,
        credentials=credentials,
        notifications=notifications,
        insights=insights,
        party_selection=party_selection,
        verification=verification,
        expiry=expiry,
        webhook_handler=webhook_handler,
    )


async def run_story_state_worker(
    context: ServiceContext,
    job_type: StoryStateJobType | str = StoryStateJobType.BOTH,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Run the verification sweep, the expiry sweep, or both.

    Returns:
        Job summary keyed by sweep name
    """
    job_type = StoryStateJobType(job_type)
    now = now or utcnow()
    results: dict[str, Any] = {"type": job_type.value, "ran_at": now.isoformat()}

    if job_type in (StoryStateJobType.VERIFICATION, StoryStateJobType.BOTH):
        results["verification"] = await context.verification.run(now)
    if job_type in (StoryStateJobType.EXPIRY, StoryStateJobType.BOTH):
        results["expiry"] = await context.expiry.run(now)

    logger.info(f"Story state worker ({job_type.value}) complete")
    return results


async def run_party_selection_timeout(
    context: ServiceContext, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Run the party selection timeout sweep."""
    now = now or utcnow()
    results: dict[str, Any] = {"ran_at": now.isoformat()}
    results.update(await context.party_selection.sweep_timeouts(now))
    return results
