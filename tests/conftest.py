"""Shared fixtures: temporary database, wired services and a fake Instagram client."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio

from mention_tracker.config import Config, InstagramConfig, ServiceConfig
from mention_tracker.instagram_client import (
    SentMessage,
    StoryInsights,
    StoryMedia,
    VerificationOutcome,
)
from mention_tracker.jobs import build_context
from mention_tracker.orm import (
    AccessCredential,
    Ambassador,
    Fiesta,
    FiestaStatus,
    MentionType,
    Organization,
)
from mention_tracker.services import open_database, sqlite_url

T0 = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

ACCOUNT_ID = "17841400000000001"
PAGE_ID = "page-1"
GLOBAL_SECRET = "global-app-secret"


class FakeInstagramClient:
    """Records every call and returns canned responses."""

    def __init__(self):
        self.default_outcome = VerificationOutcome.EXISTS
        self.story_outcomes: dict[str, VerificationOutcome] = {}
        self.story_checks: list[str] = []
        self.insights: Optional[StoryInsights] = None
        self.insights_error: Optional[Exception] = None
        self.insights_requests: list[str] = []
        self.sent: list[dict[str, Any]] = []
        self.send_error: Optional[Exception] = None
        self.account_info: dict[str, Any] = {}
        self.story_media: Optional[StoryMedia] = None
        self.enrichment_error: Optional[Exception] = None

    async def story_exists(self, story_id: str, token: str) -> VerificationOutcome:
        self.story_checks.append(story_id)
        return self.story_outcomes.get(story_id, self.default_outcome)

    async def fetch_story_insights(self, story_id: str, token: str) -> Optional[StoryInsights]:
        self.insights_requests.append(story_id)
        if self.insights_error:
            raise self.insights_error
        return self.insights

    async def send_message(self, recipient_id: str, text: str, token: str) -> SentMessage:
        return self._record(recipient_id, text, None)

    async def send_message_with_quick_replies(self, recipient_id, text, options, token) -> SentMessage:
        return self._record(recipient_id, text, list(options))

    def _record(self, recipient_id, text, quick_replies) -> SentMessage:
        if self.send_error:
            raise self.send_error
        self.sent.append({"recipient_id": recipient_id, "text": text, "quick_replies": quick_replies})
        return SentMessage(message_id=f"mid.{len(self.sent)}", recipient_id=recipient_id)

    async def fetch_account_info(self, user_id, token, fields="id,username,name") -> dict[str, Any]:
        if self.enrichment_error:
            raise self.enrichment_error
        return self.account_info

    async def find_story_media(self, user_id, mentioned_at, token, window=timedelta(minutes=5)):
        if self.enrichment_error:
            raise self.enrichment_error
        return self.story_media

    @property
    def quick_reply_messages(self) -> list[dict[str, Any]]:
        return [message for message in self.sent if message["quick_replies"] is not None]


@pytest.fixture
def config() -> Config:
    return Config(
        instagram=InstagramConfig(app_secret=GLOBAL_SECRET, verify_token="verify-me"),
        service=ServiceConfig(cron_secret="cron-secret"),
    )


@pytest_asyncio.fixture
async def db_service(tmp_path):
    db = await open_database(sqlite_url(tmp_path / "test.db"))
    yield db
    await db.close()


@pytest.fixture
def fake_client() -> FakeInstagramClient:
    return FakeInstagramClient()


@pytest.fixture
def context(config, db_service, fake_client):
    return build_context(config, db_service, fake_client)


@pytest.fixture
def add(db_service):
    """Persist ORM objects and hand them back."""

    async def _add(*objects):
        async with db_service.session() as session:
            session.add_all(objects)
        return objects[0] if len(objects) == 1 else objects

    return _add


@pytest_asyncio.fixture
async def organization(add) -> Organization:
    org = await add(
        Organization(
            name="Club Nocturno",
            instagram_account_id=ACCOUNT_ID,
            instagram_username="clubnocturno",
            facebook_page_id=PAGE_ID,
        )
    )
    await add(AccessCredential(organization_id=org.id, access_token="org-token"))
    return org


@pytest.fixture
def make_ambassador(add, organization):
    async def _make(user_id: str = "user-1", username: str = "fan", **fields) -> Ambassador:
        return await add(
            Ambassador(
                organization_id=organization.id,
                first_name=fields.pop("first_name", "Ana"),
                last_name=fields.pop("last_name", "Lopez"),
                instagram_user_id=user_id,
                instagram_username=username,
                **fields,
            )
        )

    return _make


@pytest.fixture
def make_fiestas(add, organization):
    """Create active fiestas dated one day apart, in the given order."""

    async def _make(*names: str) -> list[Fiesta]:
        fiestas = [
            Fiesta(
                organization_id=organization.id,
                name=name,
                location=f"Sala {index}",
                event_date=T0 + timedelta(days=index),
                status=FiestaStatus.ACTIVE.value,
            )
            for index, name in enumerate(names, start=1)
        ]
        if fiestas:
            await add(*fiestas)
        return fiestas

    return _make


@pytest.fixture
def make_story_mention(context, organization):
    async def _make(
        mentioned_at: datetime = T0,
        story_id: Optional[str] = "story-1",
        user_id: str = "user-1",
        username: Optional[str] = "fan",
        **fields,
    ):
        mention = await context.mentions.create(
            organization.id,
            MentionType.STORY_REFERRAL,
            mentioned_at,
            instagram_user_id=user_id,
            instagram_username=username,
            instagram_story_id=story_id,
            **fields,
        )
        assert mention is not None
        return mention

    return _make

