"""Service handing out stored platform access tokens."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select

from ..orm.access_credential import AccessCredential
from ..orm.base import utcnow
from .database import DatabaseService


@dataclass
class AccessToken:
    """A usable token and when it stops working."""

    token: str
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


class CredentialService:
    """Looks up the latest credential for an organization or an ambassador."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def get_access_token(
        self,
        organization_id: Optional[str] = None,
        ambassador_id: Optional[str] = None,
    ) -> Optional[AccessToken]:
        """Return the most recent credential, expired or not; callers decide."""
        if (organization_id is None) == (ambassador_id is None):
            raise ValueError("Exactly one of organization_id or ambassador_id is required")

        if organization_id is not None:
            condition = AccessCredential.organization_id == organization_id
        else:
            condition = AccessCredential.ambassador_id == ambassador_id

        async with self.db_service.session() as session:
            result = await session.execute(
                select(AccessCredential)
                .where(condition)
                .order_by(AccessCredential.created_at.desc())
                .limit(1)
            )
            credential = result.scalar_one_or_none()
            if credential is None:
                return None
            return AccessToken(token=credential.access_token, expires_at=credential.token_expiry)

    async def has_stored_credential(self, ambassador_id: str) -> bool:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(func.count(AccessCredential.id)).where(
                    AccessCredential.ambassador_id == ambassador_id
                )
            )
            return result.scalar_one() > 0
