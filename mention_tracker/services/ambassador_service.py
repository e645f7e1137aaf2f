"""Service for looking up ambassadors."""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update

from ..orm.ambassador import Ambassador
from .database import DatabaseService


class AmbassadorService:
    """Read access to ambassadors plus the one-time permission request flag."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def get(self, ambassador_id: str) -> Optional[Ambassador]:
        async with self.db_service.session() as session:
            return await session.get(Ambassador, ambassador_id)

    async def find_by_platform_user_id(
        self, organization_id: str, platform_user_id: str
    ) -> Optional[Ambassador]:
        """Find an ambassador of the organization by Instagram user id."""
        if not platform_user_id:
            return None
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Ambassador)
                .where(
                    Ambassador.organization_id == organization_id,
                    Ambassador.instagram_user_id == platform_user_id,
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_by_username(self, organization_id: str, username: str) -> Optional[Ambassador]:
        """Find an ambassador by username, ignoring case and a leading @."""
        normalized = username.strip().lstrip("@").lower()
        if not normalized:
            return None
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Ambassador)
                .where(
                    Ambassador.organization_id == organization_id,
                    func.lower(Ambassador.instagram_username) == normalized,
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def mark_permission_requested(self, ambassador_id: str, now: datetime) -> bool:
        """Stamp permission_requested_at if unset. Returns True for the first caller only."""
        async with self.db_service.session() as session:
            result = await session.execute(
                update(Ambassador)
                .where(
                    Ambassador.id == ambassador_id,
                    Ambassador.permission_requested_at.is_(None),
                )
                .values(permission_requested_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
