"""Service for resolving tenants from inbound platform account ids."""

from typing import Optional

from sqlalchemy import or_, select

from ..orm.organization import Organization
from .database import DatabaseService


class OrganizationService:
    """Tenant resolution and per-tenant webhook secrets."""

    def __init__(self, db_service: DatabaseService, fallback_app_secret: Optional[str] = None):
        self.db_service = db_service
        self.fallback_app_secret = fallback_app_secret

    async def resolve_by_account_id(self, account_id: str) -> Optional[Organization]:
        """Find the organization owning an Instagram account id."""
        if not account_id:
            return None
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Organization)
                .where(
                    or_(
                        Organization.instagram_account_id == account_id,
                        Organization.instagram_user_id == account_id,
                    )
                )
                .order_by((Organization.instagram_account_id == account_id).desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def webhook_secret_for(self, account_id: str) -> Optional[str]:
        """Per-tenant signing secret, falling back to the global one."""
        organization = await self.resolve_by_account_id(account_id)
        if organization is not None and organization.webhook_app_secret:
            return organization.webhook_app_secret
        return self.fallback_app_secret
