"""Service exposing the active-event directory."""

from sqlalchemy import select

from ..orm.fiesta import Fiesta, FiestaStatus
from ..party_selection import ActiveParty
from .database import DatabaseService


class FiestaService:
    """Read-only access to an organization's fiestas."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def get_active_events(self, organization_id: str) -> list[ActiveParty]:
        """Active fiestas ordered by event date ascending, undated last."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(Fiesta)
                .where(
                    Fiesta.organization_id == organization_id,
                    Fiesta.status == FiestaStatus.ACTIVE.value,
                )
                .order_by(Fiesta.event_date.is_(None), Fiesta.event_date.asc(), Fiesta.name.asc())
            )
            return [
                ActiveParty(
                    id=fiesta.id,
                    name=fiesta.name,
                    location=fiesta.location,
                    description=fiesta.description,
                    event_date=fiesta.event_date,
                    instagram_handle=fiesta.instagram_handle,
                )
                for fiesta in result.scalars().all()
            ]

    async def get(self, fiesta_id: str) -> Fiesta | None:
        async with self.db_service.session() as session:
            return await session.get(Fiesta, fiesta_id)
