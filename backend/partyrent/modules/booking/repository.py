"""Repository for booking records."""

import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.modules.booking.models import Offer, Service, User, UserRole


class BookingRepository:
    """Data access for users, services and offers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_admin_ids(self) -> list[uuid.UUID]:
        result = await self.session.execute(
            select(User.id).where(
                User.role == UserRole.ADMIN.value,
                User.is_active == True,  # noqa: E712
            )
        )
        return list(result.scalars().all())

    async def get_service(self, service_id: uuid.UUID) -> Optional[Service]:
        result = await self.session.execute(select(Service).where(Service.id == service_id))
        return result.scalar_one_or_none()

    async def get_offer(self, offer_id: uuid.UUID) -> Optional[Offer]:
        result = await self.session.execute(select(Offer).where(Offer.id == offer_id))
        return result.scalar_one_or_none()

    async def create_offer(self, **kwargs) -> Offer:
        offer = Offer(**kwargs)
        self.session.add(offer)
        await self.session.flush()
        return offer

    async def set_offer_status(self, offer_id: uuid.UUID, status: str) -> None:
        await self.session.execute(
            update(Offer).where(Offer.id == offer_id).values(status=status)
        )
