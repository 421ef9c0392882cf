"""Repository for provider profiles."""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.modules.accounts.models import Provider


class ProviderRepository:
    """Data access for providers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, provider_id: uuid.UUID) -> Optional[Provider]:
        result = await self.session.execute(select(Provider).where(Provider.id == provider_id))
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: uuid.UUID) -> Optional[Provider]:
        result = await self.session.execute(select(Provider).where(Provider.user_id == user_id))
        return result.scalar_one_or_none()

    async def update(self, provider: Provider, **kwargs) -> Provider:
        for key, value in kwargs.items():
            setattr(provider, key, value)
        await self.session.flush()
        return provider
