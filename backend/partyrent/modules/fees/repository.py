"""Repository for platform settings."""

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.modules.fees.models import PlatformSetting


class PlatformSettingRepository:
    """Data access for key/value settings rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> Optional[PlatformSetting]:
        result = await self.session.execute(
            select(PlatformSetting).where(PlatformSetting.key == key)
        )
        return result.scalar_one_or_none()

    async def get_many(self, keys: Iterable[str]) -> dict[str, str]:
        """Fetch several keys at once. Missing keys are absent from the result."""
        result = await self.session.execute(
            select(PlatformSetting).where(PlatformSetting.key.in_(list(keys)))
        )
        return {row.key: row.value for row in result.scalars().all()}

    async def upsert(self, key: str, value: str) -> PlatformSetting:
        setting = await self.get(key)
        if setting is None:
            setting = PlatformSetting(key=key, value=value)
            self.session.add(setting)
        else:
            setting.value = value
        await self.session.flush()
        return setting
