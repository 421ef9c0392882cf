"""Admin fee settings endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.database import get_session
from partyrent.core.security import CurrentUser, require_admin
from partyrent.modules.fees.schemas import (
    FeeSettingsData,
    FeeSettingsResponse,
    FeeSettingsUpdate,
)
from partyrent.modules.fees.service import FeeSettingsService

router = APIRouter(prefix="/admin/fee-settings", tags=["fees"])


@router.get("", response_model=FeeSettingsResponse)
async def get_fee_settings(
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
):
    """Current client and provider fee percentages."""
    service = FeeSettingsService(session)
    fees = await service.get_fee_settings()
    return FeeSettingsResponse(
        data=FeeSettingsData(
            client_fee_percent=fees.client_fee_percent,
            provider_fee_percent=fees.provider_fee_percent,
        )
    )


@router.post("", response_model=FeeSettingsResponse)
async def update_fee_settings(
    data: FeeSettingsUpdate,
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
):
    """Update one or both fee percentages.

    Transactions already created keep the percentages they were created with.
    """
    service = FeeSettingsService(session)
    fees = await service.update_fee_settings(
        client_fee_percent=data.client_fee_percent,
        provider_fee_percent=data.provider_fee_percent,
    )
    return FeeSettingsResponse(
        message="Fee settings updated successfully",
        data=FeeSettingsData(
            client_fee_percent=fees.client_fee_percent,
            provider_fee_percent=fees.provider_fee_percent,
        ),
    )
