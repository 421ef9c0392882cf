"""Pydantic schemas for fee settings endpoints."""

from typing import Optional, Union

from partyrent.core.schemas import CamelModel


class FeeSettingsData(CamelModel):
    """Effective fee percentages."""
    client_fee_percent: float
    provider_fee_percent: float


class FeeSettingsResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    data: FeeSettingsData


class FeeSettingsUpdate(CamelModel):
    """Admin update payload. Strings such as "7.5%" are accepted."""
    client_fee_percent: Optional[Union[float, str]] = None
    provider_fee_percent: Optional[Union[float, str]] = None
