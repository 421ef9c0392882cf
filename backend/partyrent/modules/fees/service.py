"""Fee settings provider.

Resolves the client-fee and provider-fee percentages from persisted settings
rows, falling back to the platform defaults whenever a row is missing or
holds something that is not a percentage in [0, 100].
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.config import settings
from partyrent.core.exceptions import ValidationError
from partyrent.core.logging import log_warning
from partyrent.modules.fees.repository import PlatformSettingRepository

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_FEE_PERCENT = 5.0
DEFAULT_PROVIDER_FEE_PERCENT = 12.0

CLIENT_FEE_KEY = "payments.clientFeePercent"
PROVIDER_FEE_KEY = "payments.providerFeePercent"
LEGACY_CLIENT_FEE_KEY = "clientFeePercent"
LEGACY_PROVIDER_FEE_KEY = "providerFeePercent"
LEGACY_PLATFORM_FEE_KEY = "platformFeePercent"

# Lookup order per value; the first key holding a valid percentage wins
CLIENT_FEE_KEYS = (CLIENT_FEE_KEY, LEGACY_CLIENT_FEE_KEY, LEGACY_PLATFORM_FEE_KEY)
PROVIDER_FEE_KEYS = (PROVIDER_FEE_KEY, LEGACY_PROVIDER_FEE_KEY, LEGACY_PLATFORM_FEE_KEY)


class FeeValidationError(ValidationError):
    """Fee settings update rejected."""


@dataclass(frozen=True)
class FeeSettings:
    """Effective fee percentages."""
    client_fee_percent: float = DEFAULT_CLIENT_FEE_PERCENT
    provider_fee_percent: float = DEFAULT_PROVIDER_FEE_PERCENT


def coerce_fee_percent(raw: Any) -> Optional[float]:
    """Parse a stored or submitted percentage.

    Accepts numbers and strings, with or without a trailing ``%``.

    Returns:
        The percentage, or None when it is not a finite number in [0, 100]
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("%"):
            text = text[:-1].strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    elif isinstance(raw, (int, float)):
        value = float(raw)
    else:
        return None

    if math.isnan(value) or math.isinf(value) or not 0 <= value <= 100:
        return None
    return value


def parse_fee_percent(raw: Any, default: float, key: str = "") -> float:
    """Parse a percentage, returning ``default`` (with a warning) when invalid."""
    value = coerce_fee_percent(raw)
    if value is None:
        log_warning(
            logger,
            f"Invalid fee percentage {raw!r} for {key or 'fee setting'}, using default {default}",
            setting_key=key,
        )
        return default
    return value


class FeeSettingsService:
    """Read and update the platform fee percentages."""

    # Process-wide cache: (FeeSettings, expires_at monotonic seconds)
    _cache: Optional[tuple[FeeSettings, float]] = None

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = PlatformSettingRepository(session)

    @classmethod
    def clear_cache(cls) -> None:
        cls._cache = None

    async def get_fee_settings(self) -> FeeSettings:
        """Return the effective fee percentages. Never raises on bad data."""
        if FeeSettingsService._cache is not None:
            cached, expires_at = FeeSettingsService._cache
            if time.monotonic() < expires_at:
                return cached

        fee_settings = await self._load()
        if settings.FEE_SETTINGS_CACHE_SECONDS > 0:
            FeeSettingsService._cache = (
                fee_settings,
                time.monotonic() + settings.FEE_SETTINGS_CACHE_SECONDS,
            )
        return fee_settings

    async def _load(self) -> FeeSettings:
        rows = await self.repository.get_many(set(CLIENT_FEE_KEYS + PROVIDER_FEE_KEYS))
        return FeeSettings(
            client_fee_percent=self._resolve(
                rows, CLIENT_FEE_KEYS, DEFAULT_CLIENT_FEE_PERCENT
            ),
            provider_fee_percent=self._resolve(
                rows, PROVIDER_FEE_KEYS, DEFAULT_PROVIDER_FEE_PERCENT
            ),
        )

    def _resolve(self, rows: dict[str, str], keys: tuple[str, ...], default: float) -> float:
        for key in keys:
            if key not in rows:
                continue
            value = coerce_fee_percent(rows[key])
            if value is not None:
                return value
            log_warning(
                logger,
                f"Ignoring unparseable fee setting {key}={rows[key]!r}",
                setting_key=key,
            )
        logger.debug(f"No valid fee setting among {keys}, using default {default}")
        return default

    async def update_fee_settings(
        self,
        client_fee_percent: Any = None,
        provider_fee_percent: Any = None,
    ) -> FeeSettings:
        """Upsert the fee percentages.

        Both values are validated before anything is written.

        Raises:
            FeeValidationError: If neither value is given, or if any given value
                is not a percentage in [0, 100]. Nothing is written then.
        """
        if client_fee_percent is None and provider_fee_percent is None:
            raise FeeValidationError("At least one fee percentage must be provided")

        updates: dict[str, float] = {}
        errors: dict[str, str] = {}
        for field, key, raw in (
            ("clientFeePercent", CLIENT_FEE_KEY, client_fee_percent),
            ("providerFeePercent", PROVIDER_FEE_KEY, provider_fee_percent),
        ):
            if raw is None:
                continue
            value = coerce_fee_percent(raw)
            if value is None:
                errors[field] = f"must be a number between 0 and 100, got {raw!r}"
            else:
                updates[key] = value

        if errors:
            raise FeeValidationError("Invalid fee percentage", details=errors)

        for key, value in updates.items():
            await self.repository.upsert(key, repr(value))

        # Uncommitted values never enter the shared cache
        FeeSettingsService.clear_cache()
        logger.info(f"Fee settings updated: {updates}")
        return await self._load()
