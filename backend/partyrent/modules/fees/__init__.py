"""Fee settings and commission math."""

from partyrent.modules.fees.calculator import (
    CommissionBreakdown,
    calculate_commission,
    format_amount,
    to_cents,
)
from partyrent.modules.fees.service import (
    DEFAULT_CLIENT_FEE_PERCENT,
    DEFAULT_PROVIDER_FEE_PERCENT,
    FeeSettings,
    FeeSettingsService,
    FeeValidationError,
    parse_fee_percent,
)

__all__ = [
    "CommissionBreakdown",
    "calculate_commission",
    "format_amount",
    "to_cents",
    "DEFAULT_CLIENT_FEE_PERCENT",
    "DEFAULT_PROVIDER_FEE_PERCENT",
    "FeeSettings",
    "FeeSettingsService",
    "FeeValidationError",
    "parse_fee_percent",
]
