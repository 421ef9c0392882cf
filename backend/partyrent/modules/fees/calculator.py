"""Commission math in integer minor units.

All amounts are cents. Each derived fee is rounded exactly once
(ROUND_HALF_UP) and every other figure is obtained by integer addition or
subtraction, so the breakdown always sums exactly:

    total_client_pays = service_amount + client_fee
    provider_receives = service_amount - provider_commission
    platform_fee      = total_client_pays - provider_receives
                      = client_fee + provider_commission
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

Number = Union[int, float, str, Decimal]

_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class CommissionBreakdown:
    """Fee split for one transaction."""
    service_amount_cents: int
    client_fee_percent: float
    provider_fee_percent: float
    client_fee_cents: int
    total_client_pays_cents: int
    provider_commission_cents: int
    provider_receives_cents: int

    @property
    def platform_fee_cents(self) -> int:
        """What the platform keeps: the client surcharge plus the provider commission."""
        return self.total_client_pays_cents - self.provider_receives_cents

    def to_dict(self) -> dict:
        return {
            "service_amount": format_amount(self.service_amount_cents),
            "client_fee_percent": self.client_fee_percent,
            "provider_fee_percent": self.provider_fee_percent,
            "client_fee": format_amount(self.client_fee_cents),
            "total_client_pays": format_amount(self.total_client_pays_cents),
            "provider_commission": format_amount(self.provider_commission_cents),
            "provider_receives": format_amount(self.provider_receives_cents),
            "platform_fee": format_amount(self.platform_fee_cents),
        }


def percent_of(amount_cents: int, percent: Number) -> int:
    """Percentage of an amount, rounded half-up to a whole cent."""
    value = Decimal(amount_cents) * Decimal(str(percent)) / _HUNDRED
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_commission(
    service_amount_cents: int,
    client_fee_percent: float,
    provider_fee_percent: float,
) -> CommissionBreakdown:
    """Compute the full fee breakdown for a service amount.

    Raises:
        ValueError: If the amount is negative or a percentage is outside [0, 100]
    """
    if service_amount_cents < 0:
        raise ValueError("service amount cannot be negative")
    for name, percent in (
        ("client_fee_percent", client_fee_percent),
        ("provider_fee_percent", provider_fee_percent),
    ):
        if not 0 <= percent <= 100:
            raise ValueError(f"{name} must be between 0 and 100, got {percent}")

    client_fee = percent_of(service_amount_cents, client_fee_percent)
    provider_commission = percent_of(service_amount_cents, provider_fee_percent)

    return CommissionBreakdown(
        service_amount_cents=service_amount_cents,
        client_fee_percent=float(client_fee_percent),
        provider_fee_percent=float(provider_fee_percent),
        client_fee_cents=client_fee,
        total_client_pays_cents=service_amount_cents + client_fee,
        provider_commission_cents=provider_commission,
        provider_receives_cents=service_amount_cents - provider_commission,
    )


def to_cents(amount: Number) -> int:
    """Convert a decimal amount ("105.00", 105, 105.0) to cents.

    Raises:
        ValueError: If the amount is not a finite number
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"invalid amount: {amount!r}")
    return int((value * _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_amount(amount_cents: int) -> str:
    """Render cents as the two-decimal string the gateway expects."""
    sign = "-" if amount_cents < 0 else ""
    whole, cents = divmod(abs(amount_cents), 100)
    return f"{sign}{whole}.{cents:02d}"
