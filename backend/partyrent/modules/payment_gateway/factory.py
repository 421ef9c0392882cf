"""Gateway instance management.

One gateway client per process so the cached OAuth token is shared between
requests. Tests replace it with ``set_payment_gateway``.
"""

from typing import Optional

from partyrent.core.config import settings
from partyrent.modules.payment_gateway.gateways import PayPalGateway
from partyrent.modules.payment_gateway.interface import (
    GatewayConfig,
    PaymentGatewayInterface,
)

_gateway: Optional[PaymentGatewayInterface] = None


def get_payment_gateway() -> PaymentGatewayInterface:
    """Return the process-wide gateway client. Usable as a FastAPI dependency."""
    global _gateway
    if _gateway is None:
        _gateway = PayPalGateway(GatewayConfig.from_settings(settings))
    return _gateway


def set_payment_gateway(gateway: Optional[PaymentGatewayInterface]) -> None:
    """Replace (or with None, reset) the process-wide gateway client."""
    global _gateway
    _gateway = gateway
