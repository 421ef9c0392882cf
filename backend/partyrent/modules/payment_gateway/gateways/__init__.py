"""Payment gateway implementations."""

from partyrent.modules.payment_gateway.gateways.paypal import PayPalGateway

__all__ = ["PayPalGateway"]
