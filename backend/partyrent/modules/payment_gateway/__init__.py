"""Payment Gateway Module.

The only component that talks to the payment processor (PayPal).
"""

from partyrent.modules.payment_gateway.errors import (
    CaptureError,
    CredentialsMissingError,
    GatewayAuthError,
    GatewayTimeoutError,
    OrderCreationError,
    PaymentGatewayError,
    PayoutError,
    RefundError,
)
from partyrent.modules.payment_gateway.interface import (
    CaptureResult,
    GatewayConfig,
    GatewayOrder,
    OrderMetadata,
    PartnerReferral,
    PaymentGatewayInterface,
    PayoutResult,
    RefundResult,
    SellerIssue,
    SellerIssueCode,
    SellerReferralData,
    SellerStatus,
    ValidationResult,
)
from partyrent.modules.payment_gateway.factory import (
    get_payment_gateway,
    set_payment_gateway,
)

__all__ = [
    "CaptureError",
    "CredentialsMissingError",
    "GatewayAuthError",
    "GatewayTimeoutError",
    "OrderCreationError",
    "PaymentGatewayError",
    "PayoutError",
    "RefundError",
    "CaptureResult",
    "GatewayConfig",
    "GatewayOrder",
    "OrderMetadata",
    "PartnerReferral",
    "PaymentGatewayInterface",
    "PayoutResult",
    "RefundResult",
    "SellerIssue",
    "SellerIssueCode",
    "SellerReferralData",
    "SellerStatus",
    "ValidationResult",
    "get_payment_gateway",
    "set_payment_gateway",
]
