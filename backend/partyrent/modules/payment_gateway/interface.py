"""Payment Gateway Interface - abstract base class for the processor client.

Defines the contract the payment service relies on. Amounts cross this
boundary as integer cents; implementations format them for the wire.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from partyrent.core.config import Settings


class SellerIssueCode:
    """Issue codes derived from a provider's merchant status."""
    EMAIL_NOT_CONFIRMED = "EMAIL_NOT_CONFIRMED"
    CANNOT_RECEIVE_PAYMENTS = "CANNOT_RECEIVE_PAYMENTS"
    NO_OAUTH_PERMISSIONS = "NO_OAUTH_PERMISSIONS"
    STATUS_CHECK_FAILED = "STATUS_CHECK_FAILED"


@dataclass
class GatewayConfig:
    """Credentials and options for a gateway client."""
    client_id: str = ""
    client_secret: str = ""
    sandbox: bool = True
    partner_id: str = ""
    partner_attribution_id: Optional[str] = None
    platform_merchant_id: str = ""
    brand_name: str = ""
    timeout_seconds: float = 15.0
    connect_timeout_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        return cls(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            sandbox=settings.paypal_is_sandbox,
            partner_id=settings.PAYPAL_PARTNER_ID,
            partner_attribution_id=settings.PAYPAL_PARTNER_ATTRIBUTION_ID,
            platform_merchant_id=settings.PAYPAL_PLATFORM_MERCHANT_ID,
            brand_name=settings.PAYPAL_BRAND_NAME,
            timeout_seconds=settings.PAYPAL_REQUEST_TIMEOUT_SECONDS,
            connect_timeout_seconds=settings.PAYPAL_CONNECT_TIMEOUT_SECONDS,
        )

    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass
class OrderMetadata:
    """Descriptive fields attached to an order's purchase unit."""
    reference_id: str
    description: str = ""
    invoice_id: Optional[str] = None
    custom_id: Optional[str] = None
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    items: Optional[list[dict]] = None


@dataclass
class GatewayOrder:
    """An order as reported by the processor."""
    id: str
    status: str
    links: list[dict] = field(default_factory=list)
    raw: dict = field(default_factory=dict)

    @property
    def approval_url(self) -> Optional[str]:
        for link in self.links:
            if link.get("rel") in ("approve", "payer-action"):
                return link.get("href")
        return None


@dataclass
class CaptureResult:
    """A completed capture."""
    capture_id: str
    status: str
    amount_cents: int
    currency: str
    order_id: str
    raw: dict = field(default_factory=dict)


@dataclass
class RefundResult:
    refund_id: str
    capture_id: str
    status: str
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    raw: dict = field(default_factory=dict)


@dataclass
class PayoutResult:
    payout_batch_id: str
    batch_status: str
    sender_batch_id: str
    raw: dict = field(default_factory=dict)


@dataclass
class SellerReferralData:
    """Data needed to start a provider's onboarding."""
    tracking_id: str
    return_url: str
    email: Optional[str] = None
    business_name: Optional[str] = None


@dataclass
class PartnerReferral:
    partner_referral_id: Optional[str]
    action_url: Optional[str]
    links: list[dict] = field(default_factory=list)
    raw: dict = field(default_factory=dict)


@dataclass
class SellerIssue:
    code: str
    message: str

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


@dataclass
class SellerStatus:
    """Whether a provider's connected account can take marketplace payments."""
    merchant_id: str
    issues: list[SellerIssue] = field(default_factory=list)
    raw: dict = field(default_factory=dict)

    @property
    def can_receive_payments(self) -> bool:
        return not self.issues


@dataclass
class ValidationResult:
    """Result from credential validation."""
    is_valid: bool
    message: str
    details: Optional[dict] = None


class PaymentGatewayInterface(ABC):
    """Abstract interface for the payment processor client.

    Every operation either returns its result type or raises a
    ``PaymentGatewayError`` subclass; ``check_seller_status`` is the one
    exception and always returns a ``SellerStatus``.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config

    @property
    def is_sandbox(self) -> bool:
        return self.config.sandbox

    @abstractmethod
    async def get_access_token(self) -> str:
        """Exchange the configured credentials for a bearer token."""

    @abstractmethod
    async def create_order(
        self,
        amount_cents: int,
        currency: str,
        metadata: OrderMetadata,
        idempotency_key: Optional[str] = None,
    ) -> GatewayOrder:
        """Create a capture-intent order for the full client amount."""

    @abstractmethod
    async def create_marketplace_order(
        self,
        total_cents: int,
        provider_amount_cents: int,
        platform_fee_cents: int,
        provider_merchant_id: str,
        currency: str,
        metadata: OrderMetadata,
        idempotency_key: Optional[str] = None,
        disbursement_mode: str = "INSTANT",
    ) -> GatewayOrder:
        """Create an order paying the provider with a platform fee split."""

    @abstractmethod
    async def capture_order(
        self, order_id: str, idempotency_key: Optional[str] = None
    ) -> CaptureResult:
        """Capture an approved order."""

    @abstractmethod
    async def get_order(self, order_id: str) -> GatewayOrder:
        """Fetch an order's current state."""

    @abstractmethod
    async def refund_capture(
        self,
        capture_id: str,
        amount_cents: Optional[int] = None,
        currency: Optional[str] = None,
        note: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        payee_merchant_id: Optional[str] = None,
    ) -> RefundResult:
        """Refund a capture, fully or partially."""

    @abstractmethod
    async def create_payout(
        self,
        receiver_email: str,
        amount_cents: int,
        currency: str,
        sender_batch_id: str,
        note: Optional[str] = None,
    ) -> PayoutResult:
        """Send money from the platform account to a provider."""

    @abstractmethod
    async def get_payout_status(self, payout_batch_id: str) -> PayoutResult:
        """Fetch a payout batch's state."""

    @abstractmethod
    async def release_funds(self, capture_id: str) -> dict[str, Any]:
        """Disburse a capture that was taken with delayed disbursement."""

    @abstractmethod
    async def create_partner_referral(self, seller: SellerReferralData) -> PartnerReferral:
        """Start onboarding of a provider's connected account."""

    @abstractmethod
    async def get_merchant_status(self, merchant_id: str) -> dict[str, Any]:
        """Raw merchant integration status."""

    @abstractmethod
    async def check_seller_status(self, merchant_id: str) -> SellerStatus:
        """Derive payment-readiness issues. Never raises."""

    @abstractmethod
    async def validate_credentials(self) -> ValidationResult:
        """Check the configured credentials against the processor."""
