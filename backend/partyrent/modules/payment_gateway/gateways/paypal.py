"""PayPal payment gateway implementation.

Uses the Orders v2 API for checkout, the Payments v2 API for refunds, the
Payouts API for provider transfers and the Partner Referrals / merchant
integration APIs for provider onboarding.
"""

import base64
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Type

import httpx

from partyrent.core.metrics import (
    GATEWAY_REQUESTS_TOTAL,
    GATEWAY_REQUEST_DURATION_SECONDS,
)
from partyrent.modules.fees.calculator import format_amount, to_cents
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

logger = logging.getLogger(__name__)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _b64url(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


class PayPalGateway(PaymentGatewayInterface):
    """PayPal payment gateway implementation."""

    SANDBOX_URL = "https://api-m.sandbox.paypal.com"
    PRODUCTION_URL = "https://api-m.paypal.com"

    CAPTURE_SUCCESS_STATUS = "COMPLETED"
    REFUND_FAILURE_STATUSES = ("FAILED", "CANCELLED")

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    @property
    def base_url(self) -> str:
        """Get PayPal API base URL based on mode."""
        return self.SANDBOX_URL if self.is_sandbox else self.PRODUCTION_URL

    @property
    def mode(self) -> str:
        return "sandbox" if self.is_sandbox else "live"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(
                self.config.timeout_seconds,
                connect=self.config.connect_timeout_seconds,
            ),
            transport=self._transport,
        )

    def _record(self, operation: str, outcome: str, started: float) -> None:
        GATEWAY_REQUEST_DURATION_SECONDS.labels(operation=operation).observe(
            time.perf_counter() - started
        )
        GATEWAY_REQUESTS_TOTAL.labels(operation=operation, outcome=outcome).inc()

    # ==================== Transport ====================

    async def get_access_token(self) -> str:
        """Get an OAuth access token, reusing the cached one until shortly before expiry.

        Raises:
            CredentialsMissingError: Client id or secret not configured
            GatewayAuthError: PayPal rejected the credentials
            GatewayTimeoutError: PayPal did not answer in time
        """
        if not self.config.has_credentials():
            raise CredentialsMissingError(
                f"PayPal client id/secret are not configured for {self.mode} mode"
            )

        if self._access_token and self._token_expires_at:
            if datetime.now(timezone.utc) < self._token_expires_at:
                return self._access_token

        auth = base64.b64encode(
            f"{self.config.client_id}:{self.config.client_secret}".encode()
        ).decode()

        started = time.perf_counter()
        try:
            async with self._client() as client:
                response = await client.post(
                    "/v1/oauth2/token",
                    headers={
                        "Authorization": f"Basic {auth}",
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                    data={"grant_type": "client_credentials"},
                )
        except httpx.TransportError as e:
            self._record("oauth_token", "timeout", started)
            raise GatewayTimeoutError(f"PayPal token request failed: {e}") from e

        if response.is_error:
            self._record("oauth_token", "error", started)
            raise GatewayAuthError(
                "Failed to get PayPal access token",
                upstream_status=response.status_code,
                upstream_body=_response_body(response),
            )
        self._record("oauth_token", "ok", started)

        data = response.json()
        self._access_token = data["access_token"]
        # Refresh a minute early
        expires_in = int(data.get("expires_in", 3600)) - 60
        self._token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        return self._access_token

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        error_class: Type[PaymentGatewayError] = PaymentGatewayError,
        body: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
        extra_headers: Optional[dict[str, str]] = None,
    ) -> dict:
        """Make an authenticated request to the PayPal API.

        Raises:
            error_class: Non-2xx response, with upstream status and body attached
            GatewayTimeoutError: Timeout or connection failure
        """
        token = await self.get_access_token()

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if self.config.partner_attribution_id:
            headers["PayPal-Partner-Attribution-Id"] = self.config.partner_attribution_id
        if idempotency_key:
            headers["PayPal-Request-Id"] = idempotency_key
        if extra_headers:
            headers.update(extra_headers)

        started = time.perf_counter()
        try:
            async with self._client() as client:
                response = await client.request(method, path, headers=headers, json=body)
        except httpx.TimeoutException as e:
            self._record(operation, "timeout", started)
            logger.warning(f"PayPal {operation} timed out: {method} {path}")
            raise GatewayTimeoutError(f"PayPal {operation} timed out") from e
        except httpx.TransportError as e:
            self._record(operation, "timeout", started)
            logger.warning(f"PayPal {operation} connection failed: {e}")
            raise GatewayTimeoutError(f"PayPal {operation} connection failed: {e}") from e

        if response.status_code == 401:
            # Token revoked or expired early
            self._access_token = None
            self._token_expires_at = None

        if response.is_error:
            self._record(operation, "error", started)
            upstream_body = _response_body(response)
            logger.error(
                f"PayPal {operation} failed with HTTP {response.status_code}",
                extra={"paypal_debug_id": response.headers.get("paypal-debug-id")},
            )
            raise error_class(
                f"PayPal {operation} failed with HTTP {response.status_code}",
                upstream_status=response.status_code,
                upstream_body=upstream_body,
            )

        self._record(operation, "ok", started)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise error_class(
                f"PayPal {operation} returned an unreadable body",
                upstream_status=response.status_code,
                upstream_body=response.text,
            ) from e

    # ==================== Orders ====================

    def _purchase_unit(self, amount_cents: int, currency: str, metadata: OrderMetadata) -> dict:
        unit: dict[str, Any] = {
            "reference_id": metadata.reference_id,
            "amount": {
                "currency_code": currency.upper(),
                "value": format_amount(amount_cents),
            },
        }
        if metadata.description:
            unit["description"] = metadata.description[:127]
        if metadata.custom_id:
            unit["custom_id"] = metadata.custom_id
        if metadata.invoice_id:
            unit["invoice_id"] = metadata.invoice_id
        if metadata.items:
            unit["items"] = metadata.items
        if self.config.brand_name:
            unit["soft_descriptor"] = self.config.brand_name[:22]
        return unit

    def _application_context(self, metadata: OrderMetadata) -> dict:
        context: dict[str, Any] = {
            "landing_page": "LOGIN",
            "user_action": "PAY_NOW",
            "shipping_preference": "NO_SHIPPING",
        }
        if self.config.brand_name:
            context["brand_name"] = self.config.brand_name
        if metadata.return_url:
            context["return_url"] = metadata.return_url
        if metadata.cancel_url:
            context["cancel_url"] = metadata.cancel_url
        return context

    @staticmethod
    def _to_order(data: dict) -> GatewayOrder:
        return GatewayOrder(
            id=data["id"],
            status=data.get("status", ""),
            links=data.get("links", []),
            raw=data,
        )

    async def create_order(
        self,
        amount_cents: int,
        currency: str,
        metadata: OrderMetadata,
        idempotency_key: Optional[str] = None,
    ) -> GatewayOrder:
        """Create a capture-intent order where the platform is the payee."""
        order_data = {
            "intent": "CAPTURE",
            "purchase_units": [self._purchase_unit(amount_cents, currency, metadata)],
            "application_context": self._application_context(metadata),
        }
        response = await self._request(
            "create_order",
            "POST",
            "/v2/checkout/orders",
            error_class=OrderCreationError,
            body=order_data,
            idempotency_key=idempotency_key,
        )
        order = self._to_order(response)
        logger.info(f"PayPal order {order.id} created ({format_amount(amount_cents)} {currency})")
        return order

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
        """Create an order paid to the provider's account with a platform fee.

        PayPal splits the capture: the provider receives
        ``total - platform_fee`` and the platform fee lands on the partner account.

        Raises:
            ValueError: If the provider amount and platform fee do not add up to the total
        """
        if provider_amount_cents + platform_fee_cents != total_cents:
            raise ValueError(
                f"Split does not add up: {provider_amount_cents} + {platform_fee_cents} "
                f"!= {total_cents}"
            )

        platform_fee: dict[str, Any] = {
            "amount": {
                "currency_code": currency.upper(),
                "value": format_amount(platform_fee_cents),
            },
        }
        if self.config.platform_merchant_id:
            platform_fee["payee"] = {"merchant_id": self.config.platform_merchant_id}

        unit = self._purchase_unit(total_cents, currency, metadata)
        unit["payee"] = {"merchant_id": provider_merchant_id}
        unit["payment_instruction"] = {
            "disbursement_mode": disbursement_mode,
            "platform_fees": [platform_fee],
        }

        order_data = {
            "intent": "CAPTURE",
            "purchase_units": [unit],
            "application_context": self._application_context(metadata),
        }
        response = await self._request(
            "create_marketplace_order",
            "POST",
            "/v2/checkout/orders",
            error_class=OrderCreationError,
            body=order_data,
            idempotency_key=idempotency_key,
        )
        order = self._to_order(response)
        logger.info(
            f"PayPal marketplace order {order.id} created for merchant {provider_merchant_id} "
            f"(total {format_amount(total_cents)}, platform fee {format_amount(platform_fee_cents)})"
        )
        return order

    async def get_order(self, order_id: str) -> GatewayOrder:
        response = await self._request("get_order", "GET", f"/v2/checkout/orders/{order_id}")
        return self._to_order(response)

    @staticmethod
    def extract_capture(order_id: str, data: dict) -> Optional[CaptureResult]:
        """Pull the first capture out of an order or capture response."""
        units = data.get("purchase_units") or []
        if not units:
            return None
        captures = (units[0].get("payments") or {}).get("captures") or []
        if not captures:
            return None
        capture = captures[0]
        amount = capture.get("amount") or {}
        return CaptureResult(
            capture_id=capture["id"],
            status=capture.get("status", ""),
            amount_cents=to_cents(amount.get("value", "0")),
            currency=amount.get("currency_code", ""),
            order_id=order_id,
            raw=data,
        )

    async def capture_order(
        self, order_id: str, idempotency_key: Optional[str] = None
    ) -> CaptureResult:
        """Capture an approved order.

        Raises:
            CaptureError: Non-2xx, or a capture status other than COMPLETED
            GatewayTimeoutError: Outcome unknown; reconcile with ``get_order``
        """
        try:
            response = await self._request(
                "capture_order",
                "POST",
                f"/v2/checkout/orders/{order_id}/capture",
                error_class=CaptureError,
                idempotency_key=idempotency_key,
            )
        except CaptureError as e:
            if not self._already_captured(e):
                raise
            # A previous attempt went through; report that capture
            logger.info(f"PayPal order {order_id} was already captured")
            order = await self.get_order(order_id)
            response = order.raw

        capture = self.extract_capture(order_id, response)
        order_status = response.get("status", "")
        if capture is None or capture.status != self.CAPTURE_SUCCESS_STATUS:
            capture_status = capture.status if capture else None
            raise CaptureError(
                f"PayPal capture for order {order_id} did not complete "
                f"(order {order_status or 'UNKNOWN'}, capture {capture_status or 'MISSING'})",
                upstream_body=response,
                details={"order_status": order_status, "capture_status": capture_status},
            )

        logger.info(f"PayPal order {order_id} captured as {capture.capture_id}")
        return capture

    @staticmethod
    def _already_captured(error: CaptureError) -> bool:
        if error.upstream_status != 422 or not isinstance(error.upstream_body, dict):
            return False
        return any(
            detail.get("issue") == "ORDER_ALREADY_CAPTURED"
            for detail in error.upstream_body.get("details", [])
        )

    # ==================== Refunds and payouts ====================

    def _auth_assertion(self, merchant_id: str) -> str:
        """Unsigned assertion letting the partner act on the provider's capture."""
        return ".".join([
            _b64url({"alg": "none"}),
            _b64url({"iss": self.config.client_id, "payer_id": merchant_id}),
            "",
        ])

    async def refund_capture(
        self,
        capture_id: str,
        amount_cents: Optional[int] = None,
        currency: Optional[str] = None,
        note: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        payee_merchant_id: Optional[str] = None,
    ) -> RefundResult:
        """Refund a capture. A full refund when ``amount_cents`` is None."""
        refund_data: dict[str, Any] = {}
        if amount_cents is not None:
            if not currency:
                raise ValueError("currency is required for a partial refund")
            refund_data["amount"] = {
                "value": format_amount(amount_cents),
                "currency_code": currency.upper(),
            }
        if note:
            refund_data["note_to_payer"] = note[:255]

        extra_headers = None
        if payee_merchant_id:
            extra_headers = {"PayPal-Auth-Assertion": self._auth_assertion(payee_merchant_id)}

        response = await self._request(
            "refund_capture",
            "POST",
            f"/v2/payments/captures/{capture_id}/refund",
            error_class=RefundError,
            body=refund_data or None,
            idempotency_key=idempotency_key,
            extra_headers=extra_headers,
        )

        status = response.get("status", "")
        if status in self.REFUND_FAILURE_STATUSES:
            raise RefundError(
                f"PayPal refund for capture {capture_id} finished as {status}",
                upstream_body=response,
            )

        amount = response.get("amount") or {}
        return RefundResult(
            refund_id=response.get("id", ""),
            capture_id=capture_id,
            status=status,
            amount_cents=to_cents(amount["value"]) if amount.get("value") else amount_cents,
            currency=amount.get("currency_code", currency),
            raw=response,
        )

    async def create_payout(
        self,
        receiver_email: str,
        amount_cents: int,
        currency: str,
        sender_batch_id: str,
        note: Optional[str] = None,
    ) -> PayoutResult:
        """Pay a provider from the platform balance."""
        payout_data = {
            "sender_batch_header": {
                "sender_batch_id": sender_batch_id,
                "email_subject": "You have a payout!",
                "email_message": note or "You have received a payout for a completed booking.",
            },
            "items": [{
                "recipient_type": "EMAIL",
                "amount": {
                    "value": format_amount(amount_cents),
                    "currency": currency.upper(),
                },
                "receiver": receiver_email,
                "note": note or "Booking payout",
                "sender_item_id": sender_batch_id,
            }],
        }
        response = await self._request(
            "create_payout",
            "POST",
            "/v1/payments/payouts",
            error_class=PayoutError,
            body=payout_data,
            idempotency_key=sender_batch_id,
        )
        header = response.get("batch_header") or {}
        result = PayoutResult(
            payout_batch_id=header.get("payout_batch_id", ""),
            batch_status=header.get("batch_status", ""),
            sender_batch_id=sender_batch_id,
            raw=response,
        )
        logger.info(
            f"PayPal payout {result.payout_batch_id} created for {format_amount(amount_cents)} "
            f"{currency} ({result.batch_status})"
        )
        return result

    async def get_payout_status(self, payout_batch_id: str) -> PayoutResult:
        response = await self._request(
            "get_payout_status",
            "GET",
            f"/v1/payments/payouts/{payout_batch_id}",
            error_class=PayoutError,
        )
        header = response.get("batch_header") or {}
        return PayoutResult(
            payout_batch_id=header.get("payout_batch_id", payout_batch_id),
            batch_status=header.get("batch_status", ""),
            sender_batch_id=(header.get("sender_batch_header") or {}).get("sender_batch_id", ""),
            raw=response,
        )

    async def release_funds(self, capture_id: str) -> dict[str, Any]:
        """Disburse a DELAYED marketplace capture to the provider."""
        response = await self._request(
            "release_funds",
            "POST",
            "/v1/payments/referenced-payouts-items",
            error_class=PayoutError,
            body={"reference_id": capture_id, "reference_type": "TRANSACTION_ID"},
            idempotency_key=f"release-{capture_id}",
        )
        logger.info(f"PayPal funds released for capture {capture_id}")
        return response

    # ==================== Seller onboarding ====================

    async def create_partner_referral(self, seller: SellerReferralData) -> PartnerReferral:
        referral_data: dict[str, Any] = {
            "tracking_id": seller.tracking_id,
            "operations": [{
                "operation": "API_INTEGRATION",
                "api_integration_preference": {
                    "rest_api_integration": {
                        "integration_method": "PAYPAL",
                        "integration_type": "THIRD_PARTY",
                        "third_party_details": {
                            "features": ["PAYMENT", "REFUND"],
                        },
                    },
                },
            }],
            "products": ["EXPRESS_CHECKOUT"],
            "legal_consents": [{"type": "SHARE_DATA_CONSENT", "granted": True}],
            "partner_config_override": {"return_url": seller.return_url},
        }
        if seller.email:
            referral_data["email"] = seller.email

        response = await self._request(
            "create_partner_referral",
            "POST",
            "/v2/customer/partner-referrals",
            body=referral_data,
        )

        links = response.get("links", [])
        action_url = None
        referral_id = None
        for link in links:
            if link.get("rel") == "action_url":
                action_url = link.get("href")
            elif link.get("rel") == "self" and link.get("href"):
                referral_id = link["href"].rstrip("/").rsplit("/", 1)[-1]

        return PartnerReferral(
            partner_referral_id=referral_id,
            action_url=action_url,
            links=links,
            raw=response,
        )

    async def get_merchant_status(self, merchant_id: str) -> dict[str, Any]:
        if not self.config.partner_id:
            raise CredentialsMissingError("PAYPAL_PARTNER_ID is not configured")
        return await self._request(
            "get_merchant_status",
            "GET",
            f"/v1/customer/partners/{self.config.partner_id}/merchant-integrations/{merchant_id}",
        )

    @staticmethod
    def derive_seller_issues(status: dict[str, Any]) -> list[SellerIssue]:
        """Map a merchant-integration payload to readiness issues."""
        issues = []
        if not status.get("primary_email_confirmed", False):
            issues.append(SellerIssue(
                code=SellerIssueCode.EMAIL_NOT_CONFIRMED,
                message="Please confirm your email address with PayPal",
            ))
        if not status.get("payments_receivable", False):
            issues.append(SellerIssue(
                code=SellerIssueCode.CANNOT_RECEIVE_PAYMENTS,
                message="Your PayPal account is restricted from receiving payments",
            ))
        if not status.get("oauth_integrations"):
            issues.append(SellerIssue(
                code=SellerIssueCode.NO_OAUTH_PERMISSIONS,
                message="Platform permissions were not granted during PayPal onboarding",
            ))
        return issues

    async def check_seller_status(self, merchant_id: str) -> SellerStatus:
        try:
            status = await self.get_merchant_status(merchant_id)
        except PaymentGatewayError as e:
            logger.warning(f"Seller status check failed for merchant {merchant_id}: {e.message}")
            return SellerStatus(
                merchant_id=merchant_id,
                issues=[SellerIssue(
                    code=SellerIssueCode.STATUS_CHECK_FAILED,
                    message="Unable to verify PayPal account status",
                )],
                raw={"error": e.to_dict()},
            )

        return SellerStatus(
            merchant_id=merchant_id,
            issues=self.derive_seller_issues(status),
            raw=status,
        )

    async def validate_credentials(self) -> ValidationResult:
        try:
            await self.get_access_token()
        except PaymentGatewayError as e:
            return ValidationResult(
                is_valid=False,
                message=f"Invalid PayPal credentials: {e.message}",
                details=e.to_dict(),
            )
        return ValidationResult(
            is_valid=True,
            message="PayPal credentials are valid",
            details={"mode": self.mode},
        )
