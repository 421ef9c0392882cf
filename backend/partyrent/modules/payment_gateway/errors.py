"""Payment gateway errors.

Upstream failures keep the HTTP status and body PayPal returned so they can
be inspected in logs and admin tooling.
"""

from typing import Any, Optional

from partyrent.core.exceptions import PaymentError


class PaymentGatewayError(PaymentError):
    """Base class for failures talking to the payment processor."""

    code = "GATEWAY_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        upstream_body: Any = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body
        merged = dict(details or {})
        if upstream_status is not None:
            merged.setdefault("upstream_status", upstream_status)
        if upstream_body is not None:
            merged.setdefault("upstream_body", upstream_body)
        super().__init__(message, details=merged)


class CredentialsMissingError(PaymentGatewayError):
    """Client id or secret is not configured for the active mode."""

    code = "PAYPAL_CREDENTIALS_MISSING"
    status_code = 503


class GatewayAuthError(PaymentGatewayError):
    """The OAuth client-credentials exchange was rejected."""

    code = "PAYPAL_AUTH_FAILED"


class OrderCreationError(PaymentGatewayError):
    code = "ORDER_CREATION_FAILED"


class CaptureError(PaymentGatewayError):
    """Capture rejected or finished in a non-success status. Not retryable."""

    code = "CAPTURE_FAILED"
    status_code = 402


class RefundError(PaymentGatewayError):
    code = "REFUND_FAILED"


class PayoutError(PaymentGatewayError):
    code = "PAYOUT_FAILED"


class GatewayTimeoutError(PaymentGatewayError):
    """No answer from the processor in time. The outcome is unknown; safe to retry
    with the same idempotency key."""

    code = "GATEWAY_TIMEOUT"
    status_code = 504
    retryable = True
