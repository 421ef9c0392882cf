"""Payment orchestration errors."""

from typing import Any, Iterable, Optional

from partyrent.core.exceptions import NotFoundError, PaymentError


class TransactionNotFoundError(NotFoundError):
    """No transaction for the given id or order id."""


class InvalidStateError(PaymentError):
    """Requested transition is not allowed from the transaction's current status."""

    code = "INVALID_STATE"
    status_code = 409

    def __init__(
        self,
        message: str,
        expected: Iterable[Any] = (),
        actual: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.expected = sorted(getattr(s, "value", s) for s in expected)
        self.actual = actual
        merged = dict(details or {})
        merged.update({"expected": self.expected, "actual": actual})
        super().__init__(message, details=merged)


class PaymentCaptureError(PaymentError):
    """The gateway did not confirm the capture. Transaction left as it was."""

    code = "CAPTURE_FAILED"
    status_code = 402


class MissingPaymentError(PaymentError):
    """Transaction has no gateway order to act on."""

    code = "MISSING_PAYMENT"
    status_code = 409


class DuplicateTransactionError(PaymentError):
    """The offer already has a live transaction."""

    code = "DUPLICATE_TRANSACTION"
    status_code = 409


class ProviderPaymentNotConfiguredError(PaymentError):
    """Provider cannot be paid: no connected account and no payout email."""

    code = "PROVIDER_PAYMENT_NOT_CONFIGURED"
    status_code = 400


class PaymentReconciliationError(PaymentError):
    """Captured amount differs from what the transaction expected."""

    code = "AMOUNT_MISMATCH"
    status_code = 409


class PaymentNotApprovedError(PaymentError):
    """The client has not approved the gateway order yet."""

    code = "PAYMENT_NOT_APPROVED"
    status_code = 409
