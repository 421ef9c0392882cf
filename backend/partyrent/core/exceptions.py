"""Application exception hierarchy.

Every error that reaches an API caller carries a stable machine-readable
``code``. Clients branch on the code, never on the message.
"""

from typing import Any, Optional


class PaymentError(Exception):
    """Base exception for all payment-domain errors."""

    code: str = "SERVER_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "success": False,
            "code": self.code,
            "error": self.message,
            "details": self.details,
        }


class UnauthorizedError(PaymentError):
    """Caller is not authenticated."""

    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(PaymentError):
    """Caller is authenticated but may not act on this resource."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(PaymentError):
    """Requested record does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class ValidationError(PaymentError):
    """Input rejected before any persistence happened."""

    code = "VALIDATION_ERROR"
    status_code = 400
