"""Payments module.

Transaction lifecycle for bookings: checkout, capture, provider decision,
escrow, payout, refund and the scheduled sweeps.
"""

from partyrent.modules.payments.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    PaymentFlow,
    PayoutStatus,
    Transaction,
    TransactionStatus,
    can_transition,
)
from partyrent.modules.payments.service import (
    BookingDetails,
    PaymentOutcome,
    PaymentService,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "PaymentFlow",
    "PayoutStatus",
    "Transaction",
    "TransactionStatus",
    "can_transition",
    "BookingDetails",
    "PaymentOutcome",
    "PaymentService",
]
