"""Transaction notification emitter.

Notifications are a side effect of status changes and never decide an
operation's outcome: each method returns None on success or a warning string
describing what could not be sent.
"""

import logging
import uuid
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.logging import log_error
from partyrent.modules.fees.calculator import format_amount
from partyrent.modules.notification.models import NotificationType
from partyrent.modules.notification.service import NotificationService
from partyrent.modules.payments.models import Transaction

logger = logging.getLogger(__name__)


def _money(cents: Optional[int], currency: str) -> str:
    return f"{currency} {format_amount(cents or 0)}"


class TransactionNotifier:
    """Best-effort notifications for transaction events."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.notification_service = NotificationService(session)

    async def _safe(self, description: str, send: Callable[[], Awaitable[object]]) -> Optional[str]:
        try:
            async with self.session.begin_nested():
                await send()
        except Exception as e:
            log_error(logger, f"Failed to send {description} notification", e)
            return f"{description} notification not sent: {e}"
        return None

    def _data(self, transaction: Transaction, **extra) -> dict:
        data = {"transactionId": str(transaction.id), "status": transaction.status}
        data.update(extra)
        return data

    async def notify_new_request(
        self, provider_user_id: uuid.UUID, transaction: Transaction
    ) -> Optional[str]:
        """Tell the provider a client is waiting for their decision."""
        return await self._safe(
            "new request",
            lambda: self.notification_service.create(
                provider_user_id,
                "New Transaction Request",
                "You have a new booking request for "
                f"{_money(transaction.amount_cents, transaction.currency)}. "
                "Please review and approve or decline it.",
                NotificationType.SYSTEM,
                self._data(transaction, reviewDeadline=(
                    transaction.review_deadline.isoformat()
                    if transaction.review_deadline else None
                )),
            ),
        )

    async def notify_payment_received(
        self, provider_user_id: uuid.UUID, transaction: Transaction
    ) -> Optional[str]:
        return await self._safe(
            "payment received",
            lambda: self.notification_service.create(
                provider_user_id,
                "Payment Received - Action Required",
                "A client paid "
                f"{_money(transaction.total_client_pays_cents, transaction.currency)} "
                "for your service. You will receive "
                f"{_money(transaction.provider_receives_cents, transaction.currency)} "
                "once you accept the booking.",
                NotificationType.PAYMENT,
                self._data(transaction),
            ),
        )

    async def notify_approved(self, client_id: uuid.UUID, transaction: Transaction) -> Optional[str]:
        content = "Your service request has been approved by the provider."
        if transaction.escrow_end_time:
            content += (
                " Your payment is held in escrow until "
                f"{transaction.escrow_end_time.strftime('%Y-%m-%d %H:%M')} UTC."
            )
        return await self._safe(
            "approval",
            lambda: self.notification_service.create(
                client_id,
                "Service Request Approved",
                content,
                NotificationType.PAYMENT,
                self._data(transaction),
            ),
        )

    async def notify_declined(
        self, client_id: uuid.UUID, transaction: Transaction, refunded: bool
    ) -> Optional[str]:
        content = "The provider declined your service request."
        if refunded:
            content += (
                f" Your payment of {_money(transaction.total_client_pays_cents, transaction.currency)}"
                " has been refunded."
            )
        return await self._safe(
            "decline",
            lambda: self.notification_service.create(
                client_id,
                "Service Request Declined",
                content,
                NotificationType.PAYMENT,
                self._data(transaction),
            ),
        )

    async def notify_completed(
        self, provider_user_id: uuid.UUID, transaction: Transaction
    ) -> Optional[str]:
        return await self._safe(
            "completion",
            lambda: self.notification_service.create(
                provider_user_id,
                "Payment Released",
                f"{_money(transaction.provider_receives_cents, transaction.currency)} "
                "has been released to you.",
                NotificationType.PAYMENT,
                self._data(transaction, payoutStatus=transaction.payout_status),
            ),
        )

    async def notify_refunded(self, client_id: uuid.UUID, transaction: Transaction) -> Optional[str]:
        return await self._safe(
            "refund",
            lambda: self.notification_service.create(
                client_id,
                "Payment Refunded",
                f"Your payment of {_money(transaction.total_client_pays_cents, transaction.currency)}"
                " has been refunded.",
                NotificationType.PAYMENT,
                self._data(transaction, refundId=transaction.refund_id),
            ),
        )

    async def notify_cancelled(self, user_ids: list[uuid.UUID], transaction: Transaction) -> list[str]:
        warnings = []
        for user_id in user_ids:
            warning = await self._safe(
                "cancellation",
                lambda user_id=user_id: self.notification_service.create(
                    user_id,
                    "Booking Cancelled",
                    "The booking has been cancelled.",
                    NotificationType.BOOKING,
                    self._data(transaction),
                ),
            )
            if warning:
                warnings.append(warning)
        return warnings

    async def notify_review_expired(
        self,
        client_id: uuid.UUID,
        provider_user_id: uuid.UUID,
        transaction: Transaction,
    ) -> list[str]:
        """Tell both parties the provider did not answer in time."""
        warnings = []
        for user_id, content in (
            (client_id, "The provider did not respond to your request in time. "
                        "Your booking was cancelled and you have not been charged."),
            (provider_user_id, "A booking request expired because it was not reviewed "
                               "before the deadline."),
        ):
            warning = await self._safe(
                "review expired",
                lambda user_id=user_id, content=content: self.notification_service.create(
                    user_id,
                    "Booking Request Expired",
                    content,
                    NotificationType.BOOKING,
                    self._data(transaction),
                ),
            )
            if warning:
                warnings.append(warning)
        return warnings

    async def alert_admins(
        self, title: str, content: str, transaction: Transaction
    ) -> Optional[str]:
        return await self._safe(
            "admin alert",
            lambda: self.notification_service.notify_admins(
                title, content, self._data(transaction)
            ),
        )
