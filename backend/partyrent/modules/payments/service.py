"""Payment orchestration for bookings.

Drives a transaction through its lifecycle:

- Checkout: create the offer and transaction, then the gateway order
  (marketplace split when the provider's connected account is eligible,
  regular otherwise)
- Authorization: the client approved the order; the provider reviews it
- Capture and provider acceptance, escrow, release and payout
- Decline, cancel and refund
- Sweeps for due escrows and expired provider reviews

Gateway calls come first and status changes second, so a failed money step
never leaves the transaction in a state that claims the money moved. When the
money step succeeded but follow-up work failed, the operation returns a
degraded ``PaymentOutcome`` instead of raising.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.config import settings
from partyrent.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    PaymentError,
    ValidationError,
)
from partyrent.core.logging import log_error, log_info
from partyrent.core.metrics import ESCROW_RELEASES_TOTAL
from partyrent.core.security import CurrentUser
from partyrent.modules.accounts.models import Provider
from partyrent.modules.accounts.repository import ProviderRepository
from partyrent.modules.booking.models import Offer, OfferStatus
from partyrent.modules.booking.repository import BookingRepository
from partyrent.modules.fees.calculator import calculate_commission, format_amount
from partyrent.modules.fees.service import FeeSettingsService
from partyrent.modules.payment_gateway import (
    CaptureResult,
    GatewayOrder,
    GatewayTimeoutError,
    OrderMetadata,
    PaymentGatewayError,
    PaymentGatewayInterface,
    get_payment_gateway,
)
from partyrent.modules.payments.exceptions import (
    DuplicateTransactionError,
    InvalidStateError,
    MissingPaymentError,
    PaymentCaptureError,
    PaymentNotApprovedError,
    PaymentReconciliationError,
    ProviderPaymentNotConfiguredError,
    TransactionNotFoundError,
)
from partyrent.modules.payments.models import (
    CAPTURED_STATUSES,
    PaymentFlow,
    TERMINAL_STATUSES,
    PayoutStatus,
    Transaction,
    TransactionStatus,
)
from partyrent.modules.payments.notifications import TransactionNotifier
from partyrent.modules.payments.repository import TransactionRepository

logger = logging.getLogger(__name__)

S = TransactionStatus

# Order status the client's approval leaves behind
ORDER_APPROVED = "APPROVED"
ORDER_COMPLETED = "COMPLETED"

DISBURSEMENT_DELAYED = "DELAYED"
DISBURSEMENT_INSTANT = "INSTANT"

# Statuses in which the client may still walk away on their own
CLIENT_CANCELLABLE = frozenset({S.PENDING, S.PENDING_PAYMENT, S.PROVIDER_REVIEW})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BookingDetails:
    """What the client submits at checkout."""
    service_id: uuid.UUID
    booking_date: datetime
    hours: int
    address: Optional[str] = None
    comments: Optional[str] = None
    contact_phone: Optional[str] = None
    guest_count: Optional[int] = None
    payment_method: Optional[str] = None
    offer_id: Optional[uuid.UUID] = None


@dataclass
class PaymentOutcome:
    """Result of a payment operation.

    ``warnings`` lists follow-up work that failed after the money step
    succeeded; such an outcome is ``degraded`` but still a success.
    """
    transaction: Transaction
    order: Optional[GatewayOrder] = None
    capture: Optional[CaptureResult] = None
    message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


class PaymentService:
    """Orchestrates gateway calls, status transitions and notifications."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: Optional[PaymentGatewayInterface] = None,
        notifier: Optional[TransactionNotifier] = None,
        fee_service: Optional[FeeSettingsService] = None,
    ):
        self.session = session
        self.gateway = gateway or get_payment_gateway()
        self.notifier = notifier or TransactionNotifier(session)
        self.fee_service = fee_service or FeeSettingsService(session)
        self.transactions = TransactionRepository(session)
        self.bookings = BookingRepository(session)
        self.providers = ProviderRepository(session)

    # ==================== Lookups ====================

    async def _context(self, transaction: Transaction) -> tuple[Offer, Optional[Provider]]:
        offer = await self.bookings.get_offer(transaction.offer_id)
        if offer is None:
            raise NotFoundError(f"Offer {transaction.offer_id} not found")
        provider = await self.providers.get_by_id(offer.provider_id)
        return offer, provider

    async def _get_by_order(self, order_id: str) -> Transaction:
        transaction = await self.transactions.get_by_payment_intent(order_id)
        if transaction is None:
            raise TransactionNotFoundError(f"No transaction for order {order_id}")
        return transaction

    @staticmethod
    def _is_provider(actor: CurrentUser, provider: Optional[Provider]) -> bool:
        return provider is not None and provider.user_id == actor.id

    @staticmethod
    def _require_status(transaction: Transaction, *expected: TransactionStatus) -> None:
        if transaction.status_enum not in expected:
            raise InvalidStateError(
                f"Transaction {transaction.id} is {transaction.status}",
                expected=expected,
                actual=transaction.status,
            )

    async def get_transaction(self, transaction_id: uuid.UUID, actor: CurrentUser) -> Transaction:
        """Return a transaction visible to its client, its provider or an admin."""
        transaction = await self.transactions.get_or_raise(transaction_id)
        if actor.is_admin:
            return transaction
        offer, provider = await self._context(transaction)
        if offer.client_id != actor.id and not self._is_provider(actor, provider):
            raise ForbiddenError("You cannot view this transaction")
        return transaction

    # ==================== Checkout ====================

    async def create_checkout(self, client_id: uuid.UUID, booking: BookingDetails) -> PaymentOutcome:
        """Create (or resume) the client's booking payment.

        A repeated request for the same booking returns the order created the
        first time instead of a second one.

        Raises:
            NotFoundError: Unknown or inactive service, or unknown offer
            ValidationError: Invalid booking details
            ProviderPaymentNotConfiguredError: Provider cannot be paid at all
            DuplicateTransactionError: The booking already progressed past checkout
        """
        if booking.hours < 1:
            raise ValidationError("hours must be at least 1", details={"hours": booking.hours})

        service = await self.bookings.get_service(booking.service_id)
        if service is None or not service.is_active:
            raise NotFoundError(f"Service {booking.service_id} not found")

        provider = await self.providers.get_by_id(service.provider_id)
        if provider is None:
            raise NotFoundError(f"Provider for service {service.id} not found")
        if not provider.is_marketplace_eligible() and not provider.paypal_email:
            raise ProviderPaymentNotConfiguredError(
                "This provider cannot receive payments yet",
                details={"provider_id": str(provider.id)},
            )

        if booking.offer_id is not None:
            offer = await self.bookings.get_offer(booking.offer_id)
            if offer is None:
                raise NotFoundError(f"Offer {booking.offer_id} not found")
            if offer.client_id != client_id:
                raise ForbiddenError("This offer belongs to another client")
            existing = await self.transactions.get_active_for_offer(offer.id)
        else:
            offer = None
            existing = await self.transactions.find_live_booking(
                client_id, service.id, booking.booking_date
            )

        if existing is not None:
            return await self._resume_checkout(existing)

        if offer is None:
            offer = await self.bookings.create_offer(
                client_id=client_id,
                provider_id=provider.id,
                service_id=service.id,
                price_cents=service.price_cents * booking.hours,
                booking_date=booking.booking_date,
                hours=booking.hours,
                address=booking.address,
                comments=booking.comments,
                contact_phone=booking.contact_phone,
                guest_count=booking.guest_count,
                payment_method=booking.payment_method,
            )

        transaction = await self.transactions.create(
            offer.id, offer.price_cents, settings.PAYMENT_CURRENCY
        )
        log_info(
            logger,
            f"Transaction {transaction.id} created for offer {offer.id}",
            transaction_id=str(transaction.id),
        )
        metadata = self._default_metadata(transaction, service.name)
        return await self.create_marketplace_payment_order(transaction.id, metadata)

    async def _resume_checkout(self, transaction: Transaction) -> PaymentOutcome:
        if transaction.status_enum == S.PENDING:
            # Order creation failed earlier; the idempotency key makes this safe
            return await self.create_marketplace_payment_order(transaction.id)
        if transaction.status_enum == S.PENDING_PAYMENT and transaction.payment_intent_id:
            raw = transaction.gateway_response or {}
            order = GatewayOrder(
                id=transaction.payment_intent_id,
                status=raw.get("status", ""),
                links=raw.get("links", []),
                raw=raw,
            )
            return PaymentOutcome(transaction=transaction, order=order)
        raise DuplicateTransactionError(
            "Duplicate transaction detected for this booking",
            details={"transaction_id": str(transaction.id), "status": transaction.status},
        )

    def _default_metadata(self, transaction: Transaction, description: str = "") -> OrderMetadata:
        base_url = settings.APP_BASE_URL.rstrip("/")
        return OrderMetadata(
            reference_id=str(transaction.offer_id),
            description=(description or "Party rental booking")[:127],
            invoice_id=f"TX-{transaction.id}",
            custom_id=str(transaction.id),
            return_url=f"{base_url}/payments/success?transactionId={transaction.id}",
            cancel_url=f"{base_url}/payments/cancel?transactionId={transaction.id}",
        )

    # ==================== Order creation ====================

    async def create_marketplace_payment_order(
        self,
        transaction_id: uuid.UUID,
        metadata: Optional[OrderMetadata] = None,
    ) -> PaymentOutcome:
        """Create a split order paying the provider's connected account.

        Falls back to :meth:`create_payment_order` when the provider is not
        eligible for marketplace payments.

        Raises:
            InvalidStateError: Transaction is not PENDING
            PaymentGatewayError: The gateway rejected the order
        """
        transaction = await self.transactions.get_or_raise(transaction_id)
        self._require_status(transaction, S.PENDING)

        _, provider = await self._context(transaction)
        if provider is None or not provider.is_marketplace_eligible():
            logger.info(
                f"Provider not eligible for marketplace payments, "
                f"using regular flow for transaction {transaction.id}"
            )
            return await self.create_payment_order(transaction_id, metadata)

        fees = await self.fee_service.get_fee_settings()
        breakdown = calculate_commission(
            transaction.amount_cents, fees.client_fee_percent, fees.provider_fee_percent
        )
        disbursement_mode = (
            DISBURSEMENT_DELAYED if settings.ESCROW_ENABLED else DISBURSEMENT_INSTANT
        )

        order = await self.gateway.create_marketplace_order(
            total_cents=breakdown.total_client_pays_cents,
            provider_amount_cents=breakdown.provider_receives_cents,
            platform_fee_cents=breakdown.platform_fee_cents,
            provider_merchant_id=provider.paypal_merchant_id,
            currency=transaction.currency,
            metadata=metadata or self._default_metadata(transaction),
            idempotency_key=f"order-{transaction.id}",
            disbursement_mode=disbursement_mode,
        )

        transaction = await self.transactions.transition(
            transaction,
            S.PENDING_PAYMENT,
            payment_flow=PaymentFlow.MARKETPLACE.value,
            payment_intent_id=order.id,
            provider_merchant_id=provider.paypal_merchant_id,
            payout_status=(
                PayoutStatus.PENDING.value
                if disbursement_mode == DISBURSEMENT_DELAYED
                else PayoutStatus.NOT_REQUIRED.value
            ),
            gateway_response=order.raw,
            **self._snapshot(breakdown),
        )
        logger.info(
            f"Marketplace order {order.id} created for transaction {transaction.id} "
            f"({disbursement_mode} disbursement)"
        )
        return PaymentOutcome(transaction=transaction, order=order)

    async def create_payment_order(
        self,
        transaction_id: uuid.UUID,
        metadata: Optional[OrderMetadata] = None,
    ) -> PaymentOutcome:
        """Create a regular order; the provider is paid out after release.

        Raises:
            InvalidStateError: Transaction is not PENDING
            PaymentGatewayError: The gateway rejected the order
        """
        transaction = await self.transactions.get_or_raise(transaction_id)
        self._require_status(transaction, S.PENDING)

        fees = await self.fee_service.get_fee_settings()
        breakdown = calculate_commission(
            transaction.amount_cents, fees.client_fee_percent, fees.provider_fee_percent
        )

        order = await self.gateway.create_order(
            amount_cents=breakdown.total_client_pays_cents,
            currency=transaction.currency,
            metadata=metadata or self._default_metadata(transaction),
            idempotency_key=f"order-{transaction.id}",
        )

        transaction = await self.transactions.transition(
            transaction,
            S.PENDING_PAYMENT,
            payment_flow=PaymentFlow.REGULAR.value,
            payment_intent_id=order.id,
            payout_status=PayoutStatus.PENDING.value,
            gateway_response=order.raw,
            **self._snapshot(breakdown),
        )
        logger.info(f"Regular order {order.id} created for transaction {transaction.id}")
        return PaymentOutcome(transaction=transaction, order=order)

    @staticmethod
    def _snapshot(breakdown) -> dict:
        return {
            "client_fee_percent": breakdown.client_fee_percent,
            "provider_fee_percent": breakdown.provider_fee_percent,
            "client_fee_cents": breakdown.client_fee_cents,
            "total_client_pays_cents": breakdown.total_client_pays_cents,
            "provider_commission_cents": breakdown.provider_commission_cents,
            "provider_receives_cents": breakdown.provider_receives_cents,
            "platform_fee_cents": breakdown.platform_fee_cents,
        }

    # ==================== Authorization and capture ====================

    async def authorize_payment(self, order_id: str, client_id: uuid.UUID) -> PaymentOutcome:
        """Record the client's approval and hand the booking to the provider.

        Raises:
            ForbiddenError: Caller is not the booking's client
            PaymentNotApprovedError: The gateway does not report the order approved
            InvalidStateError: Transaction is not awaiting payment
        """
        transaction = await self._get_by_order(order_id)
        offer, provider = await self._context(transaction)
        if offer.client_id != client_id:
            raise ForbiddenError("This payment belongs to another client")

        if transaction.status_enum == S.PROVIDER_REVIEW:
            return PaymentOutcome(transaction=transaction, message="Payment already authorized")
        self._require_status(transaction, S.PENDING_PAYMENT)

        order = await self.gateway.get_order(order_id)
        if order.status != ORDER_APPROVED:
            raise PaymentNotApprovedError(
                f"Order {order_id} is {order.status or 'UNKNOWN'}, not approved",
                details={"order_status": order.status},
            )

        transaction = await self.transactions.transition(
            transaction,
            S.PROVIDER_REVIEW,
            review_deadline=_utcnow() + timedelta(hours=settings.PROVIDER_REVIEW_HOURS),
            gateway_response=order.raw,
        )

        warnings = []
        if provider is not None:
            warning = await self.notifier.notify_new_request(provider.user_id, transaction)
            if warning:
                warnings.append(warning)
        return PaymentOutcome(
            transaction=transaction,
            order=order,
            message="Payment authorized. The provider has been asked to confirm.",
            warnings=warnings,
        )

    async def capture_payment(
        self, order_id: str, client_id: Optional[uuid.UUID] = None
    ) -> PaymentOutcome:
        """Capture the client's approved order.

        When ``client_id`` is given the order must belong to that client.

        Raises:
            ForbiddenError: The order belongs to another client
            InvalidStateError: Transaction is not awaiting payment
            PaymentCaptureError: Gateway did not confirm the capture; status unchanged
            PaymentReconciliationError: Captured amount differs from the expected total
        """
        transaction = await self._get_by_order(order_id)
        offer, provider = await self._context(transaction)
        if client_id is not None and offer.client_id != client_id:
            raise ForbiddenError("This payment belongs to another client")

        if transaction.status_enum == S.PAID_PENDING_PROVIDER_ACCEPTANCE:
            return PaymentOutcome(transaction=transaction, message="Payment already captured")
        self._require_status(transaction, S.PENDING_PAYMENT)

        capture = await self._capture(transaction)
        await self._reconcile(transaction, capture)

        transaction = await self.transactions.transition(
            transaction,
            S.PAID_PENDING_PROVIDER_ACCEPTANCE,
            payment_method_id=capture.capture_id,
            captured_amount_cents=capture.amount_cents,
            gateway_response=capture.raw,
        )
        logger.info(f"Transaction {transaction.id} captured as {capture.capture_id}")

        warnings = []
        if provider is not None:
            warning = await self.notifier.notify_payment_received(provider.user_id, transaction)
            if warning:
                warnings.append(warning)
        return PaymentOutcome(transaction=transaction, capture=capture, warnings=warnings)

    async def _capture(self, transaction: Transaction) -> CaptureResult:
        order_id = transaction.payment_intent_id
        idempotency_key = f"capture-{transaction.id}"
        try:
            return await self.gateway.capture_order(order_id, idempotency_key=idempotency_key)
        except GatewayTimeoutError as timeout:
            # Outcome unknown: ask the gateway whether the capture happened
            try:
                order = await self.gateway.get_order(order_id)
            except PaymentGatewayError:
                raise timeout
            if order.status != ORDER_COMPLETED:
                raise timeout
            logger.info(f"Order {order_id} captured despite timeout, replaying capture")
            try:
                return await self.gateway.capture_order(order_id, idempotency_key=idempotency_key)
            except PaymentGatewayError as e:
                raise self._capture_error(order_id, e) from e
        except PaymentGatewayError as e:
            raise self._capture_error(order_id, e) from e

    @staticmethod
    def _capture_error(order_id: str, error: PaymentGatewayError) -> PaymentCaptureError:
        return PaymentCaptureError(
            f"Capture of order {order_id} failed: {error.message}",
            details={
                "upstream_status": error.upstream_status,
                "upstream": error.details,
            },
        )

    async def _reconcile(self, transaction: Transaction, capture: CaptureResult) -> None:
        """Check the capture against the snapshotted breakdown.

        The expected total is recomputed from the stored service amount and
        fee percentages, never from the captured amount.
        """
        expected = calculate_commission(
            transaction.amount_cents,
            transaction.client_fee_percent,
            transaction.provider_fee_percent,
        ).total_client_pays_cents
        currency_ok = not capture.currency or capture.currency.upper() == transaction.currency.upper()
        if capture.amount_cents == expected and currency_ok:
            return

        message = (
            f"Captured {capture.currency} {format_amount(capture.amount_cents)} "
            f"but expected {transaction.currency} {format_amount(expected)}"
        )
        log_error(
            logger,
            f"Amount mismatch on transaction {transaction.id}: {message}",
            transaction_id=str(transaction.id),
            capture_id=capture.capture_id,
        )
        # Record the capture on the current row even if its status moved meanwhile
        transaction = await self.transactions.get_or_raise(transaction.id)
        await self.transactions.update_fields(
            transaction,
            payment_method_id=capture.capture_id,
            captured_amount_cents=capture.amount_cents,
            last_error=message,
            gateway_response=capture.raw,
        )
        await self.notifier.alert_admins("Payment amount mismatch", message, transaction)
        await self.session.commit()
        raise PaymentReconciliationError(
            message,
            details={
                "transaction_id": str(transaction.id),
                "expected_cents": expected,
                "captured_cents": capture.amount_cents,
                "capture_id": capture.capture_id,
            },
        )

    # ==================== Provider decision ====================

    async def handle_provider_acceptance(self, transaction_id: uuid.UUID) -> PaymentOutcome:
        """Complete a captured transaction the provider accepted.

        Pays the provider (payout for the regular flow, fund release for a
        delayed marketplace capture). A failed payout degrades the outcome.

        Raises:
            InvalidStateError: Transaction is not PAID_PENDING_PROVIDER_ACCEPTANCE
        """
        transaction = await self.transactions.get_or_raise(transaction_id)
        self._require_status(transaction, S.PAID_PENDING_PROVIDER_ACCEPTANCE)

        transaction = await self.transactions.transition(
            transaction, S.COMPLETED, released_at=_utcnow()
        )
        offer, provider = await self._context(transaction)
        await self.bookings.set_offer_status(offer.id, OfferStatus.ACCEPTED.value)

        warnings = await self._disburse(transaction, provider)
        warning = await self.notifier.notify_approved(offer.client_id, transaction)
        if warning:
            warnings.append(warning)
        if provider is not None:
            warning = await self.notifier.notify_completed(provider.user_id, transaction)
            if warning:
                warnings.append(warning)

        logger.info(f"Transaction {transaction.id} completed on provider acceptance")
        return PaymentOutcome(
            transaction=transaction,
            message="Booking accepted and payment released to the provider.",
            warnings=warnings,
        )

    async def approve_transaction(self, transaction_id: uuid.UUID, actor: CurrentUser) -> PaymentOutcome:
        """Provider (or admin) approves a booking.

        From PROVIDER_REVIEW the held order is captured and the money goes to
        escrow. From PAID_PENDING_PROVIDER_ACCEPTANCE it goes to escrow
        directly, or completes when escrow is disabled.

        Raises:
            ForbiddenError: Caller is neither the offer's provider nor an admin
            InvalidStateError: Transaction is not awaiting the provider
            MissingPaymentError: Transaction has no gateway order
            PaymentCaptureError: Capture failed; transaction unchanged
        """
        transaction = await self.transactions.get_or_raise(transaction_id)
        offer, provider = await self._context(transaction)
        if not actor.is_admin and not self._is_provider(actor, provider):
            raise ForbiddenError("Only the provider or an admin can approve this booking")

        self._require_status(transaction, S.PROVIDER_REVIEW, S.PAID_PENDING_PROVIDER_ACCEPTANCE)
        if not transaction.payment_intent_id:
            raise MissingPaymentError(f"Transaction {transaction.id} has no payment to capture")

        capture = None
        if transaction.status_enum == S.PROVIDER_REVIEW:
            capture = await self._capture(transaction)
            await self._reconcile(transaction, capture)
        elif not settings.ESCROW_ENABLED:
            return await self.handle_provider_acceptance(transaction.id)

        hold_hours = settings.ESCROW_HOLD_HOURS if settings.ESCROW_ENABLED else 0
        now = _utcnow()
        values = {"escrow_start_time": now, "escrow_end_time": now + timedelta(hours=hold_hours)}
        if capture is not None:
            values.update(
                payment_method_id=capture.capture_id,
                captured_amount_cents=capture.amount_cents,
                gateway_response=capture.raw,
            )

        warnings = []
        try:
            transaction = await self.transactions.transition(transaction, S.ESCROW, **values)
        except PaymentError as e:
            # Money is captured; the escrow bookkeeping is what failed
            warnings.append(f"Escrow could not be recorded: {e.message}")
            await self._report_degraded(
                transaction,
                "Escrow bookkeeping failed after capture",
                e,
                capture_id=capture.capture_id if capture else None,
            )
            transaction = await self.transactions.get_or_raise(transaction.id)
            if capture is None:
                return PaymentOutcome(
                    transaction=transaction,
                    message="Escrow could not be recorded. Support has been notified.",
                    warnings=warnings,
                )

            transaction = await self.transactions.update_fields(
                transaction,
                payment_method_id=capture.capture_id,
                captured_amount_cents=capture.amount_cents,
                gateway_response=capture.raw,
                last_error=e.message,
            )
            message = "Payment captured, but escrow could not be recorded. Support has been notified."
            if transaction.status_enum in (S.CANCELLED, S.REJECTED):
                # Booking was stopped while we captured; give the money back
                transaction, refunded, refund_warnings = await self._refund_after_stop(
                    transaction, "Booking stopped before the capture was recorded"
                )
                warnings.extend(refund_warnings)
                if refunded:
                    message = "The booking was stopped before approval completed. The payment was refunded."
            return PaymentOutcome(
                transaction=transaction,
                capture=capture,
                message=message,
                warnings=warnings,
            )

        await self.bookings.set_offer_status(offer.id, OfferStatus.ACCEPTED.value)
        warning = await self.notifier.notify_approved(offer.client_id, transaction)
        if warning:
            warnings.append(warning)

        if transaction.auto_release:
            message = (
                "Payment is held in escrow until "
                f"{transaction.escrow_end_time.isoformat()} and then released automatically."
            )
        else:
            message = (
                "Payment is held in escrow. The provider has no connected payout account, "
                "so an admin will release the funds manually."
            )
        logger.info(f"Transaction {transaction.id} approved into escrow")
        return PaymentOutcome(
            transaction=transaction, capture=capture, message=message, warnings=warnings
        )

    async def decline_transaction(
        self,
        transaction_id: uuid.UUID,
        actor: CurrentUser,
        reason: Optional[str] = None,
    ) -> PaymentOutcome:
        """Provider (or admin) declines a booking; captured money is refunded.

        Raises:
            ForbiddenError: Caller is neither the offer's provider nor an admin
            InvalidStateError: Transaction is not awaiting the provider
        """
        transaction = await self.transactions.get_or_raise(transaction_id)
        offer, provider = await self._context(transaction)
        if not actor.is_admin and not self._is_provider(actor, provider):
            raise ForbiddenError("Only the provider or an admin can decline this booking")
        self._require_status(transaction, S.PROVIDER_REVIEW, S.PAID_PENDING_PROVIDER_ACCEPTANCE)

        captured = transaction.status_enum in CAPTURED_STATUSES
        transaction = await self.transactions.transition(
            transaction, S.REJECTED, last_error=reason
        )
        await self.bookings.set_offer_status(offer.id, OfferStatus.REJECTED.value)

        warnings = []
        refunded = False
        if captured:
            transaction, refunded, refund_warnings = await self._refund_after_stop(
                transaction, reason or "Booking declined by provider"
            )
            warnings.extend(refund_warnings)

        warning = await self.notifier.notify_declined(offer.client_id, transaction, refunded)
        if warning:
            warnings.append(warning)
        logger.info(f"Transaction {transaction.id} declined (refunded={refunded})")
        return PaymentOutcome(transaction=transaction, message="Booking declined.", warnings=warnings)

    # ==================== Cancel, release, refund ====================

    async def cancel_transaction(self, transaction_id: uuid.UUID, actor: CurrentUser) -> PaymentOutcome:
        """Cancel a live booking.

        The client may cancel until the provider has decided; an admin may
        cancel any live transaction. Captured money is refunded.

        Raises:
            ForbiddenError: Caller may not cancel this booking
            InvalidStateError: Transaction is terminal, or past the client's window
        """
        transaction = await self.transactions.get_or_raise(transaction_id)
        offer, provider = await self._context(transaction)
        is_client = offer.client_id == actor.id
        if not actor.is_admin and not is_client:
            raise ForbiddenError("Only the client or an admin can cancel this booking")

        if actor.is_admin:
            if transaction.is_terminal:
                raise InvalidStateError(
                    f"Transaction {transaction.id} is already {transaction.status}",
                    expected=[s for s in S if s not in TERMINAL_STATUSES],
                    actual=transaction.status,
                )
        else:
            self._require_status(transaction, *CLIENT_CANCELLABLE)

        captured = transaction.status_enum in CAPTURED_STATUSES
        transaction = await self.transactions.transition(transaction, S.CANCELLED)
        await self.bookings.set_offer_status(offer.id, OfferStatus.CANCELLED.value)

        warnings = []
        if captured:
            transaction, _, refund_warnings = await self._refund_after_stop(
                transaction, "Booking cancelled"
            )
            warnings.extend(refund_warnings)

        recipients = [offer.client_id]
        if provider is not None:
            recipients.append(provider.user_id)
        warnings.extend(await self.notifier.notify_cancelled(recipients, transaction))
        logger.info(f"Transaction {transaction.id} cancelled by {actor.role}")
        return PaymentOutcome(transaction=transaction, message="Booking cancelled.", warnings=warnings)

    async def release_escrow(
        self,
        transaction_id: uuid.UUID,
        trigger: str = "admin",
    ) -> PaymentOutcome:
        """Complete an escrowed transaction and pay the provider.

        Raises:
            InvalidStateError: Transaction is not in ESCROW
        """
        transaction = await self.transactions.get_or_raise(transaction_id)
        try:
            self._require_status(transaction, S.ESCROW)
            transaction = await self.transactions.transition(
                transaction, S.COMPLETED, released_at=_utcnow()
            )
        except PaymentError:
            ESCROW_RELEASES_TOTAL.labels(trigger=trigger, outcome="failed").inc()
            raise

        _, provider = await self._context(transaction)
        warnings = await self._disburse(transaction, provider)
        if provider is not None:
            warning = await self.notifier.notify_completed(provider.user_id, transaction)
            if warning:
                warnings.append(warning)

        ESCROW_RELEASES_TOTAL.labels(
            trigger=trigger, outcome="degraded" if warnings else "released"
        ).inc()
        logger.info(f"Escrow released for transaction {transaction.id} ({trigger})")
        return PaymentOutcome(
            transaction=transaction, message="Escrow released.", warnings=warnings
        )

    async def refund_transaction(
        self,
        transaction_id: uuid.UUID,
        note: Optional[str] = None,
    ) -> PaymentOutcome:
        """Fully refund a stopped or completed transaction. Admin only.

        Raises:
            InvalidStateError: Transaction is not COMPLETED, CANCELLED or REJECTED
            MissingPaymentError: Nothing was captured
            PaymentGatewayError: The gateway rejected the refund
        """
        transaction = await self.transactions.get_or_raise(transaction_id)
        self._require_status(transaction, S.COMPLETED, S.CANCELLED, S.REJECTED)
        if not transaction.payment_method_id:
            raise MissingPaymentError(f"Transaction {transaction.id} has no capture to refund")

        transaction = await self._refund(transaction, note or "Refund issued by platform")
        offer, _ = await self._context(transaction)
        warnings = []
        warning = await self.notifier.notify_refunded(offer.client_id, transaction)
        if warning:
            warnings.append(warning)
        return PaymentOutcome(transaction=transaction, message="Payment refunded.", warnings=warnings)

    async def _refund(self, transaction: Transaction, note: str) -> Transaction:
        refund = await self.gateway.refund_capture(
            transaction.payment_method_id,
            amount_cents=transaction.captured_amount_cents or transaction.total_client_pays_cents,
            currency=transaction.currency,
            note=note,
            idempotency_key=f"refund-{transaction.id}",
            payee_merchant_id=(
                transaction.provider_merchant_id if transaction.is_marketplace else None
            ),
        )
        transaction = await self.transactions.transition(
            transaction, S.REFUNDED, refund_id=refund.refund_id
        )
        logger.info(f"Transaction {transaction.id} refunded as {refund.refund_id}")
        return transaction

    async def _refund_after_stop(
        self, transaction: Transaction, note: str
    ) -> tuple[Transaction, bool, list[str]]:
        """Refund captured money of a rejected or cancelled transaction.

        The stop itself already happened, so a failed refund only degrades it.
        """
        try:
            transaction = await self._refund(transaction, note)
        except PaymentError as e:
            await self._report_degraded(transaction, "Refund failed", e)
            transaction = await self.transactions.get_or_raise(transaction.id)
            return transaction, False, [f"Refund failed: {e.message}"]
        return transaction, True, []

    async def _disburse(self, transaction: Transaction, provider: Optional[Provider]) -> list[str]:
        """Pay the provider's share after completion. Returns warnings."""
        if transaction.payout_status != PayoutStatus.PENDING.value:
            return []

        try:
            if transaction.is_marketplace:
                await self.gateway.release_funds(transaction.payment_method_id)
                await self.transactions.update_fields(
                    transaction, payout_status=PayoutStatus.SENT.value
                )
            else:
                if provider is None or not provider.paypal_email:
                    raise ProviderPaymentNotConfiguredError(
                        "Provider has no payout email configured"
                    )
                payout = await self.gateway.create_payout(
                    receiver_email=provider.paypal_email,
                    amount_cents=transaction.provider_receives_cents,
                    currency=transaction.currency,
                    sender_batch_id=f"payout-{transaction.id}",
                    note=f"Payout for booking {transaction.offer_id}",
                )
                await self.transactions.update_fields(
                    transaction,
                    payout_status=PayoutStatus.SENT.value,
                    payout_batch_id=payout.payout_batch_id,
                )
        except PaymentError as e:
            await self._report_degraded(transaction, "Provider payout failed", e)
            await self.transactions.update_fields(
                transaction,
                payout_status=PayoutStatus.FAILED.value,
                last_error=e.message,
            )
            return [f"Provider payout failed: {e.message}"]
        return []

    async def _report_degraded(
        self,
        transaction: Transaction,
        summary: str,
        error: PaymentError,
        capture_id: Optional[str] = None,
    ) -> None:
        log_error(
            logger,
            f"{summary} for transaction {transaction.id}",
            error,
            transaction_id=str(transaction.id),
            error_code=error.code,
            capture_id=capture_id,
        )
        content = f"{summary} for transaction {transaction.id}: {error.message}"
        if capture_id:
            content += f" (capture {capture_id})"
        await self.notifier.alert_admins(summary, content, transaction)

    # ==================== Sweeps ====================

    async def release_due_escrows(self, now: Optional[datetime] = None, limit: int = 100) -> dict:
        """Release every auto-releasable escrow whose window has elapsed.

        Each transaction is committed on its own so one failure does not undo
        the others.
        """
        now = now or _utcnow()
        due_ids = [tx.id for tx in await self.transactions.list_due_escrows(now, limit)]
        summary = {"checked": len(due_ids), "released": 0, "degraded": 0, "failed": 0}

        for transaction_id in due_ids:
            try:
                outcome = await self.release_escrow(transaction_id, trigger="sweep")
                await self.session.commit()
            except PaymentError as e:
                await self.session.rollback()
                summary["failed"] += 1
                log_error(
                    logger,
                    f"Escrow sweep could not release transaction {transaction_id}",
                    e,
                    transaction_id=str(transaction_id),
                )
                continue
            summary["degraded" if outcome.degraded else "released"] += 1

        if due_ids:
            logger.info(f"Escrow sweep finished: {summary}")
        return summary

    async def expire_provider_reviews(self, now: Optional[datetime] = None, limit: int = 100) -> dict:
        """Cancel bookings whose provider did not decide before the deadline.

        Nothing was captured in PROVIDER_REVIEW, so no refund is needed.
        """
        now = now or _utcnow()
        expired_ids = [tx.id for tx in await self.transactions.list_expired_reviews(now, limit)]
        summary = {"checked": len(expired_ids), "cancelled": 0, "failed": 0}

        for transaction_id in expired_ids:
            try:
                transaction = await self.transactions.get_or_raise(transaction_id)
                self._require_status(transaction, S.PROVIDER_REVIEW)
                transaction = await self.transactions.transition(
                    transaction, S.CANCELLED, last_error="Provider review deadline passed"
                )
                offer, provider = await self._context(transaction)
                await self.bookings.set_offer_status(offer.id, OfferStatus.CANCELLED.value)
                if provider is not None:
                    await self.notifier.notify_review_expired(
                        offer.client_id, provider.user_id, transaction
                    )
                await self.session.commit()
            except PaymentError as e:
                await self.session.rollback()
                summary["failed"] += 1
                log_error(
                    logger,
                    f"Review sweep could not expire transaction {transaction_id}",
                    e,
                    transaction_id=str(transaction_id),
                )
                continue
            summary["cancelled"] += 1

        if expired_ids:
            logger.info(f"Provider review sweep finished: {summary}")
        return summary
