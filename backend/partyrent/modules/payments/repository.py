"""Repository for transactions.

Status changes go through ``transition`` only: a conditional UPDATE keyed on
the status and version the caller read, so two concurrent requests can never
both move the same row.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.metrics import (
    TRANSACTION_TRANSITIONS_TOTAL,
    TRANSACTION_TRANSITION_CONFLICTS_TOTAL,
)
from partyrent.modules.booking.models import Offer
from partyrent.modules.payments.exceptions import (
    DuplicateTransactionError,
    InvalidStateError,
    TransactionNotFoundError,
)
from partyrent.modules.payments.models import (
    TERMINAL_STATUSES,
    PaymentFlow,
    Transaction,
    TransactionStatus,
    can_transition,
    sources_for,
)


class TransactionRepository:
    """Data access for transactions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, offer_id: uuid.UUID, amount_cents: int, currency: str) -> Transaction:
        """Create a PENDING transaction for an offer.

        Raises:
            DuplicateTransactionError: The offer already has a live transaction
        """
        existing = await self.get_active_for_offer(offer_id)
        if existing is not None:
            raise DuplicateTransactionError(
                "Duplicate transaction detected for this booking",
                details={"transaction_id": str(existing.id), "status": existing.status},
            )

        transaction = Transaction(
            offer_id=offer_id,
            active_offer_id=offer_id,
            amount_cents=amount_cents,
            currency=currency,
            status=TransactionStatus.PENDING.value,
        )
        self.session.add(transaction)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateTransactionError(
                "Duplicate transaction detected for this booking"
            ) from e
        return transaction

    async def get_by_id(
        self, transaction_id: uuid.UUID, for_update: bool = False
    ) -> Optional[Transaction]:
        query = (
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_raise(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = await self.get_by_id(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    async def get_by_payment_intent(self, order_id: str) -> Optional[Transaction]:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.payment_intent_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_for_offer(self, offer_id: uuid.UUID) -> Optional[Transaction]:
        result = await self.session.execute(
            select(Transaction).where(Transaction.active_offer_id == offer_id)
        )
        return result.scalar_one_or_none()

    async def find_live_booking(
        self,
        client_id: uuid.UUID,
        service_id: uuid.UUID,
        booking_date: datetime,
    ) -> Optional[Transaction]:
        """Live transaction for the same client, service and date, if any."""
        result = await self.session.execute(
            select(Transaction)
            .join(Offer, Offer.id == Transaction.offer_id)
            .where(
                Offer.client_id == client_id,
                Offer.service_id == service_id,
                Offer.booking_date == booking_date,
                Transaction.active_offer_id.is_not(None),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def update_fields(self, transaction: Transaction, **values) -> Transaction:
        """Update non-status columns, guarded by the version the caller read."""
        if "status" in values:
            raise ValueError("use transition() to change status")
        return await self._conditional_update(transaction, None, values)

    async def transition(
        self,
        transaction: Transaction,
        target: TransactionStatus,
        **values,
    ) -> Transaction:
        """Move ``transaction`` to ``target`` if nobody moved it first.

        Raises:
            InvalidStateError: The move is not allowed from the current status,
                or the row changed since it was read
        """
        current = TransactionStatus(transaction.status)
        if not can_transition(current, target):
            raise InvalidStateError(
                f"Cannot move transaction from {current.value} to {target.value}",
                expected=sources_for(target),
                actual=current.value,
            )

        values["status"] = target.value
        if target in TERMINAL_STATUSES:
            values["active_offer_id"] = None

        updated = await self._conditional_update(transaction, target, values)
        TRANSACTION_TRANSITIONS_TOTAL.labels(
            from_status=current.value, to_status=target.value
        ).inc()
        return updated

    async def _conditional_update(
        self,
        transaction: Transaction,
        target: Optional[TransactionStatus],
        values: dict,
    ) -> Transaction:
        read_status = transaction.status
        read_version = transaction.version
        values["version"] = read_version + 1

        result = await self.session.execute(
            update(Transaction)
            .where(
                and_(
                    Transaction.id == transaction.id,
                    Transaction.status == read_status,
                    Transaction.version == read_version,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            fresh = await self.get_by_id(transaction.id)
            if target is not None:
                TRANSACTION_TRANSITION_CONFLICTS_TOTAL.labels(to_status=target.value).inc()
            if fresh is None:
                raise TransactionNotFoundError(f"Transaction {transaction.id} not found")
            raise InvalidStateError(
                f"Transaction {transaction.id} changed concurrently "
                f"(now {fresh.status})",
                expected=[read_status],
                actual=fresh.status,
            )

        await self.session.refresh(transaction)
        return transaction

    async def list_due_escrows(self, now: datetime, limit: int = 100) -> list[Transaction]:
        """ESCROW rows past their end time whose release needs no admin."""
        result = await self.session.execute(
            select(Transaction)
            .where(
                Transaction.status == TransactionStatus.ESCROW.value,
                Transaction.payment_flow == PaymentFlow.MARKETPLACE.value,
                Transaction.escrow_end_time.is_not(None),
                Transaction.escrow_end_time <= now,
            )
            .order_by(Transaction.escrow_end_time)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_expired_reviews(self, now: datetime, limit: int = 100) -> list[Transaction]:
        result = await self.session.execute(
            select(Transaction)
            .where(
                Transaction.status == TransactionStatus.PROVIDER_REVIEW.value,
                Transaction.review_deadline.is_not(None),
                Transaction.review_deadline <= now,
            )
            .order_by(Transaction.review_deadline)
            .limit(limit)
        )
        return list(result.scalars().all())
