"""Transaction model and its state machine.

A transaction is one booking's payment lifecycle. Its status only moves
along ``ALLOWED_TRANSITIONS``; every move is a conditional update on the
expected current status (see ``TransactionRepository.transition``).
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from partyrent.core.database import Base


class TransactionStatus(str, Enum):
    """Transaction lifecycle states."""
    PENDING = "PENDING"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PROVIDER_REVIEW = "PROVIDER_REVIEW"
    PAID_PENDING_PROVIDER_ACCEPTANCE = "PAID_PENDING_PROVIDER_ACCEPTANCE"
    ESCROW = "ESCROW"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentFlow(str, Enum):
    """How the money reaches the provider."""
    # Gateway splits the capture between provider and platform
    MARKETPLACE = "MARKETPLACE"
    # Platform collects everything and pays the provider out later
    REGULAR = "REGULAR"


class PayoutStatus(str, Enum):
    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


S = TransactionStatus

ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    S.PENDING: frozenset({S.PENDING_PAYMENT, S.CANCELLED}),
    S.PENDING_PAYMENT: frozenset({
        S.PROVIDER_REVIEW,
        S.PAID_PENDING_PROVIDER_ACCEPTANCE,
        S.CANCELLED,
    }),
    S.PROVIDER_REVIEW: frozenset({S.ESCROW, S.REJECTED, S.CANCELLED}),
    S.PAID_PENDING_PROVIDER_ACCEPTANCE: frozenset({
        S.ESCROW,
        S.COMPLETED,
        S.REJECTED,
        S.CANCELLED,
    }),
    S.ESCROW: frozenset({S.COMPLETED, S.CANCELLED}),
    S.REJECTED: frozenset({S.REFUNDED}),
    S.COMPLETED: frozenset({S.REFUNDED}),
    S.CANCELLED: frozenset({S.REFUNDED}),
    S.REFUNDED: frozenset(),
}

# No further automatic progress from these; only an admin refund can follow
TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED, S.REJECTED, S.REFUNDED})

# Statuses in which the gateway holds captured client money
CAPTURED_STATUSES = frozenset({
    S.PAID_PENDING_PROVIDER_ACCEPTANCE,
    S.ESCROW,
    S.COMPLETED,
})


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def sources_for(target: TransactionStatus) -> frozenset[TransactionStatus]:
    """All statuses from which ``target`` is reachable in one step."""
    return frozenset(
        source for source, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


class Transaction(Base):
    """Payment lifecycle of one offer.

    Amounts are integer cents. Fee percentages and the derived breakdown are
    snapshotted when the gateway order is created and never recomputed from
    the current settings.
    """

    __tablename__ = "transactions"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    offer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Equals offer_id while the transaction is live, NULL once terminal
    active_offer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, nullable=True, unique=True
    )

    status: Mapped[str] = mapped_column(
        String(40), nullable=False, default=TransactionStatus.PENDING.value, index=True
    )
    payment_flow: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Money
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    client_fee_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    provider_fee_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    client_fee_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_client_pays_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    provider_commission_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    provider_receives_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    platform_fee_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    captured_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Gateway references
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, unique=True
    )
    payment_method_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    provider_merchant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    refund_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payout_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payout_batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Timers
    review_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    escrow_start_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    escrow_end_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gateway_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_transactions_status_escrow_end", "status", "escrow_end_time"),
        Index("ix_transactions_status_review_deadline", "status", "review_deadline"),
    )

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    @property
    def is_marketplace(self) -> bool:
        return self.payment_flow == PaymentFlow.MARKETPLACE.value

    @property
    def auto_release(self) -> bool:
        """Escrow ends on its own only when the gateway holds the provider's share."""
        return self.is_marketplace

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, status={self.status}, amount_cents={self.amount_cents})>"
