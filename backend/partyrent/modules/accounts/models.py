"""Provider profile with its PayPal connected-account state."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from partyrent.core.database import Base


class OnboardingStatus(str, Enum):
    """PayPal onboarding progress of a provider."""
    NOT_STARTED = "NOT_STARTED"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Provider(Base):
    """A service provider.

    Only the payment-relevant fields are modelled here.
    """

    __tablename__ = "providers"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # PayPal connected account
    paypal_merchant_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    paypal_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paypal_onboarding_status: Mapped[str] = mapped_column(
        String(20), default=OnboardingStatus.NOT_STARTED.value
    )
    paypal_onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    paypal_can_receive_payments: Mapped[bool] = mapped_column(Boolean, default=False)
    paypal_status_issues: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    paypal_environment: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    paypal_partner_referral_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    paypal_status_checked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def is_marketplace_eligible(self) -> bool:
        """Whether payments can be split directly to this provider's account."""
        return bool(
            self.paypal_merchant_id
            and self.paypal_onboarding_complete
            and self.paypal_can_receive_payments
        )

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, merchant_id={self.paypal_merchant_id})>"
