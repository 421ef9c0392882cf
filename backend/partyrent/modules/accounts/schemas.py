"""Pydantic schemas for provider payment account endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import EmailStr

from partyrent.core.schemas import CamelModel


class OnboardingResponse(CamelModel):
    success: bool = True
    action_url: Optional[str] = None
    partner_referral_id: Optional[str] = None


class SellerIssueResponse(CamelModel):
    code: str
    message: str


class PaymentAccountStatusResponse(CamelModel):
    """A provider's connected-account state."""
    paypal_merchant_id: Optional[str] = None
    paypal_email: Optional[str] = None
    paypal_onboarding_status: str
    paypal_onboarding_complete: bool
    paypal_can_receive_payments: bool
    paypal_status_issues: list[SellerIssueResponse] = []
    paypal_environment: Optional[str] = None
    paypal_status_checked_at: Optional[datetime] = None
    marketplace_eligible: bool = False


class PayoutEmailUpdate(CamelModel):
    email: EmailStr
