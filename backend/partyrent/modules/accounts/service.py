"""Provider payment account service.

Onboards a provider's PayPal account through a partner referral, records the
result of the onboarding redirect and keeps the account's payment readiness
up to date.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.config import settings
from partyrent.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from partyrent.core.security import create_onboarding_state, decode_onboarding_state
from partyrent.modules.accounts.models import OnboardingStatus, Provider
from partyrent.modules.accounts.repository import ProviderRepository
from partyrent.modules.booking.repository import BookingRepository
from partyrent.modules.payment_gateway import (
    PartnerReferral,
    PaymentGatewayInterface,
    SellerReferralData,
    SellerStatus,
    get_payment_gateway,
)

logger = logging.getLogger(__name__)


class ProviderNotFoundError(NotFoundError):
    """The user has no provider profile."""


class ProviderPaymentAccountService:
    """Onboarding and status checks for providers' connected accounts."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: Optional[PaymentGatewayInterface] = None,
    ):
        self.session = session
        self.gateway = gateway or get_payment_gateway()
        self.repository = ProviderRepository(session)
        self.bookings = BookingRepository(session)

    @property
    def environment(self) -> str:
        return "sandbox" if self.gateway.is_sandbox else "live"

    async def get_provider_for_user(self, user_id: uuid.UUID) -> Provider:
        provider = await self.repository.get_by_user_id(user_id)
        if provider is None:
            raise ProviderNotFoundError("Only providers can manage a PayPal account")
        return provider

    async def get_provider_for_onboarding_state(
        self, state: Optional[str], tracking_id: Optional[str] = None
    ) -> Provider:
        """Resolve the provider returning from PayPal onboarding.

        Raises:
            UnauthorizedError: Missing, expired or forged state, or a tracking
                id that belongs to another provider
        """
        provider_id = decode_onboarding_state(state)
        if provider_id is None:
            raise UnauthorizedError("Onboarding link is invalid or has expired")
        if tracking_id and tracking_id != str(provider_id):
            raise UnauthorizedError("Onboarding link does not match this PayPal account")

        provider = await self.repository.get_by_id(provider_id)
        if provider is None:
            raise ProviderNotFoundError("Provider no longer exists")
        return provider

    async def start_onboarding(self, provider: Provider) -> PartnerReferral:
        """Create a partner referral and return the link the provider must visit.

        Raises:
            PaymentGatewayError: The referral could not be created
        """
        user = await self.bookings.get_user(provider.user_id)
        base_url = settings.APP_BASE_URL.rstrip("/")
        referral = await self.gateway.create_partner_referral(
            SellerReferralData(
                tracking_id=str(provider.id),
                return_url=(
                    f"{base_url}/api/v1/paypal/callback"
                    f"?state={create_onboarding_state(provider.id)}"
                ),
                email=provider.paypal_email or (user.email if user else None),
                business_name=provider.business_name,
            )
        )
        await self.repository.update(
            provider,
            paypal_onboarding_status=OnboardingStatus.PENDING.value,
            paypal_partner_referral_id=referral.partner_referral_id,
            paypal_environment=self.environment,
        )
        logger.info(f"PayPal onboarding started for provider {provider.id}")
        return referral

    async def handle_onboarding_callback(
        self,
        provider: Provider,
        merchant_id: Optional[str],
        permissions_granted: bool,
        consent_status: Optional[bool] = None,
        email_confirmed: Optional[bool] = None,
    ) -> Provider:
        """Record the outcome of the onboarding redirect.

        A successful onboarding is followed by a seller status check, so the
        provider immediately sees whether payments can be received.
        """
        completed = bool(permissions_granted and merchant_id and consent_status is not False)
        values = {
            "paypal_onboarding_status": (
                OnboardingStatus.COMPLETED.value if completed else OnboardingStatus.FAILED.value
            ),
            "paypal_onboarding_complete": completed,
            "paypal_environment": self.environment,
        }
        if merchant_id:
            values["paypal_merchant_id"] = merchant_id
        if not provider.paypal_email:
            user = await self.bookings.get_user(provider.user_id)
            if user is not None:
                values["paypal_email"] = user.email
        provider = await self.repository.update(provider, **values)

        logger.info(
            f"PayPal onboarding callback for provider {provider.id}: "
            f"{values['paypal_onboarding_status']} (email confirmed: {email_confirmed})"
        )
        if completed:
            provider = await self.refresh_seller_status(provider)
        else:
            provider = await self.repository.update(provider, paypal_can_receive_payments=False)
        return provider

    async def refresh_seller_status(self, provider: Provider) -> Provider:
        """Re-check whether the connected account can receive payments.

        Raises:
            ValidationError: Provider has no connected account yet
        """
        if not provider.paypal_merchant_id:
            raise ValidationError("Connect a PayPal account before checking its status")

        status: SellerStatus = await self.gateway.check_seller_status(provider.paypal_merchant_id)
        provider = await self.repository.update(
            provider,
            paypal_can_receive_payments=status.can_receive_payments,
            paypal_status_issues=[issue.to_dict() for issue in status.issues],
            paypal_status_checked_at=datetime.now(timezone.utc),
        )
        if status.issues:
            logger.warning(
                f"Provider {provider.id} cannot receive payments: "
                f"{[issue.code for issue in status.issues]}"
            )
        return provider

    async def update_payout_email(self, provider: Provider, email: str) -> Provider:
        """Set the email regular-flow payouts are sent to."""
        email = email.strip()
        if "@" not in email:
            raise ValidationError("A valid PayPal email is required", details={"email": email})
        return await self.repository.update(provider, paypal_email=email)

    async def disconnect(self, provider: Provider) -> Provider:
        """Forget the connected account; later bookings use the regular flow."""
        if provider.paypal_onboarding_status == OnboardingStatus.NOT_STARTED.value and not (
            provider.paypal_merchant_id
        ):
            raise ValidationError("No PayPal account is connected")
        provider = await self.repository.update(
            provider,
            paypal_merchant_id=None,
            paypal_onboarding_status=OnboardingStatus.NOT_STARTED.value,
            paypal_onboarding_complete=False,
            paypal_can_receive_payments=False,
            paypal_status_issues=[],
            paypal_partner_referral_id=None,
            paypal_status_checked_at=None,
        )
        logger.info(f"PayPal account disconnected for provider {provider.id}")
        return provider
