"""Provider PayPal account endpoints.

Onboarding, the onboarding redirect target and status checks.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.config import settings
from partyrent.core.database import get_session
from partyrent.core.exceptions import PaymentError
from partyrent.core.security import CurrentUser, get_current_user
from partyrent.modules.accounts.models import Provider
from partyrent.modules.accounts.schemas import (
    OnboardingResponse,
    PaymentAccountStatusResponse,
    PayoutEmailUpdate,
    SellerIssueResponse,
)
from partyrent.modules.accounts.service import ProviderPaymentAccountService
from partyrent.modules.payment_gateway import PaymentGatewayInterface, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/paypal", tags=["paypal-accounts"])


def get_account_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    gateway: Annotated[PaymentGatewayInterface, Depends(get_payment_gateway)],
) -> ProviderPaymentAccountService:
    return ProviderPaymentAccountService(session, gateway=gateway)


def _status_response(provider: Provider) -> PaymentAccountStatusResponse:
    return PaymentAccountStatusResponse(
        paypal_merchant_id=provider.paypal_merchant_id,
        paypal_email=provider.paypal_email,
        paypal_onboarding_status=provider.paypal_onboarding_status,
        paypal_onboarding_complete=provider.paypal_onboarding_complete,
        paypal_can_receive_payments=provider.paypal_can_receive_payments,
        paypal_status_issues=[
            SellerIssueResponse(code=issue.get("code", ""), message=issue.get("message", ""))
            for issue in provider.paypal_status_issues or []
        ],
        paypal_environment=provider.paypal_environment,
        paypal_status_checked_at=provider.paypal_status_checked_at,
        marketplace_eligible=provider.is_marketplace_eligible(),
    )


def _flag(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() == "true"


@router.post("/onboard", response_model=OnboardingResponse)
async def start_onboarding(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[ProviderPaymentAccountService, Depends(get_account_service)],
) -> OnboardingResponse:
    """Start PayPal onboarding. The client redirects the provider to ``actionUrl``."""
    provider = await service.get_provider_for_user(user.id)
    referral = await service.start_onboarding(provider)
    return OnboardingResponse(
        action_url=referral.action_url,
        partner_referral_id=referral.partner_referral_id,
    )


@router.get("/callback")
async def onboarding_callback(
    service: Annotated[ProviderPaymentAccountService, Depends(get_account_service)],
    state: Annotated[Optional[str], Query()] = None,
    tracking_id: Annotated[Optional[str], Query(alias="merchantId")] = None,
    merchant_id: Annotated[Optional[str], Query(alias="merchantIdInPayPal")] = None,
    permissions_granted: Annotated[Optional[str], Query(alias="permissionsGranted")] = None,
    consent_status: Annotated[Optional[str], Query(alias="consentStatus")] = None,
    is_email_confirmed: Annotated[Optional[str], Query(alias="isEmailConfirmed")] = None,
) -> RedirectResponse:
    """PayPal redirects the provider's browser here after onboarding.

    No bearer token arrives with a browser redirect: the provider is
    identified by the signed ``state`` put into the return URL.
    """
    base_url = settings.APP_BASE_URL.rstrip("/")
    dashboard = f"{base_url}/provider/dashboard/paypal"
    try:
        provider = await service.get_provider_for_onboarding_state(state, tracking_id)
    except PaymentError as e:
        logger.warning(f"Rejected PayPal onboarding callback: {e.code}")
        return RedirectResponse(
            url=f"{base_url}/auth/signin?callbackUrl=/provider/dashboard/paypal",
            status_code=status.HTTP_302_FOUND,
        )

    try:
        provider = await service.handle_onboarding_callback(
            provider,
            merchant_id=merchant_id,
            permissions_granted=bool(_flag(permissions_granted)),
            consent_status=_flag(consent_status),
            email_confirmed=_flag(is_email_confirmed),
        )
    except PaymentError as e:
        return RedirectResponse(
            url=f"{dashboard}?status=error&code={e.code}",
            status_code=status.HTTP_302_FOUND,
        )
    outcome = "success" if provider.paypal_onboarding_complete else "failed"
    return RedirectResponse(
        url=f"{dashboard}?status={outcome}",
        status_code=status.HTTP_302_FOUND,
    )


@router.post("/refresh-status", response_model=PaymentAccountStatusResponse)
async def refresh_status(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[ProviderPaymentAccountService, Depends(get_account_service)],
) -> PaymentAccountStatusResponse:
    provider = await service.get_provider_for_user(user.id)
    provider = await service.refresh_seller_status(provider)
    return _status_response(provider)


@router.get("/status", response_model=PaymentAccountStatusResponse)
async def get_status(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[ProviderPaymentAccountService, Depends(get_account_service)],
) -> PaymentAccountStatusResponse:
    provider = await service.get_provider_for_user(user.id)
    return _status_response(provider)


@router.put("/payout-email", response_model=PaymentAccountStatusResponse)
async def update_payout_email(
    data: PayoutEmailUpdate,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[ProviderPaymentAccountService, Depends(get_account_service)],
) -> PaymentAccountStatusResponse:
    """Email that payouts for regular (non-split) payments are sent to."""
    provider = await service.get_provider_for_user(user.id)
    provider = await service.update_payout_email(provider, str(data.email))
    return _status_response(provider)


@router.post("/disconnect", response_model=PaymentAccountStatusResponse)
async def disconnect(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[ProviderPaymentAccountService, Depends(get_account_service)],
) -> PaymentAccountStatusResponse:
    provider = await service.get_provider_for_user(user.id)
    provider = await service.disconnect(provider)
    return _status_response(provider)
