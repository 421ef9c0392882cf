"""Provider payment accounts module.

PayPal connected-account onboarding and payment readiness of providers.
"""

from partyrent.modules.accounts.models import OnboardingStatus, Provider
from partyrent.modules.accounts.service import ProviderPaymentAccountService

__all__ = ["OnboardingStatus", "Provider", "ProviderPaymentAccountService"]
