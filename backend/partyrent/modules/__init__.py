"""Application modules.

- fees: Platform fee settings and commission math
- payment_gateway: PayPal REST client
- payments: Transaction lifecycle, escrow, payouts, refunds
- accounts: Provider PayPal onboarding and payment readiness
- notification: In-app notifications
- booking: Users, services and offers read by payments
"""
