"""Party Rent Payments Backend.

Payment core of the party/event-services marketplace: fee settings, the PayPal
gateway client, the transaction state machine and the provider onboarding flow.

Modules:
    - core: Configuration, database, logging, metrics, Celery setup
    - modules.fees: Platform fee settings and commission math
    - modules.payment_gateway: PayPal REST client
    - modules.payments: Transaction lifecycle and escrow sweeps
    - modules.accounts: Provider PayPal onboarding
    - modules.booking: Users, services and offers consumed by payments
    - modules.notification: In-app notifications
"""

__version__ = "0.1.0"
