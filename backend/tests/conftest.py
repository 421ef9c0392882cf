"""Shared fixtures.

Environment variables are set before any ``partyrent`` import because the
settings object is created at import time.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["FEE_SETTINGS_CACHE_SECONDS"] = "0"
os.environ["PAYPAL_MODE"] = "sandbox"

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from partyrent.core.database import Base
from partyrent.core.security import ROLE_ADMIN, ROLE_CLIENT, ROLE_PROVIDER, CurrentUser
from partyrent.modules.accounts.models import OnboardingStatus, Provider
from partyrent.modules.booking.models import Service, User, UserRole
from partyrent.modules.fees.models import PlatformSetting  # noqa: F401
from partyrent.modules.fees.service import FeeSettingsService
from partyrent.modules.notification.models import Notification
from partyrent.modules.payment_gateway import (
    CaptureResult,
    GatewayOrder,
    PartnerReferral,
    PaymentGatewayInterface,
    PayoutResult,
    RefundResult,
    SellerStatus,
    set_payment_gateway,
)
from partyrent.modules.payments.models import Transaction
from partyrent.modules.payments.service import BookingDetails, PaymentService


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs work on SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncSession:
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        yield session


@pytest.fixture(autouse=True)
def _reset_process_state():
    FeeSettingsService.clear_cache()
    set_payment_gateway(None)
    yield
    FeeSettingsService.clear_cache()
    set_payment_gateway(None)


@dataclass
class Marketplace:
    """One client, one admin and one provider offering one service."""
    client: User
    admin: User
    provider_user: User
    provider: Provider
    service: Service

    @property
    def client_actor(self) -> CurrentUser:
        return CurrentUser(id=self.client.id, role=ROLE_CLIENT)

    @property
    def provider_actor(self) -> CurrentUser:
        return CurrentUser(id=self.provider_user.id, role=ROLE_PROVIDER)

    @property
    def admin_actor(self) -> CurrentUser:
        return CurrentUser(id=self.admin.id, role=ROLE_ADMIN)


@pytest_asyncio.fixture
async def marketplace(session) -> Marketplace:
    client = User(email="client@example.com", name="Client", role=UserRole.CLIENT.value)
    admin = User(email="admin@example.com", name="Admin", role=UserRole.ADMIN.value)
    provider_user = User(
        email="provider@example.com", name="Provider", role=UserRole.PROVIDER.value
    )
    session.add_all([client, admin, provider_user])
    await session.flush()

    provider = Provider(
        user_id=provider_user.id,
        business_name="Bouncy Castles Ltd",
        paypal_merchant_id="MERCHANT123",
        paypal_email="payouts@bouncy.example.com",
        paypal_onboarding_status=OnboardingStatus.COMPLETED.value,
        paypal_onboarding_complete=True,
        paypal_can_receive_payments=True,
        paypal_status_issues=[],
    )
    session.add(provider)
    await session.flush()

    # 100.00 per hour
    service = Service(provider_id=provider.id, name="Bouncy castle", price_cents=10000)
    session.add(service)
    await session.flush()

    return Marketplace(
        client=client,
        admin=admin,
        provider_user=provider_user,
        provider=provider,
        service=service,
    )


def make_order(order_id: str = None, status: str = "CREATED") -> GatewayOrder:
    order_id = order_id or f"ORDER-{uuid.uuid4().hex[:12].upper()}"
    links = [
        {"href": f"https://api-m.sandbox.paypal.com/v2/checkout/orders/{order_id}", "rel": "self"},
        {"href": f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}", "rel": "approve"},
    ]
    return GatewayOrder(
        id=order_id,
        status=status,
        links=links,
        raw={"id": order_id, "status": status, "links": links},
    )


def make_capture(order_id: str, amount_cents: int, capture_id: str = "CAPTURE-1") -> CaptureResult:
    return CaptureResult(
        capture_id=capture_id,
        status="COMPLETED",
        amount_cents=amount_cents,
        currency="USD",
        order_id=order_id,
        raw={"id": order_id, "status": "COMPLETED"},
    )


@pytest.fixture
def gateway() -> MagicMock:
    """Gateway double whose calls succeed unless a test says otherwise."""
    gateway = MagicMock(spec=PaymentGatewayInterface)
    gateway.is_sandbox = True
    gateway.create_order = AsyncMock(side_effect=lambda *args, **kwargs: make_order())
    gateway.create_marketplace_order = AsyncMock(
        side_effect=lambda *args, **kwargs: make_order()
    )
    gateway.get_order = AsyncMock(
        side_effect=lambda order_id: make_order(order_id, status="APPROVED")
    )
    gateway.capture_order = AsyncMock()
    gateway.refund_capture = AsyncMock(
        side_effect=lambda capture_id, **kwargs: RefundResult(
            refund_id="REFUND-1",
            capture_id=capture_id,
            status="COMPLETED",
            amount_cents=kwargs.get("amount_cents"),
            currency=kwargs.get("currency"),
        )
    )
    gateway.create_payout = AsyncMock(
        side_effect=lambda **kwargs: PayoutResult(
            payout_batch_id="BATCH-1",
            batch_status="PENDING",
            sender_batch_id=kwargs["sender_batch_id"],
        )
    )
    gateway.release_funds = AsyncMock(return_value={"item": {"processing_state": {"status": "SUCCESS"}}})
    gateway.check_seller_status = AsyncMock(
        side_effect=lambda merchant_id: SellerStatus(merchant_id=merchant_id, issues=[])
    )
    gateway.create_partner_referral = AsyncMock(
        return_value=PartnerReferral(
            partner_referral_id="REF-1",
            action_url="https://www.sandbox.paypal.com/bizsignup/partner/entry?referralToken=abc",
        )
    )
    return gateway


@pytest.fixture
def payment_service(session, gateway) -> PaymentService:
    return PaymentService(session, gateway=gateway)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ==================== Lifecycle helpers ====================

BOOKING_DATE = datetime(2026, 12, 24, 15, 0)


def booking_for(marketplace: Marketplace, hours: int = 1, **kwargs) -> BookingDetails:
    return BookingDetails(
        service_id=marketplace.service.id,
        booking_date=kwargs.pop("booking_date", BOOKING_DATE),
        hours=hours,
        **kwargs,
    )


async def checkout(service: PaymentService, marketplace: Marketplace, **kwargs) -> Transaction:
    """Create a booking payment and return its PENDING_PAYMENT transaction."""
    outcome = await service.create_checkout(marketplace.client.id, booking_for(marketplace, **kwargs))
    return outcome.transaction


async def paid(service: PaymentService, gateway: MagicMock, marketplace: Marketplace) -> Transaction:
    """A transaction captured right away, awaiting the provider's acceptance."""
    transaction = await checkout(service, marketplace)
    gateway.capture_order.return_value = make_capture(
        transaction.payment_intent_id, transaction.total_client_pays_cents
    )
    outcome = await service.capture_payment(transaction.payment_intent_id, marketplace.client.id)
    return outcome.transaction


async def in_review(service: PaymentService, marketplace: Marketplace) -> Transaction:
    """A transaction the client authorized and the provider has to review."""
    transaction = await checkout(service, marketplace)
    outcome = await service.authorize_payment(transaction.payment_intent_id, marketplace.client.id)
    return outcome.transaction


async def in_escrow(service: PaymentService, gateway: MagicMock, marketplace: Marketplace) -> Transaction:
    transaction = await paid(service, gateway, marketplace)
    outcome = await service.approve_transaction(transaction.id, marketplace.provider_actor)
    return outcome.transaction


async def notifications_for(session: AsyncSession, user_id: uuid.UUID) -> list[Notification]:
    result = await session.execute(
        select(Notification).where(Notification.user_id == user_id)
    )
    return list(result.scalars().all())
