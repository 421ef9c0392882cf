"""Pydantic schemas for payment and transaction endpoints."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, Field

from partyrent.core.schemas import CamelModel


class CreatePaymentRequest(CamelModel):
    """Checkout payload for a booking."""
    service_id: uuid.UUID
    booking_date: datetime
    hours: int = Field(..., ge=1, le=24 * 14)
    address: Optional[str] = Field(None, max_length=1000)
    comments: Optional[str] = Field(None, max_length=2000)
    contact_phone: Optional[str] = Field(None, max_length=50)
    guest_count: Optional[int] = Field(None, ge=0)
    payment_method: Optional[str] = Field(None, max_length=50)
    offer_id: Optional[uuid.UUID] = None


class AuthorizeRequest(CamelModel):
    order_id: str = Field(..., validation_alias=AliasChoices("orderID", "orderId", "order_id"))


class CaptureRequest(CamelModel):
    order_id: str = Field(..., validation_alias=AliasChoices("orderId", "orderID", "order_id"))


class DeclineRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=1000)


class RefundRequest(CamelModel):
    note: Optional[str] = Field(None, max_length=255)


class TransactionResponse(CamelModel):
    """A transaction as shown to its client, provider or an admin."""
    id: uuid.UUID
    offer_id: uuid.UUID
    status: str
    payment_flow: Optional[str] = None
    currency: str
    amount_cents: int
    client_fee_percent: Optional[float] = None
    provider_fee_percent: Optional[float] = None
    client_fee_cents: Optional[int] = None
    total_client_pays_cents: Optional[int] = None
    provider_commission_cents: Optional[int] = None
    provider_receives_cents: Optional[int] = None
    platform_fee_cents: Optional[int] = None
    payment_intent_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    refund_id: Optional[str] = None
    payout_status: Optional[str] = None
    review_deadline: Optional[datetime] = None
    escrow_start_time: Optional[datetime] = None
    escrow_end_time: Optional[datetime] = None
    released_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CreatePaymentResponse(CamelModel):
    success: bool = True
    transaction_id: uuid.UUID
    order_id: str
    approval_url: Optional[str] = None
    payment_flow: Optional[str] = None
    total_client_pays_cents: Optional[int] = None


class AuthorizeResponse(CamelModel):
    success: bool = True
    transaction_id: uuid.UUID
    status: str
    review_deadline: Optional[datetime] = None
    message: Optional[str] = None
    warnings: list[str] = []


class CaptureResponse(CamelModel):
    success: bool = True
    transaction_id: uuid.UUID
    capture_id: Optional[str] = None
    status: str
    warnings: list[str] = []


class TransactionActionResponse(CamelModel):
    """Result of approve, decline, cancel, release and refund."""
    success: bool = True
    degraded: bool = False
    message: Optional[str] = None
    warnings: list[str] = []
    escrow_end_time: Optional[datetime] = None
    transaction: TransactionResponse
