"""Payment and transaction endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.database import get_session
from partyrent.core.security import CurrentUser, get_current_user, require_admin
from partyrent.modules.payment_gateway import PaymentGatewayInterface, get_payment_gateway
from partyrent.modules.payments.schemas import (
    AuthorizeRequest,
    AuthorizeResponse,
    CaptureRequest,
    CaptureResponse,
    CreatePaymentRequest,
    CreatePaymentResponse,
    DeclineRequest,
    RefundRequest,
    TransactionActionResponse,
    TransactionResponse,
)
from partyrent.modules.payments.service import BookingDetails, PaymentOutcome, PaymentService

router = APIRouter(tags=["payments"])


def get_payment_service(
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGatewayInterface = Depends(get_payment_gateway),
) -> PaymentService:
    return PaymentService(session, gateway=gateway)


def _action_response(outcome: PaymentOutcome) -> TransactionActionResponse:
    transaction = outcome.transaction
    return TransactionActionResponse(
        degraded=outcome.degraded,
        message=outcome.message,
        warnings=outcome.warnings,
        escrow_end_time=transaction.escrow_end_time,
        transaction=TransactionResponse.model_validate(transaction),
    )


# ==================== Client payment flow ====================

@router.post("/payments/create", response_model=CreatePaymentResponse)
async def create_payment(
    data: CreatePaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Create the booking and its gateway order. Returns the approval link."""
    outcome = await service.create_checkout(
        user.id,
        BookingDetails(
            service_id=data.service_id,
            booking_date=data.booking_date,
            hours=data.hours,
            address=data.address,
            comments=data.comments,
            contact_phone=data.contact_phone,
            guest_count=data.guest_count,
            payment_method=data.payment_method,
            offer_id=data.offer_id,
        ),
    )
    transaction = outcome.transaction
    return CreatePaymentResponse(
        transaction_id=transaction.id,
        order_id=outcome.order.id,
        approval_url=outcome.order.approval_url,
        payment_flow=transaction.payment_flow,
        total_client_pays_cents=transaction.total_client_pays_cents,
    )


@router.post("/payments/authorize", response_model=AuthorizeResponse)
async def authorize_payment(
    data: AuthorizeRequest,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Client approved the order; hand the booking to the provider."""
    outcome = await service.authorize_payment(data.order_id, user.id)
    return AuthorizeResponse(
        transaction_id=outcome.transaction.id,
        status=outcome.transaction.status,
        review_deadline=outcome.transaction.review_deadline,
        message=outcome.message,
        warnings=outcome.warnings,
    )


@router.post("/payments/capture", response_model=CaptureResponse)
async def capture_payment(
    data: CaptureRequest,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    client_id: Optional[uuid.UUID] = None if user.is_admin else user.id
    outcome = await service.capture_payment(data.order_id, client_id=client_id)
    return CaptureResponse(
        transaction_id=outcome.transaction.id,
        capture_id=outcome.transaction.payment_method_id,
        status=outcome.transaction.status,
        warnings=outcome.warnings,
    )


# ==================== Transactions ====================

@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    transaction = await service.get_transaction(transaction_id, user)
    return TransactionResponse.model_validate(transaction)


@router.post("/transactions/{transaction_id}/approve", response_model=TransactionActionResponse)
async def approve_transaction(
    transaction_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Provider approves the booking; the payment is captured into escrow."""
    outcome = await service.approve_transaction(transaction_id, user)
    return _action_response(outcome)


@router.post("/transactions/{transaction_id}/decline", response_model=TransactionActionResponse)
async def decline_transaction(
    transaction_id: uuid.UUID,
    data: Optional[DeclineRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.decline_transaction(
        transaction_id, user, reason=data.reason if data else None
    )
    return _action_response(outcome)


@router.post("/transactions/{transaction_id}/cancel", response_model=TransactionActionResponse)
async def cancel_transaction(
    transaction_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.cancel_transaction(transaction_id, user)
    return _action_response(outcome)


# ==================== Admin ====================

@router.post(
    "/admin/transactions/{transaction_id}/release",
    response_model=TransactionActionResponse,
)
async def release_escrow(
    transaction_id: uuid.UUID,
    admin: CurrentUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    """Release escrowed funds to the provider (payout for the regular flow)."""
    outcome = await service.release_escrow(transaction_id, trigger="admin")
    return _action_response(outcome)


@router.post(
    "/admin/transactions/{transaction_id}/refund",
    response_model=TransactionActionResponse,
)
async def refund_transaction(
    transaction_id: uuid.UUID,
    data: Optional[RefundRequest] = None,
    admin: CurrentUser = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.refund_transaction(transaction_id, note=data.note if data else None)
    return _action_response(outcome)
