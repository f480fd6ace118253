"""
Payment API endpoints
"""
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, Query, Request, status

from marketplace.api.dependencies import (
    get_actor,
    get_payment_service,
    get_reconciliation_service,
)
from marketplace.constants import PaymentMethod, PaymentStatus
from marketplace.schemas.payment import (
    FeeQuoteResponse,
    PaymentCreate,
    PaymentListResponse,
    PaymentResponse,
    PaymentStatsResponse,
    PaymentStatusUpdate,
    RefundRequest,
    WebhookResult,
)
from marketplace.security import Actor
from marketplace.services.payment_service import PaymentService
from marketplace.services.reconciliation_service import ReconciliationService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED, summary="Initiate payment")
async def initiate_payment(
    payment_data: PaymentCreate,
    actor: Actor = Depends(get_actor),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Create a payment for an order and start collection

    Mobile-money payments are sent to the provider and come back as
    processing; the final result arrives by webhook.

    - **order_id**: Order ID (required)
    - **method**: Payment method (required)
    - **phone_number**: Wallet number (required for mobile money)
    """
    return await service.initiate_payment(payment_data, actor)


@router.get("/fees", response_model=FeeQuoteResponse, summary="Quote payment fee")
def quote_fee(
    amount: Decimal = Query(..., gt=0, description="Amount to pay"),
    method: PaymentMethod = Query(..., description="Payment method")
):
    """
    Fee and net amount for paying an amount with a method

    - **amount**: Amount (required)
    - **method**: Payment method (required)
    """
    return PaymentService.quote_fee(amount, method)


@router.get("", response_model=PaymentListResponse, summary="Payment history")
def get_payments(
    skip: int = Query(0, ge=0, description="Number of payments to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of payments to return"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="status", description="Filter by status"),
    store_id: Optional[int] = Query(None, gt=0, description="Filter by store"),
    actor: Actor = Depends(get_actor),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Payment history visible to the caller, newest first

    Buyers see their own payments, store owners their store's payments and
    staff every payment.

    - **skip**: Number of payments to skip (default: 0)
    - **limit**: Maximum number of payments to return (default: 100, max: 1000)
    - **status**: Optional status filter
    - **store_id**: Optional store filter
    """
    return service.list_payments(actor, skip=skip, limit=limit, status=payment_status, store_id=store_id)


@router.get("/stats", response_model=PaymentStatsResponse, summary="Payment statistics")
def get_payment_stats(
    store_id: Optional[int] = Query(None, gt=0, description="Store to report on"),
    actor: Actor = Depends(get_actor),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Payment counts per status and method, with collected, fee and refunded totals

    - **store_id**: Required unless the caller is staff
    """
    return service.get_stats(actor, store_id=store_id)


@router.get("/reference/{reference}", response_model=PaymentResponse, summary="Get payment by reference")
def get_payment_by_reference(
    reference: str,
    actor: Actor = Depends(get_actor),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Retrieve a payment by its transaction reference

    - **reference**: e.g. TXN-20240115-9F2C41AB
    """
    return service.get_payment_by_reference(reference, actor)


@router.get("/order/{order_id}", response_model=List[PaymentResponse], summary="Get payments of an order")
def get_order_payments(
    order_id: int,
    actor: Actor = Depends(get_actor),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Every payment attempt made for an order

    - **order_id**: Order ID
    """
    return service.get_payments_for_order(order_id, actor)


@router.get("/{payment_id}", response_model=PaymentResponse, summary="Get payment by ID")
def get_payment(
    payment_id: int,
    actor: Actor = Depends(get_actor),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Retrieve a specific payment by ID

    - **payment_id**: Payment ID
    """
    return service.get_payment(payment_id, actor)


@router.patch("/{payment_id}/status", response_model=PaymentResponse, summary="Update payment status")
def update_payment_status(
    payment_id: int,
    status_data: PaymentStatusUpdate,
    actor: Actor = Depends(get_actor),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Record a payment result manually (administrators only)

    Used for cash on delivery, bank transfers and provider outages.

    - **status**: processing, completed, failed, cancelled or expired
    - **external_transaction_id**: Provider transaction ID
    - **failure_reason**: Reason for a failed payment
    """
    return service.update_status(
        payment_id,
        status_data.status,
        external_transaction_id=status_data.external_transaction_id,
        failure_reason=status_data.failure_reason,
        actor=actor,
    )


@router.post("/{payment_id}/refund", response_model=PaymentResponse, summary="Refund payment")
def refund_payment(
    payment_id: int,
    refund_data: RefundRequest,
    actor: Actor = Depends(get_actor),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Refund part or all of a completed payment (store owner or staff)

    - **amount**: Amount to refund (required, positive)
    - **reason**: Refund reason
    """
    return service.process_refund(payment_id, refund_data.amount, refund_data.reason, actor)


@router.post("/webhooks/{provider}", response_model=WebhookResult, summary="Provider webhook")
async def payment_webhook(
    provider: str,
    request: Request,
    x_signature: Optional[str] = Header(None, description="Hex HMAC-SHA256 of the raw body"),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """
    Apply an asynchronous payment result sent by a provider

    The signature covers the raw request body and is checked before
    anything is read or written. Redeliveries are acknowledged without
    change.

    - **provider**: tmoney, flooz, orange_money, mtn_money, moov_money or wave
    """
    body = await request.body()
    return service.process_webhook(provider, body, x_signature)
