"""
Order API endpoints
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from marketplace.api.dependencies import get_actor, get_order_service
from marketplace.constants import OrderStatus
from marketplace.schemas.order import (
    OrderCancel,
    OrderCreate,
    OrderListResponse,
    OrderRating,
    OrderResponse,
    OrderStatsResponse,
    OrderStatusUpdate,
)
from marketplace.security import Actor
from marketplace.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrderListResponse, summary="List orders")
def get_orders(
    skip: int = Query(0, ge=0, description="Number of orders to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of orders to return"),
    order_status: Optional[OrderStatus] = Query(None, alias="status", description="Filter by status"),
    store_id: Optional[int] = Query(None, gt=0, description="Filter by store"),
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service)
):
    """
    Retrieve the orders visible to the caller with pagination

    Buyers see their own orders, store owners their store's orders and
    staff every order.

    - **skip**: Number of orders to skip (default: 0)
    - **limit**: Maximum number of orders to return (default: 100, max: 1000)
    - **status**: Optional status filter
    - **store_id**: Optional store filter
    """
    return service.list_orders(actor, skip=skip, limit=limit, status=order_status, store_id=store_id)


@router.get("/stats", response_model=OrderStatsResponse, summary="Order statistics")
def get_order_stats(
    store_id: Optional[int] = Query(None, gt=0, description="Store to report on"),
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service)
):
    """
    Order counts per status

    - **store_id**: Required unless the caller is staff
    """
    return service.get_stats(actor, store_id=store_id)


@router.get("/number/{order_number}", response_model=OrderResponse, summary="Get order by number")
def get_order_by_number(
    order_number: str,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service)
):
    """
    Retrieve an order by its human-readable number

    - **order_number**: e.g. AFM-20240115-000042
    """
    return service.get_order_by_number(order_number, actor)


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order by ID")
def get_order(
    order_id: int,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service)
):
    """
    Retrieve a specific order by ID

    - **order_id**: Order ID
    """
    return service.get_order(order_id, actor)


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED, summary="Create order")
def create_order(
    order_data: OrderCreate,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service)
):
    """
    Create a new order

    Process:
    1. Validate products exist and belong to one store
    2. Snapshot prices and calculate the total
    3. Save the order and reserve stock atomically
    4. Publish OrderCreated event to RabbitMQ

    - **items**: Line items with product_id and quantity (required)
    - **shipping_address**: Delivery address (required)
    - **shipping_fee**: Shipping fee (default: 0)
    - **payment_method**: Intended payment method
    """
    return service.create_order(order_data, actor)


@router.patch("/{order_id}/status", response_model=OrderResponse, summary="Update order status")
def update_order_status(
    order_id: int,
    status_data: OrderStatusUpdate,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service)
):
    """
    Move an order along its fulfilment path (store owner or staff)

    - **order_id**: Order ID
    - **status**: confirmed, shipped or delivered
    - **tracking_number**: Tracking number (shipped only)
    - **carrier**: Carrier name (shipped only)
    """
    return service.update_order_status(order_id, status_data, actor)


@router.post("/{order_id}/cancel", response_model=OrderResponse, summary="Cancel order")
def cancel_order(
    order_id: int,
    cancel_data: OrderCancel,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service)
):
    """
    Cancel a pending or confirmed order and release its stock

    - **order_id**: Order ID
    - **reason**: Cancellation reason (optional)
    """
    return service.cancel_order(order_id, actor, cancel_data.reason)


@router.post("/{order_id}/rating", response_model=OrderResponse, summary="Rate order")
def rate_order(
    order_id: int,
    rating_data: OrderRating,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service)
):
    """
    Rate a delivered order (buyer only, once)

    - **rating**: 1 to 5
    - **comment**: Optional comment
    """
    return service.rate_order(order_id, actor, rating_data.rating, rating_data.comment)
