"""
Product and inventory API endpoints
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from marketplace.api.dependencies import get_actor, get_inventory_service
from marketplace.schemas.product import (
    InventoryResponse,
    ProductCreate,
    ProductResponse,
    StockUpdate,
)
from marketplace.security import Actor
from marketplace.services.inventory_service import InventoryService

router = APIRouter(prefix="/products", tags=["products"])


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED, summary="Create product")
def create_product(
    product_data: ProductCreate,
    actor: Actor = Depends(get_actor),
    service: InventoryService = Depends(get_inventory_service)
):
    """
    Create a new product in one of the caller's stores

    - **store_id**: Store ID (required)
    - **name**: Product name (required)
    - **price**: Unit price (required, must be positive)
    - **stock_quantity**: Initial available stock (required, non-negative)
    - **low_stock_threshold**: Low-stock alert threshold (default: 5)
    """
    return service.create_product(product_data, actor)


@router.get("/low-stock", response_model=List[InventoryResponse], summary="List low-stock products")
def get_low_stock(
    store_id: Optional[int] = Query(None, gt=0, description="Restrict to one store"),
    service: InventoryService = Depends(get_inventory_service)
):
    """
    Products whose available stock is at or below their threshold

    - **store_id**: Optional store filter
    """
    return service.low_stock(store_id)


@router.get("/{product_id}", response_model=ProductResponse, summary="Get product by ID")
def get_product(
    product_id: int,
    service: InventoryService = Depends(get_inventory_service)
):
    """
    Retrieve a specific product by ID

    - **product_id**: Product ID
    """
    return service.get_product(product_id)


@router.get("/{product_id}/inventory", response_model=InventoryResponse, summary="Get inventory")
def get_inventory(
    product_id: int,
    service: InventoryService = Depends(get_inventory_service)
):
    """
    Current available and reserved stock of a product

    - **product_id**: Product ID
    """
    return service.query(product_id)


@router.patch("/{product_id}/stock", response_model=InventoryResponse, summary="Restock product")
def restock_product(
    product_id: int,
    stock_update: StockUpdate,
    actor: Actor = Depends(get_actor),
    service: InventoryService = Depends(get_inventory_service)
):
    """
    Add stock to a product (store owner or staff)

    - **product_id**: Product ID
    - **quantity**: Units to add (required, positive)
    """
    return service.restock(product_id, stock_update.quantity, actor)
