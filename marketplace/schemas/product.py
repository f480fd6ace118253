"""
Pydantic schemas for stores, products and inventory
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from decimal import Decimal
from datetime import datetime


class StoreCreate(BaseModel):
    """Schema for creating a store (owner is the calling actor)"""
    name: str = Field(..., min_length=1, max_length=255, description="Store name")


class StoreResponse(BaseModel):
    """Schema for store response"""
    id: int
    name: str
    owner_id: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductBase(BaseModel):
    """Base Product schema with common fields"""
    name: str = Field(..., min_length=1, max_length=255, description="Product name")
    sku: Optional[str] = Field(None, max_length=50, description="Stock keeping unit")
    description: Optional[str] = Field(None, description="Product description")
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, description="Unit price")
    stock_quantity: int = Field(..., ge=0, description="Available stock (must be non-negative)")
    low_stock_threshold: int = Field(5, ge=0, description="Low-stock alert threshold")


class ProductCreate(ProductBase):
    """Schema for creating a new product"""
    store_id: int = Field(..., gt=0, description="Store ID")


class ProductResponse(ProductBase):
    """Schema for product response"""
    id: int
    store_id: int
    reserved_quantity: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StockUpdate(BaseModel):
    """Schema for restocking a product"""
    quantity: int = Field(..., gt=0, description="Quantity to add to available stock")


class InventoryResponse(BaseModel):
    """Schema for a product's inventory counters"""
    product_id: int
    available: int
    reserved: int
    low_stock_threshold: int
    low_stock: bool
