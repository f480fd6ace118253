"""
Store API endpoints
"""
from fastapi import APIRouter, Depends, status

from marketplace.api.dependencies import get_actor, get_inventory_service
from marketplace.schemas.product import StoreCreate, StoreResponse
from marketplace.security import Actor
from marketplace.services.inventory_service import InventoryService

router = APIRouter(prefix="/stores", tags=["stores"])


@router.post("", response_model=StoreResponse, status_code=status.HTTP_201_CREATED, summary="Open store")
def create_store(
    store_data: StoreCreate,
    actor: Actor = Depends(get_actor),
    service: InventoryService = Depends(get_inventory_service)
):
    """
    Open a new store owned by the calling vendor

    - **name**: Store name (required)
    """
    return service.create_store(store_data, actor)


@router.get("/{store_id}", response_model=StoreResponse, summary="Get store by ID")
def get_store(
    store_id: int,
    service: InventoryService = Depends(get_inventory_service)
):
    """
    Retrieve a specific store by ID

    - **store_id**: Store ID
    """
    return service.get_store(store_id)
