"""
Inventory Ledger - reservation, release and consumption of stock

Every ledger change is one conditional UPDATE guarded on the counter it
decrements, so two transactions racing for the last unit cannot both
succeed. Methods that touch several lines never commit: the caller commits
or rolls back the whole unit of work.
"""
import logging
from typing import Iterable, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.repositories.product_repository import ProductRepository, StoreRepository
from marketplace.publishers.event_publisher import EventPublisher
from marketplace.schemas.product import (
    InventoryResponse,
    ProductCreate,
    ProductResponse,
    StoreCreate,
    StoreResponse,
)
from marketplace.constants import UserRole
from marketplace.models.product import Product
from marketplace.security import Actor
from marketplace.exceptions import (
    DuplicateProductError,
    InsufficientStockError,
    InventoryMismatchError,
    PermissionDeniedError,
    ProductNotFoundError,
    StoreNotFoundError,
)

logger = logging.getLogger(__name__)

StockLine = Tuple[int, int]  # (product_id, quantity)


class InventoryService:
    """Service layer for the stock ledger"""

    def __init__(self, db: Session, event_publisher: Optional[EventPublisher] = None):
        self.db = db
        self.repository = ProductRepository(db)
        self.store_repository = StoreRepository(db)
        self.event_publisher = event_publisher or EventPublisher()

    def reserve_items(self, lines: Iterable[StockLine]) -> List[Product]:
        """
        Reserve stock for every line of one order

        Args:
            lines: (product_id, quantity) pairs

        Returns:
            Products whose available stock fell to or below their threshold

        Raises:
            ProductNotFoundError: If a product is missing or inactive
            InsufficientStockError: If a line asks for more than is available
        """
        crossed = []
        for product_id, quantity in lines:
            if not self.repository.reserve(product_id, quantity):
                product = self.repository.reload(product_id)
                if not product or not product.is_active:
                    raise ProductNotFoundError(f"Product {product_id} not found")
                raise InsufficientStockError(product_id, quantity, product.stock_quantity)

            product = self.repository.reload(product_id)
            was_above = product.stock_quantity + quantity > product.low_stock_threshold
            if was_above and product.stock_quantity <= product.low_stock_threshold:
                crossed.append(product)
        return crossed

    def release_items(self, lines: Iterable[StockLine]) -> None:
        """
        Return reserved stock to available

        Raises:
            InventoryMismatchError: If a product holds less reserved stock than released
        """
        for product_id, quantity in lines:
            if not self.repository.release(product_id, quantity):
                raise InventoryMismatchError(
                    f"Cannot release {quantity} of product {product_id}: reservation missing"
                )

    def consume_items(self, lines: Iterable[StockLine]) -> None:
        """
        Drop fulfilled quantities from reserved stock

        Raises:
            InventoryMismatchError: If a product holds less reserved stock than consumed
        """
        for product_id, quantity in lines:
            if not self.repository.consume(product_id, quantity):
                raise InventoryMismatchError(
                    f"Cannot consume {quantity} of product {product_id}: reservation missing"
                )

    def query(self, product_id: int) -> InventoryResponse:
        """Current counters of a product"""
        product = self.repository.get_by_id(product_id)
        if not product:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return self._to_inventory(product)

    def restock(self, product_id: int, quantity: int, actor: Actor) -> InventoryResponse:
        """Add stock to a product (store owner or staff)"""
        product = self.repository.get_by_id(product_id)
        if not product:
            raise ProductNotFoundError(f"Product {product_id} not found")
        self._ensure_can_manage(product.store_id, actor)

        try:
            self.repository.restock(product_id, quantity)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        product = self.repository.reload(product_id)
        logger.info("Restocked product %s by %s (available: %s)", product_id, quantity, product.stock_quantity)
        return self._to_inventory(product)

    def low_stock(self, store_id: Optional[int] = None) -> List[InventoryResponse]:
        """Inventory of products at or below their threshold"""
        return [self._to_inventory(p) for p in self.repository.get_low_stock(store_id)]

    def create_store(self, store_data: StoreCreate, actor: Actor) -> StoreResponse:
        """Open a store owned by the calling vendor (or staff)"""
        if actor.role != UserRole.VENDOR and not actor.is_staff:
            raise PermissionDeniedError("Only vendors can open a store")
        store = self.store_repository.create(store_data.name, actor.user_id)
        logger.info("Store %s (%s) opened by user %s", store.id, store.name, actor.user_id)
        return StoreResponse.model_validate(store)

    def get_store(self, store_id: int) -> StoreResponse:
        store = self.store_repository.get_by_id(store_id)
        if not store:
            raise StoreNotFoundError(f"Store {store_id} not found")
        return StoreResponse.model_validate(store)

    def create_product(self, product_data: ProductCreate, actor: Actor) -> ProductResponse:
        """Create a product in a store the actor manages"""
        self._ensure_can_manage(product_data.store_id, actor)
        try:
            product = self.repository.create(product_data)
        except IntegrityError:
            self.db.rollback()
            raise DuplicateProductError(f"A product with SKU '{product_data.sku}' already exists")
        return ProductResponse.model_validate(product)

    def get_product(self, product_id: int) -> ProductResponse:
        product = self.repository.get_by_id(product_id)
        if not product:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return ProductResponse.model_validate(product)

    def publish_low_stock(self, products: Iterable[Product]) -> None:
        """Announce products that crossed their low-stock threshold"""
        for product in products:
            logger.warning(
                "Low stock for product %s (%s): %s left, threshold %s",
                product.id, product.name, product.stock_quantity, product.low_stock_threshold
            )
            self.event_publisher.publish_low_stock({
                "product_id": product.id,
                "store_id": product.store_id,
                "product_name": product.name,
                "available": product.stock_quantity,
                "low_stock_threshold": product.low_stock_threshold,
            })

    def _ensure_can_manage(self, store_id: int, actor: Actor) -> None:
        store = self.store_repository.get_by_id(store_id)
        if not store:
            raise StoreNotFoundError(f"Store {store_id} not found")
        if not actor.is_staff and store.owner_id != actor.user_id:
            raise PermissionDeniedError("Only the store owner or staff can manage this store's stock")

    @staticmethod
    def _to_inventory(product: Product) -> InventoryResponse:
        return InventoryResponse(
            product_id=product.id,
            available=product.stock_quantity,
            reserved=product.reserved_quantity,
            low_stock_threshold=product.low_stock_threshold,
            low_stock=product.stock_quantity <= product.low_stock_threshold,
        )
