"""
Store, Product and ProcessedEvent Repositories - Data Access Layer
"""
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import update

from marketplace.models.store import Store
from marketplace.models.product import Product, ProcessedEvent
from marketplace.schemas.product import ProductCreate


class StoreRepository:
    """Repository for Store CRUD operations"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, store_id: int) -> Optional[Store]:
        """Get store by ID"""
        return self.db.query(Store).filter(Store.id == store_id).first()

    def create(self, name: str, owner_id: int) -> Store:
        """Create new store"""
        store = Store(name=name, owner_id=owner_id)
        self.db.add(store)
        self.db.commit()
        self.db.refresh(store)
        return store


class ProductRepository:
    """Repository for Product CRUD and stock ledger operations

    Ledger methods issue a single conditional UPDATE and do not commit;
    the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, product_id: int) -> Optional[Product]:
        """Get product by ID"""
        return self.db.query(Product).filter(Product.id == product_id).first()

    def get_many(self, product_ids: List[int]) -> List[Product]:
        """Get products by IDs"""
        return self.db.query(Product).filter(Product.id.in_(product_ids)).all()

    def reload(self, product_id: int) -> Optional[Product]:
        """Re-read a product, overwriting any stale in-session state"""
        return self.db.get(Product, product_id, populate_existing=True)

    def create(self, product_data: ProductCreate) -> Product:
        """Create new product"""
        product = Product(**product_data.model_dump())
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        return product

    def get_low_stock(self, store_id: Optional[int] = None) -> List[Product]:
        """Active products at or below their low-stock threshold"""
        query = self.db.query(Product).filter(
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.low_stock_threshold
        )
        if store_id is not None:
            query = query.filter(Product.store_id == store_id)
        return query.order_by(Product.stock_quantity).all()

    def reserve(self, product_id: int, quantity: int) -> bool:
        """Move quantity from available to reserved if enough is available"""
        return self._execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.is_active.is_(True),
                Product.stock_quantity >= quantity
            )
            .values(
                stock_quantity=Product.stock_quantity - quantity,
                reserved_quantity=Product.reserved_quantity + quantity
            )
        )

    def release(self, product_id: int, quantity: int) -> bool:
        """Move quantity from reserved back to available"""
        return self._execute(
            update(Product)
            .where(Product.id == product_id, Product.reserved_quantity >= quantity)
            .values(
                stock_quantity=Product.stock_quantity + quantity,
                reserved_quantity=Product.reserved_quantity - quantity
            )
        )

    def consume(self, product_id: int, quantity: int) -> bool:
        """Drop quantity from reserved permanently"""
        return self._execute(
            update(Product)
            .where(Product.id == product_id, Product.reserved_quantity >= quantity)
            .values(reserved_quantity=Product.reserved_quantity - quantity)
        )

    def restock(self, product_id: int, quantity: int) -> bool:
        """Add quantity to available stock"""
        return self._execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
        )

    def _execute(self, statement) -> bool:
        result = self.db.execute(statement.execution_options(synchronize_session=False))
        return result.rowcount == 1


class ProcessedEventRepository:
    """Repository for tracking processed events (idempotency)"""

    def __init__(self, db: Session):
        self.db = db

    def is_processed(self, event_id: str) -> bool:
        """Check if event was already processed"""
        return self.db.query(ProcessedEvent).filter(
            ProcessedEvent.event_id == event_id
        ).first() is not None

    def mark_processed(self, event_id: str, event_type: str) -> ProcessedEvent:
        """Mark event as processed"""
        processed_event = ProcessedEvent(
            event_id=event_id,
            event_type=event_type
        )
        self.db.add(processed_event)
        self.db.commit()
        self.db.refresh(processed_event)
        return processed_event
