"""
Exception hierarchy for the marketplace domain

Domain errors derive from MarketplaceError and are recoverable at the call
boundary. Infrastructure failures derive from InfrastructureError.
"""


class MarketplaceError(Exception):
    """Base exception for domain errors"""
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__


class ValidationError(MarketplaceError):
    """Malformed input"""
    status_code = 422


class InsufficientStockError(MarketplaceError):
    """Requested quantity exceeds available stock"""
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock. Product ID: {product_id}, "
            f"Requested: {requested}, Available: {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InventoryMismatchError(MarketplaceError):
    """Released or consumed more stock than was reserved"""
    status_code = 500


class InvalidTransitionError(MarketplaceError):
    """Illegal status transition"""
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class OrderNotCancellableError(MarketplaceError):
    """Order is past the point where it can be cancelled"""
    status_code = 409


class OrderAlreadyRatedError(MarketplaceError):
    """Order already carries a rating"""
    status_code = 409


class InvalidRefundAmountError(MarketplaceError):
    """Refund exceeds the paid amount or payment is not refundable"""
    status_code = 422


class InvalidSignatureError(MarketplaceError):
    """Webhook signature verification failed"""
    status_code = 401


class ConflictingWebhookError(MarketplaceError):
    """Webhook disagrees with the already recorded provider result"""
    status_code = 409


class DuplicateProductError(MarketplaceError):
    """A product with this SKU already exists"""
    status_code = 409


class PermissionDeniedError(MarketplaceError):
    """Actor is not allowed to perform this operation"""
    status_code = 403


class NotFoundError(MarketplaceError):
    """Referenced entity does not exist"""
    status_code = 404


class OrderNotFoundError(NotFoundError):
    """Order not found"""


class PaymentNotFoundError(NotFoundError):
    """Payment not found"""


class ProductNotFoundError(NotFoundError):
    """Product not found"""


class StoreNotFoundError(NotFoundError):
    """Store not found"""


class InfrastructureError(Exception):
    """Base exception for infrastructure failures"""
    status_code = 503


class PaymentGatewayError(InfrastructureError):
    """Payment gateway returned an unexpected response"""
    status_code = 502


class PaymentGatewayUnavailableError(InfrastructureError):
    """Payment gateway is unavailable"""
