"""
Business constants: statuses, payment methods, fee schedule, roles
"""
from decimal import Decimal
from enum import Enum
from typing import Dict, NamedTuple


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    TMONEY = "tmoney"
    FLOOZ = "flooz"
    ORANGE_MONEY = "orange_money"
    MTN_MONEY = "mtn_money"
    MOOV_MONEY = "moov_money"
    WAVE = "wave"
    CASH_ON_DELIVERY = "cash_on_delivery"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    OTHER = "other"


MOBILE_MONEY_METHODS = frozenset({
    PaymentMethod.TMONEY,
    PaymentMethod.FLOOZ,
    PaymentMethod.ORANGE_MONEY,
    PaymentMethod.MTN_MONEY,
    PaymentMethod.MOOV_MONEY,
    PaymentMethod.WAVE,
})


class UserRole(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    MANAGER = "manager"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


STAFF_ROLES = frozenset({UserRole.MANAGER, UserRole.ADMIN, UserRole.SUPER_ADMIN})
ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


class FeeSchedule(NamedTuple):
    """Transaction fee: amount * rate clamped to [minimum, maximum]"""
    rate: Decimal
    minimum: Decimal
    maximum: Decimal


PAYMENT_FEES: Dict[PaymentMethod, FeeSchedule] = {
    PaymentMethod.TMONEY: FeeSchedule(Decimal("0.02"), Decimal("100"), Decimal("5000")),
    PaymentMethod.ORANGE_MONEY: FeeSchedule(Decimal("0.025"), Decimal("150"), Decimal("7500")),
    PaymentMethod.FLOOZ: FeeSchedule(Decimal("0.02"), Decimal("100"), Decimal("5000")),
    PaymentMethod.MTN_MONEY: FeeSchedule(Decimal("0.03"), Decimal("200"), Decimal("10000")),
    PaymentMethod.MOOV_MONEY: FeeSchedule(Decimal("0.02"), Decimal("100"), Decimal("5000")),
    PaymentMethod.WAVE: FeeSchedule(Decimal("0.01"), Decimal("100"), Decimal("3000")),
    PaymentMethod.CASH_ON_DELIVERY: FeeSchedule(Decimal("0.01"), Decimal("500"), Decimal("2000")),
    PaymentMethod.BANK_TRANSFER: FeeSchedule(Decimal("0.005"), Decimal("1000"), Decimal("15000")),
    PaymentMethod.CARD: FeeSchedule(Decimal("0.035"), Decimal("300"), Decimal("12000")),
    PaymentMethod.OTHER: FeeSchedule(Decimal("0"), Decimal("0"), Decimal("0")),
}

MONEY_QUANTUM = Decimal("0.01")
