# marketplace/core/states.py
"""
Закрытые перечисления статусов и таблицы допустимых переходов.
Все проверки переходов идут только через эти таблицы.
"""
import enum


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    SELLER_CONFIRMED = "seller_confirmed"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED_NO_PAYMENT = "cancelled:no_payment"
    CANCELLED_PAYMENT_REJECTED = "cancelled:payment_rejected"


class CancelReason(str, enum.Enum):
    NO_PAYMENT = "no_payment"
    PAYMENT_REJECTED = "payment_rejected"

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(f"cancelled:{self.value}")


class PaymentMethod(str, enum.Enum):
    TRANSFER = "transfer"
    CASH = "cash"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    AWAITING_TRANSFER = "awaiting_transfer"
    PENDING_REVIEW = "pending_review"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    REFUNDED = "refunded"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ActorRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    COURIER = "courier"
    ADMIN = "admin"
    SYSTEM = "system"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.SELLER_CONFIRMED,
        OrderStatus.CANCELLED_NO_PAYMENT,
        OrderStatus.CANCELLED_PAYMENT_REJECTED,
    }),
    OrderStatus.SELLER_CONFIRMED: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED_NO_PAYMENT,
        OrderStatus.CANCELLED_PAYMENT_REJECTED,
    }),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED_NO_PAYMENT: frozenset(),
    OrderStatus.CANCELLED_PAYMENT_REJECTED: frozenset(),
}

# pending -> confirmed только для наличных: деньги получены при вручении заказа
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.AWAITING_TRANSFER, PaymentStatus.CONFIRMED}),
    PaymentStatus.AWAITING_TRANSFER: frozenset({PaymentStatus.PENDING_REVIEW}),
    PaymentStatus.PENDING_REVIEW: frozenset({PaymentStatus.CONFIRMED, PaymentStatus.REJECTED}),
    PaymentStatus.CONFIRMED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REJECTED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

DELIVERY_FORWARD_CHAIN: tuple[DeliveryStatus, ...] = (
    DeliveryStatus.PENDING,
    DeliveryStatus.ACCEPTED,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.DELIVERED,
)

DELIVERY_TERMINAL = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED})
DELIVERY_NON_TERMINAL = frozenset(set(DeliveryStatus) - DELIVERY_TERMINAL)
# Статусы, в которых заказ уже "закреплен" за конкретным курьером
DELIVERY_ENGAGED = frozenset({DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT})

ORDER_OPEN = frozenset({OrderStatus.PENDING, OrderStatus.SELLER_CONFIRMED})
ORDER_CANCELLED = frozenset({OrderStatus.CANCELLED_NO_PAYMENT, OrderStatus.CANCELLED_PAYMENT_REJECTED})


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def next_delivery_status(current: DeliveryStatus) -> DeliveryStatus | None:
    """Следующий шаг цепочки доставки или None для терминальных статусов."""
    if current in DELIVERY_TERMINAL:
        return None
    index = DELIVERY_FORWARD_CHAIN.index(current)
    return DELIVERY_FORWARD_CHAIN[index + 1]


def initial_payment_status(method: PaymentMethod) -> PaymentStatus:
    if method == PaymentMethod.TRANSFER:
        return PaymentStatus.AWAITING_TRANSFER
    return PaymentStatus.PENDING
