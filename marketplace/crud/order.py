# marketplace/crud/order.py

from datetime import datetime
from typing import List

from sqlalchemy import exists, or_, update
from sqlalchemy.orm import Session

from marketplace.core.states import DELIVERY_ENGAGED, ORDER_OPEN, DeliveryStatus, OrderStatus, PaymentStatus
from marketplace.models.delivery import DeliveryOffer
from marketplace.models.loyalty import PointsHistoryEntry
from marketplace.models.order import Order, OrderItem


def get_order(db: Session, order_id: str) -> Order | None:
    return db.get(Order, order_id)

def create_order(db: Session, items: List[dict], **values) -> Order:
    """
    Создает заказ вместе с позициями и добавляет в сессию.
    Требует внешнего вызова db.commit().
    """
    order = Order(**values)
    order.items = [OrderItem(**item) for item in items]
    db.add(order)
    db.flush()
    return order

def compare_and_set_status(
    db: Session,
    order_id: str,
    expected_status: OrderStatus,
    new_status: OrderStatus,
    expected_payment_status: PaymentStatus | None = None,
    require_points_unset: bool = False,
    **values,
) -> bool:
    """
    Атомарно меняет статус, только если он все еще равен ожидаемому.
    Возвращает False, если другой запрос успел изменить заказ раньше.
    """
    conditions = [Order.id == order_id, Order.status == expected_status]
    if expected_payment_status is not None:
        conditions.append(Order.payment_status == expected_payment_status)
    if require_points_unset:
        conditions.append(Order.points_awarded.is_(None))

    stmt = (
        update(Order)
        .where(*conditions)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1

def compare_and_set_payment_status(
    db: Session,
    order_id: str,
    expected_payment_status: PaymentStatus,
    new_payment_status: PaymentStatus,
    expected_status: OrderStatus | None = None,
    **values,
) -> bool:
    conditions = [Order.id == order_id, Order.payment_status == expected_payment_status]
    if expected_status is not None:
        conditions.append(Order.status == expected_status)

    stmt = (
        update(Order)
        .where(*conditions)
        .values(payment_status=new_payment_status, **values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1

def set_courier(db: Session, order_id: str, courier_id: str) -> bool:
    stmt = (
        update(Order)
        .where(Order.id == order_id)
        .values(courier_id=courier_id)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1

def clear_courier(db: Session, order_id: str, courier_id: str) -> bool:
    """Снимает курьера, только если за заказом все еще записан именно он."""
    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.courier_id == courier_id)
        .values(courier_id=None)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1

def get_orders_for_actor(
    db: Session,
    buyer_id: str | None = None,
    seller_id: str | None = None,
    courier_id: str | None = None,
    statuses: List[OrderStatus] | None = None,
    skip: int = 0,
    limit: int = 20,
) -> tuple[List[Order], int]:
    """Пагинированный список заказов покупателя, продавца или курьера (от новых к старым)."""
    query = db.query(Order)
    if buyer_id:
        query = query.filter(Order.buyer_id == buyer_id)
    if seller_id:
        query = query.filter(Order.seller_id == seller_id)
    if courier_id:
        query = query.filter(Order.courier_id == courier_id)
    if statuses:
        query = query.filter(Order.status.in_(statuses))
    total = query.count()
    orders = query.order_by(Order.created_at.desc()).offset(skip).limit(limit).all()
    return orders, total

# --- Выборки для сверки ---

def get_expired_unpaid_orders(db: Session, now: datetime) -> List[Order]:
    return db.query(Order).filter(
        Order.status == OrderStatus.PENDING,
        Order.expires_at.isnot(None),
        Order.expires_at < now,
        or_(
            Order.payment_status == PaymentStatus.PENDING,
            Order.payment_status == PaymentStatus.AWAITING_TRANSFER,
        ),
    ).all()

def get_completed_orders_missing_earning(db: Session) -> List[Order]:
    """Завершенные заказы с начисленными баллами, для которых нет записи в журнале."""
    has_earning = exists().where(
        PointsHistoryEntry.order_id == Order.id,
        PointsHistoryEntry.points_earned > 0,
    )
    return db.query(Order).filter(
        Order.status == OrderStatus.COMPLETED,
        Order.points_awarded > 0,
        ~has_earning,
    ).all()

def get_orders_with_stale_courier(db: Session) -> List[Order]:
    """Открытые заказы, чей курьер больше не держит ни одной живой или выполненной доставки."""
    holds_offer = exists().where(
        DeliveryOffer.order_id == Order.id,
        DeliveryOffer.courier_id == Order.courier_id,
        DeliveryOffer.status.in_([*DELIVERY_ENGAGED, DeliveryStatus.DELIVERED]),
    )
    return db.query(Order).filter(
        Order.status.in_(list(ORDER_OPEN)),
        Order.courier_id.isnot(None),
        ~holds_offer,
    ).all()
