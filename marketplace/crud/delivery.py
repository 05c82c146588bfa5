# marketplace/crud/delivery.py

from datetime import datetime
from typing import List

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from marketplace.core.states import (
    DELIVERY_ENGAGED, DELIVERY_NON_TERMINAL, ORDER_CANCELLED, DeliveryStatus, OrderStatus,
)
from marketplace.models.delivery import DeliveryOffer
from marketplace.models.order import Order


def get_offer(db: Session, offer_id: str) -> DeliveryOffer | None:
    return db.get(DeliveryOffer, offer_id)

def create_offer(db: Session, order_id: str, courier_id: str | None, expires_at: datetime | None) -> DeliveryOffer:
    offer = DeliveryOffer(
        order_id=order_id,
        courier_id=courier_id,
        status=DeliveryStatus.PENDING,
        expires_at=expires_at,
    )
    db.add(offer)
    db.flush()
    return offer

def compare_and_set_status(
    db: Session,
    offer_id: str,
    expected_status: DeliveryStatus,
    new_status: DeliveryStatus,
    **values,
) -> bool:
    stmt = (
        update(DeliveryOffer)
        .where(DeliveryOffer.id == offer_id, DeliveryOffer.status == expected_status)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1

def get_engaged_offer_for_order(db: Session, order_id: str, exclude_offer_id: str | None = None) -> DeliveryOffer | None:
    query = db.query(DeliveryOffer).filter(
        DeliveryOffer.order_id == order_id,
        DeliveryOffer.status.in_(list(DELIVERY_ENGAGED)),
    )
    if exclude_offer_id:
        query = query.filter(DeliveryOffer.id != exclude_offer_id)
    return query.first()

def get_open_offers_for_order(db: Session, order_id: str) -> List[DeliveryOffer]:
    return db.query(DeliveryOffer).filter(
        DeliveryOffer.order_id == order_id,
        DeliveryOffer.status.in_(list(DELIVERY_NON_TERMINAL)),
    ).all()

def get_pending_siblings(db: Session, order_id: str, offer_id: str) -> List[DeliveryOffer]:
    return db.query(DeliveryOffer).filter(
        DeliveryOffer.order_id == order_id,
        DeliveryOffer.id != offer_id,
        DeliveryOffer.status == DeliveryStatus.PENDING,
    ).all()

def get_offers_for_courier(db: Session, courier_id: str, include_open: bool = True) -> List[DeliveryOffer]:
    """Предложения курьера: адресованные ему плюс (опционально) открытые для всех."""
    query = db.query(DeliveryOffer).filter(DeliveryOffer.status.in_(list(DELIVERY_NON_TERMINAL)))
    if include_open:
        query = query.filter(
            (DeliveryOffer.courier_id == courier_id) | (DeliveryOffer.courier_id.is_(None))
        )
    else:
        query = query.filter(DeliveryOffer.courier_id == courier_id)
    return query.order_by(DeliveryOffer.created_at.desc()).all()

def get_offers_for_order(db: Session, order_id: str) -> List[DeliveryOffer]:
    return db.query(DeliveryOffer).filter(
        DeliveryOffer.order_id == order_id
    ).order_by(DeliveryOffer.created_at.desc()).all()

# --- Выборки для сверки ---

def get_expired_pending_offers(db: Session, now: datetime) -> List[DeliveryOffer]:
    return db.query(DeliveryOffer).filter(
        DeliveryOffer.status == DeliveryStatus.PENDING,
        DeliveryOffer.expires_at.isnot(None),
        DeliveryOffer.expires_at < now,
    ).all()

def get_orphaned_offers(db: Session) -> List[DeliveryOffer]:
    """Незавершенные доставки, чей заказ уже вручен, отменен или завершен."""
    finished_statuses = list(ORDER_CANCELLED) + [OrderStatus.DELIVERED, OrderStatus.COMPLETED]
    return db.query(DeliveryOffer).join(Order, Order.id == DeliveryOffer.order_id).filter(
        DeliveryOffer.status.in_(list(DELIVERY_NON_TERMINAL)),
        Order.status.in_(finished_statuses),
    ).all()

def get_offers_missing_courier_of_record(db: Session) -> List[DeliveryOffer]:
    """Принятые или выполненные доставки, курьер которых не записан в заказ."""
    return db.query(DeliveryOffer).join(Order, Order.id == DeliveryOffer.order_id).filter(
        DeliveryOffer.status.in_([*DELIVERY_ENGAGED, DeliveryStatus.DELIVERED]),
        DeliveryOffer.courier_id.isnot(None),
        Order.status.in_([OrderStatus.SELLER_CONFIRMED, OrderStatus.DELIVERED]),
        or_(Order.courier_id.is_(None), Order.courier_id != DeliveryOffer.courier_id),
    ).all()

def get_delivered_offers_of_undelivered_orders(db: Session) -> List[DeliveryOffer]:
    return db.query(DeliveryOffer).join(Order, Order.id == DeliveryOffer.order_id).filter(
        DeliveryOffer.status == DeliveryStatus.DELIVERED,
        Order.status == OrderStatus.SELLER_CONFIRMED,
    ).all()
