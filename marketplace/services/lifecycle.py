# marketplace/services/lifecycle.py
"""
Подписки между машинами состояний.

- доставка принята      -> заказ запоминает курьера
- доставка сорвана      -> открытый заказ освобождается от курьера
- доставка вручена      -> заказ переходит в delivered от имени курьера
- заказ вручен/закрыт   -> незавершенные доставки заказа отменяются
"""
import logging

from sqlalchemy.orm import Session

from marketplace.core.states import DELIVERY_ENGAGED, ORDER_CANCELLED, ActorRole, DeliveryStatus, OrderStatus
from marketplace.crud import delivery as crud_delivery
from marketplace.schemas.actor import SYSTEM_ACTOR, Actor
from marketplace.schemas.events import LifecycleEvent
from marketplace.services.delivery import DeliveryOfferStateMachine
from marketplace.services.events import EventBus
from marketplace.services.notification import NotificationDispatcher
from marketplace.services.order import OrderStateMachine

logger = logging.getLogger(__name__)


def record_courier(db: Session, event: LifecycleEvent, bus: EventBus) -> None:
    offer = crud_delivery.get_offer(db, event.entity_id)
    if offer is None or offer.courier_id is None:
        logger.warning(f"Accepted offer {event.entity_id} has no courier, order {event.order_id} left as is.")
        return
    OrderStateMachine(db, bus).assign_courier(offer.order_id, offer.courier_id)


def release_courier(db: Session, event: LifecycleEvent, bus: EventBus) -> None:
    # Отмена pending-предложения курьера не затрагивает
    if event.from_status not in {status.value for status in DELIVERY_ENGAGED}:
        return
    offer = crud_delivery.get_offer(db, event.entity_id)
    if offer is None or offer.courier_id is None:
        return
    OrderStateMachine(db, bus).release_courier(offer.order_id, offer.courier_id)


def deliver_order(db: Session, event: LifecycleEvent, bus: EventBus) -> None:
    offer = crud_delivery.get_offer(db, event.entity_id)
    if offer is None or offer.courier_id is None:
        return
    courier = Actor(id=offer.courier_id, role=ActorRole.COURIER)
    OrderStateMachine(db, bus).mark_delivered(offer.order_id, courier)


def close_open_offers(db: Session, event: LifecycleEvent, bus: EventBus) -> None:
    DeliveryOfferStateMachine(db, bus).cancel_open_offers_for_order(event.entity_id, SYSTEM_ACTOR)


def build_event_bus(dispatcher: NotificationDispatcher) -> EventBus:
    bus = EventBus(dispatcher)
    bus.subscribe("delivery_offer", DeliveryStatus.ACCEPTED.value, record_courier)
    bus.subscribe("delivery_offer", DeliveryStatus.DELIVERED.value, deliver_order)
    bus.subscribe("delivery_offer", DeliveryStatus.CANCELLED.value, release_courier)

    closing_statuses = [OrderStatus.DELIVERED, OrderStatus.COMPLETED, *ORDER_CANCELLED]
    for status in closing_statuses:
        bus.subscribe("order", status.value, close_open_offers)
    return bus
