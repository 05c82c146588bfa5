# marketplace/services/delivery.py

import logging
from datetime import timedelta
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.exceptions import ConflictingOffer, InvalidTransition, NotAuthorized, NotFound
from marketplace.core.states import (
    DELIVERY_ENGAGED, DELIVERY_TERMINAL, ActorRole, DeliveryStatus, OrderStatus, next_delivery_status,
)
from marketplace.crud import delivery as crud_delivery
from marketplace.crud import order as crud_order
from marketplace.models.delivery import DeliveryOffer
from marketplace.models.order import Order
from marketplace.schemas.actor import Actor
from marketplace.schemas.events import LifecycleEvent
from marketplace.services.events import EventBus
from marketplace.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


class DeliveryOfferStateMachine:
    """
    Переходы предложения доставки: pending -> accepted -> picked_up -> in_transit -> delivered,
    cancelled - из любого нетерминального статуса.

    С заказом машина связана только через id и события: о вручении заказ
    узнает от подписчика на событие delivered, а не прямым вызовом.
    """

    def __init__(self, db: Session, bus: EventBus):
        self.db = db
        self.bus = bus

    def _get(self, offer_id: str) -> DeliveryOffer:
        offer = crud_delivery.get_offer(self.db, offer_id)
        if offer is None:
            raise NotFound(f"Delivery offer {offer_id} not found")
        return offer

    def _get_order(self, order_id: str) -> Order:
        order = crud_order.get_order(self.db, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def _emit(self, offer: DeliveryOffer, from_status: DeliveryStatus | None, to_status: DeliveryStatus, actor: Actor):
        self.bus.publish(self.db, LifecycleEvent(
            entity_type="delivery_offer",
            entity_id=offer.id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            actor_id=actor.id,
            order_id=offer.order_id,
        ))

    def _is_courier_of_record(self, offer: DeliveryOffer, actor: Actor) -> bool:
        return actor.role == ActorRole.COURIER and offer.courier_id is not None and offer.courier_id == actor.id

    def request_delivery(self, order_id: str, actor: Actor, courier_id: str | None = None) -> DeliveryOffer:
        """
        Продавец открывает предложение доставки для подтвержденного заказа.
        Без courier_id предложение видно всем курьерам.
        """
        order = self._get_order(order_id)
        if not actor.is_privileged and not (actor.role == ActorRole.SELLER and actor.id == order.seller_id):
            raise NotAuthorized(f"Actor {actor.id} may not request delivery for order {order.id}")
        if order.status != OrderStatus.SELLER_CONFIRMED:
            raise InvalidTransition(f"Order {order.id} is {order.status.value}, delivery needs seller_confirmed")

        offer = crud_delivery.create_offer(
            self.db,
            order_id=order.id,
            courier_id=courier_id,
            expires_at=utcnow() + timedelta(minutes=settings.DELIVERY_OFFER_TTL_MINUTES),
        )
        self.db.commit()
        self.db.refresh(offer)

        logger.info(f"Delivery offer {offer.id} opened for order {order.id} (courier: {courier_id or 'any'})")
        self._emit(offer, None, DeliveryStatus.PENDING, actor)
        return offer

    def accept(self, offer_id: str, courier_id: str, actor: Actor) -> DeliveryOffer:
        """
        Курьер принимает предложение и становится курьером заказа.

        Проверка "нет другой занятой доставки" и запись выполняются атомарно:
        UPDATE по ожидаемому статусу плюс частичный уникальный индекс. Остальные
        pending-предложения этого заказа отменяются в той же транзакции.
        """
        if not actor.is_privileged and not (actor.role == ActorRole.COURIER and actor.id == courier_id):
            raise NotAuthorized(f"Actor {actor.id} may not accept offers as courier {courier_id}")

        offer = self._get(offer_id)
        if offer.status != DeliveryStatus.PENDING:
            raise InvalidTransition(f"Delivery offer {offer.id} is {offer.status.value}, not pending")
        if offer.expires_at and as_utc(offer.expires_at) < utcnow():
            raise InvalidTransition(f"Delivery offer {offer.id} expired at {offer.expires_at}")
        if offer.courier_id is not None and offer.courier_id != courier_id:
            raise NotAuthorized(f"Delivery offer {offer.id} is addressed to another courier")

        order = self._get_order(offer.order_id)
        if order.status != OrderStatus.SELLER_CONFIRMED:
            raise InvalidTransition(f"Order {order.id} is {order.status.value}, offer {offer.id} cannot be accepted")

        engaged = crud_delivery.get_engaged_offer_for_order(self.db, offer.order_id, exclude_offer_id=offer.id)
        if engaged is not None:
            logger.info(f"Offer {offer.id}: order {offer.order_id} already has engaged offer {engaged.id}")
            raise ConflictingOffer(f"Order {offer.order_id} already has an active delivery {engaged.id}")

        try:
            won = crud_delivery.compare_and_set_status(
                self.db, offer.id, DeliveryStatus.PENDING, DeliveryStatus.ACCEPTED, courier_id=courier_id,
            )
        except IntegrityError:
            # Параллельный accept другого предложения успел занять заказ
            self.db.rollback()
            raise ConflictingOffer(f"Order {offer.order_id} was taken by another courier concurrently")
        if not won:
            self.db.rollback()
            self.db.refresh(offer)
            raise InvalidTransition(f"Delivery offer {offer.id} changed concurrently (now {offer.status.value})")

        siblings = crud_delivery.get_pending_siblings(self.db, offer.order_id, offer.id)
        cancelled = [
            sibling for sibling in siblings
            if crud_delivery.compare_and_set_status(self.db, sibling.id, DeliveryStatus.PENDING, DeliveryStatus.CANCELLED)
        ]

        self.db.commit()
        self.db.refresh(offer)
        for sibling in cancelled:
            self.db.refresh(sibling)

        logger.info(f"Delivery offer {offer.id} accepted by courier {courier_id}, {len(cancelled)} sibling offers cancelled")
        self._emit(offer, DeliveryStatus.PENDING, DeliveryStatus.ACCEPTED, actor)
        for sibling in cancelled:
            self._emit(sibling, DeliveryStatus.PENDING, DeliveryStatus.CANCELLED, actor)
        return offer

    def advance(self, offer_id: str, to_status: DeliveryStatus, actor: Actor) -> DeliveryOffer:
        """Только следующий шаг цепочки, пропуск шага - InvalidTransition."""
        offer = self._get(offer_id)
        if not actor.is_privileged and not self._is_courier_of_record(offer, actor):
            raise NotAuthorized(f"Actor {actor.id} is not the courier of offer {offer.id}")

        # pending -> accepted только через accept()
        expected_next = next_delivery_status(offer.status) if offer.status in DELIVERY_ENGAGED else None
        if expected_next is None or to_status != expected_next:
            raise InvalidTransition(f"Delivery offer {offer.id}: {offer.status.value} -> {to_status.value} is not allowed")

        from_status = offer.status
        if not crud_delivery.compare_and_set_status(self.db, offer.id, from_status, to_status):
            self.db.rollback()
            self.db.refresh(offer)
            raise InvalidTransition(f"Delivery offer {offer.id} changed concurrently (now {offer.status.value})")
        self.db.commit()
        self.db.refresh(offer)

        logger.info(f"Delivery offer {offer.id}: {from_status.value} -> {to_status.value} by {actor.id}")
        self._emit(offer, from_status, to_status, actor)
        return offer

    def cancel(self, offer_id: str, actor: Actor) -> DeliveryOffer:
        offer = self._get(offer_id)
        if not actor.is_privileged and not self._is_courier_of_record(offer, actor):
            order = self._get_order(offer.order_id)
            if not (actor.role == ActorRole.SELLER and actor.id == order.seller_id):
                raise NotAuthorized(f"Actor {actor.id} may not cancel delivery offer {offer.id}")

        if offer.status in DELIVERY_TERMINAL:
            raise InvalidTransition(f"Delivery offer {offer.id} is already {offer.status.value}")

        from_status = offer.status
        if not crud_delivery.compare_and_set_status(self.db, offer.id, from_status, DeliveryStatus.CANCELLED):
            self.db.rollback()
            self.db.refresh(offer)
            raise InvalidTransition(f"Delivery offer {offer.id} changed concurrently (now {offer.status.value})")
        self.db.commit()
        self.db.refresh(offer)

        logger.info(f"Delivery offer {offer.id}: {from_status.value} -> cancelled by {actor.id}")
        self._emit(offer, from_status, DeliveryStatus.CANCELLED, actor)
        return offer

    def cancel_open_offers_for_order(self, order_id: str, actor: Actor) -> List[DeliveryOffer]:
        """Закрывает все незавершенные доставки заказа (заказ отменен или уже завершен)."""
        cancelled = []
        for offer in crud_delivery.get_open_offers_for_order(self.db, order_id):
            from_status = offer.status
            if crud_delivery.compare_and_set_status(self.db, offer.id, from_status, DeliveryStatus.CANCELLED):
                cancelled.append((offer, from_status))
        if not cancelled:
            return []

        self.db.commit()
        for offer, from_status in cancelled:
            self.db.refresh(offer)
            logger.info(f"Delivery offer {offer.id}: {from_status.value} -> cancelled, order {order_id} is closed")
            self._emit(offer, from_status, DeliveryStatus.CANCELLED, actor)
        return [offer for offer, _ in cancelled]


def list_offers(db: Session, actor: Actor, order_id: str | None = None) -> List[DeliveryOffer]:
    """Курьер видит свои и открытые предложения, продавец - предложения своего заказа."""
    if order_id:
        order = crud_order.get_order(db, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        if not actor.is_privileged and actor.id not in (order.seller_id, order.courier_id):
            raise NotFound(f"Order {order_id} not visible to {actor.id}")
        return crud_delivery.get_offers_for_order(db, order_id)

    if actor.role == ActorRole.COURIER:
        return crud_delivery.get_offers_for_courier(db, actor.id)
    return []
