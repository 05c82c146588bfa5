# marketplace/services/order.py

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from marketplace.core.exceptions import DuplicateEntry, InvalidTransition, NotAuthorized, NotFound
from marketplace.core.states import (
    ORDER_CANCELLED, ORDER_OPEN, ActorRole, CancelReason, OrderStatus, PaymentMethod, PaymentStatus,
    can_transition_order, can_transition_payment,
)
from marketplace.crud import order as crud_order
from marketplace.models.order import Order
from marketplace.schemas.actor import Actor
from marketplace.schemas.events import LifecycleEvent
from marketplace.schemas.order import PaginatedOrders
from marketplace.services import loyalty as loyalty_service
from marketplace.services import redemption as redemption_service
from marketplace.services.events import EventBus
from marketplace.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


class OrderStateMachine:
    """
    Единственный владелец переходов заказа (статус и оплата) и их побочных эффектов.

    Каждый переход: прочитать -> проверить права и таблицу переходов ->
    UPDATE ... WHERE status = <ожидаемый> -> записи в журнал баллов -> commit ->
    событие. Если UPDATE не затронул строку, значит параллельный запрос успел
    раньше, и мы отвечаем InvalidTransition.
    """

    def __init__(self, db: Session, bus: EventBus):
        self.db = db
        self.bus = bus

    # --- Вспомогательные методы ---

    def _get(self, order_id: str) -> Order:
        order = crud_order.get_order(self.db, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def _authorize(self, order: Order, actor: Actor, allowed: Iterable[str]) -> None:
        """allowed - набор из 'buyer', 'seller', 'courier' (курьер заказа)."""
        if actor.is_privileged:
            return
        checks = {
            "buyer": actor.role == ActorRole.BUYER and actor.id == order.buyer_id,
            "seller": actor.role == ActorRole.SELLER and actor.id == order.seller_id,
            "courier": actor.role == ActorRole.COURIER and order.courier_id is not None and actor.id == order.courier_id,
        }
        if not any(checks[name] for name in allowed):
            logger.warning(f"Actor {actor.id} ({actor.role.value}) is not allowed to modify order {order.id}")
            raise NotAuthorized(f"Actor {actor.id} may not modify order {order.id}")

    def _require(self, order: Order, target: OrderStatus) -> None:
        if not can_transition_order(order.status, target):
            raise InvalidTransition(f"Order {order.id}: {order.status.value} -> {target.value} is not allowed")

    def _lost_race(self, order: Order, target: OrderStatus) -> InvalidTransition:
        self.db.rollback()
        self.db.refresh(order)
        logger.info(f"Order {order.id}: concurrent update won, now {order.status.value}; rejected -> {target.value}")
        return InvalidTransition(f"Order {order.id} changed concurrently (now {order.status.value})")

    def _emit(self, order: Order, from_status: str | None, to_status: str, actor: Actor, entity_type: str = "order"):
        self.bus.publish(self.db, LifecycleEvent(
            entity_type=entity_type,
            entity_id=order.id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor.id,
            order_id=order.id,
        ))

    def _transition(self, order_id: str, actor: Actor, allowed: Iterable[str], target: OrderStatus, **values) -> Order:
        order = self._get(order_id)
        self._authorize(order, actor, allowed)
        self._require(order, target)

        from_status = order.status
        if not crud_order.compare_and_set_status(self.db, order.id, from_status, target, **values):
            raise self._lost_race(order, target)
        self.db.commit()
        self.db.refresh(order)

        logger.info(f"Order {order.id}: {from_status.value} -> {target.value} by {actor.id}")
        self._emit(order, from_status.value, target.value, actor)
        return order

    # --- Основные переходы ---

    def confirm(self, order_id: str, actor: Actor) -> Order:
        """Продавец подтверждает заказ: pending -> seller_confirmed."""
        return self._transition(order_id, actor, ("seller",), OrderStatus.SELLER_CONFIRMED)

    def mark_delivered(self, order_id: str, actor: Actor) -> Order:
        """
        seller_confirmed -> delivered. Продавец может доставить сам, без предложения
        курьеру; курьер попадает сюда через событие о завершении доставки.
        """
        return self._transition(order_id, actor, ("seller", "courier"), OrderStatus.DELIVERED)

    def cancel(self, order_id: str, reason: CancelReason, actor: Actor) -> Order:
        """
        Отмена открытого заказа. Баллы начисляются только при завершении,
        поэтому отменять здесь нечего.
        """
        return self._transition(
            order_id, actor, ("buyer", "seller"), reason.order_status, cancel_reason=reason.value,
        )

    def complete(self, order_id: str, actor: Actor) -> Order:
        """
        delivered -> completed с начислением баллов.

        Идемпотентно: повторный вызов на завершенном заказе возвращает его без
        изменений и никогда не создает второе начисление.
        """
        order = self._get(order_id)
        self._authorize(order, actor, ("buyer", "seller"))

        if order.status == OrderStatus.COMPLETED:
            logger.info(f"Order {order.id} is already completed, complete() is a no-op.")
            return order
        self._require(order, OrderStatus.COMPLETED)

        # Перевод должен быть подтвержден продавцом; наличные получены при вручении
        values = {"completed_at": utcnow()}
        expected_payment = order.payment_status
        if order.payment_method == PaymentMethod.TRANSFER:
            if order.payment_status != PaymentStatus.CONFIRMED:
                raise InvalidTransition(f"Order {order.id}: transfer payment is {order.payment_status.value}, not confirmed")
        elif can_transition_payment(order.payment_status, PaymentStatus.CONFIRMED):
            values["payment_status"] = PaymentStatus.CONFIRMED

        points = redemption_service.estimate_points_earned(self.db, order.seller_id, order.total_cents).points_earned

        from_status = order.status
        won = crud_order.compare_and_set_status(
            self.db, order.id, from_status, OrderStatus.COMPLETED,
            expected_payment_status=expected_payment,
            require_points_unset=True,
            points_awarded=points,
            **values,
        )
        if not won:
            self.db.rollback()
            self.db.refresh(order)
            if order.status == OrderStatus.COMPLETED:
                # Параллельный complete уже все сделал
                return order
            raise InvalidTransition(f"Order {order.id} changed concurrently (now {order.status.value})")

        if points > 0:
            try:
                loyalty_service.append_earning(
                    self.db,
                    user_id=order.buyer_id,
                    order_id=order.id,
                    seller_id=order.seller_id,
                    amount=points,
                    description=f"Points earned for order {order.id}",
                )
            except DuplicateEntry:
                logger.warning(f"Order {order.id}: earning entry already present, keeping the existing one.")

        self.db.commit()
        self.db.refresh(order)

        logger.info(f"Order {order.id}: delivered -> completed by {actor.id}, awarded {points} points")
        self._emit(order, from_status.value, OrderStatus.COMPLETED.value, actor)
        return order

    # --- Ось оплаты ---

    def submit_payment_proof(self, order_id: str, actor: Actor) -> Order:
        """Покупатель загрузил чек перевода: awaiting_transfer -> pending_review."""
        order = self._get(order_id)
        self._authorize(order, actor, ("buyer",))

        if order.payment_method != PaymentMethod.TRANSFER or order.status not in ORDER_OPEN:
            raise InvalidTransition(f"Order {order.id} does not accept a transfer receipt")
        if order.expires_at and as_utc(order.expires_at) < utcnow():
            raise InvalidTransition(f"Order {order.id} expired at {order.expires_at}")

        return self._payment_transition(order, actor, PaymentStatus.PENDING_REVIEW, expected_status=order.status)

    def review_payment(self, order_id: str, approved: bool, actor: Actor, rejection_reason: str | None = None) -> Order:
        """
        Продавец проверяет чек. Отклонение отменяет открытый заказ
        (cancelled:payment_rejected) в той же транзакции.
        """
        order = self._get(order_id)
        self._authorize(order, actor, ("seller",))

        if approved:
            if order.status in ORDER_CANCELLED:
                raise InvalidTransition(f"Order {order.id} is {order.status.value}, its payment cannot be confirmed")
            return self._payment_transition(order, actor, PaymentStatus.CONFIRMED, expected_status=order.status)

        if not can_transition_payment(order.payment_status, PaymentStatus.REJECTED):
            raise InvalidTransition(f"Order {order.id}: payment {order.payment_status.value} cannot be rejected")

        from_payment = order.payment_status
        from_status = order.status
        cancel_order = from_status in ORDER_OPEN

        if cancel_order:
            target = OrderStatus.CANCELLED_PAYMENT_REJECTED
            won = crud_order.compare_and_set_status(
                self.db, order.id, from_status, target,
                expected_payment_status=from_payment,
                payment_status=PaymentStatus.REJECTED,
                cancel_reason=CancelReason.PAYMENT_REJECTED.value,
            )
        else:
            won = crud_order.compare_and_set_payment_status(self.db, order.id, from_payment, PaymentStatus.REJECTED)
        if not won:
            raise self._lost_race(order, OrderStatus.CANCELLED_PAYMENT_REJECTED)

        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order.id}: payment rejected by {actor.id}. Reason: {rejection_reason or 'not given'}")

        self._emit(order, from_payment.value, PaymentStatus.REJECTED.value, actor, entity_type="order_payment")
        if cancel_order:
            self._emit(order, from_status.value, OrderStatus.CANCELLED_PAYMENT_REJECTED.value, actor)
        return order

    def refund(self, order_id: str, actor: Actor) -> Order:
        """Возврат денег по подтвержденной оплате: confirmed -> refunded."""
        order = self._get(order_id)
        self._authorize(order, actor, ("seller",))
        return self._payment_transition(order, actor, PaymentStatus.REFUNDED)

    def _payment_transition(
        self, order: Order, actor: Actor, target: PaymentStatus, expected_status: OrderStatus | None = None,
    ) -> Order:
        if not can_transition_payment(order.payment_status, target):
            raise InvalidTransition(f"Order {order.id}: payment {order.payment_status.value} -> {target.value} is not allowed")

        from_payment = order.payment_status
        if not crud_order.compare_and_set_payment_status(
            self.db, order.id, from_payment, target, expected_status=expected_status,
        ):
            self.db.rollback()
            self.db.refresh(order)
            raise InvalidTransition(f"Order {order.id}: payment changed concurrently (now {order.payment_status.value})")
        self.db.commit()
        self.db.refresh(order)

        logger.info(f"Order {order.id}: payment {from_payment.value} -> {target.value} by {actor.id}")
        self._emit(order, from_payment.value, target.value, actor, entity_type="order_payment")
        return order

    # --- Реакции на события доставки ---

    def assign_courier(self, order_id: str, courier_id: str) -> Order:
        """Фиксирует курьера заказа после принятия предложения доставки."""
        order = self._get(order_id)
        if order.courier_id == courier_id:
            return order
        crud_order.set_courier(self.db, order.id, courier_id)
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order.id}: courier of record is now {courier_id}")
        return order

    def release_courier(self, order_id: str, courier_id: str) -> Order:
        """
        Снимает курьера с открытого заказа, когда его доставка отменена.
        У закрытых заказов курьер остается в истории.
        """
        order = self._get(order_id)
        if order.status not in ORDER_OPEN or order.courier_id != courier_id:
            return order
        if crud_order.clear_courier(self.db, order.id, courier_id):
            self.db.commit()
            logger.info(f"Order {order.id}: courier {courier_id} released")
        else:
            self.db.rollback()
        self.db.refresh(order)
        return order


def get_visible_order(db: Session, order_id: str, actor: Actor) -> Order:
    """Заказ, если актор - его участник. Чужой заказ выглядит как несуществующий."""
    order = crud_order.get_order(db, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    if actor.is_privileged or actor.id in (order.buyer_id, order.seller_id, order.courier_id):
        return order
    raise NotFound(f"Order {order_id} not visible to {actor.id}")


def list_orders(
    db: Session,
    actor: Actor,
    page: int,
    size: int,
    statuses: list[OrderStatus] | None = None,
) -> PaginatedOrders:
    """История заказов с точки зрения роли актора."""
    filters = {
        ActorRole.BUYER: {"buyer_id": actor.id},
        ActorRole.SELLER: {"seller_id": actor.id},
        ActorRole.COURIER: {"courier_id": actor.id},
    }.get(actor.role, {})

    orders, total = crud_order.get_orders_for_actor(
        db, statuses=statuses, skip=(page - 1) * size, limit=size, **filters
    )
    return PaginatedOrders(total_items=total, current_page=page, size=size, items=orders)
