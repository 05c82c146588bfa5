# marketplace/routers/order.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.core.exceptions import InvalidInput
from marketplace.core.states import OrderStatus
from marketplace.dependencies import get_current_actor, get_db, get_event_bus
from marketplace.schemas.actor import Actor
from marketplace.schemas.order import (
    Order, OrderCancelRequest, OrderCompleteResponse, OrderPaymentResponse, OrderStatusResponse,
    PaginatedOrders, PaymentReviewRequest,
)
from marketplace.services import order as order_service
from marketplace.services.events import EventBus
from marketplace.services.order import OrderStateMachine

router = APIRouter()


def get_order_machine(db: Session = Depends(get_db), bus: EventBus = Depends(get_event_bus)) -> OrderStateMachine:
    return OrderStateMachine(db, bus)


@router.get("/orders", response_model=PaginatedOrders)
def get_orders_history(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, description="Фильтр по статусу заказа. Можно передать несколько через запятую (например, 'pending,seller_confirmed')."),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """
    Заказы текущего пользователя: покупатель видит свои покупки,
    продавец - свои продажи, курьер - назначенные ему доставки.
    """
    statuses = None
    if status:
        try:
            statuses = [OrderStatus(value.strip()) for value in status.split(",") if value.strip()]
        except ValueError:
            raise InvalidInput(f"Unknown order status in filter: {status}")
    return order_service.list_orders(db, current_actor, page, size, statuses)


@router.get("/orders/{order_id}", response_model=Order)
def get_single_order(
    order_id: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return order_service.get_visible_order(db, order_id, current_actor)


@router.post("/orders/{order_id}/confirm", response_model=OrderStatusResponse)
def confirm_order(
    order_id: str,
    current_actor: Actor = Depends(get_current_actor),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    order = machine.confirm(order_id, current_actor)
    return OrderStatusResponse(status=order.status)


@router.post("/orders/{order_id}/mark-delivered", response_model=OrderStatusResponse)
def mark_order_delivered(
    order_id: str,
    current_actor: Actor = Depends(get_current_actor),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    order = machine.mark_delivered(order_id, current_actor)
    return OrderStatusResponse(status=order.status)


@router.post("/orders/{order_id}/complete", response_model=OrderCompleteResponse)
def complete_order(
    order_id: str,
    current_actor: Actor = Depends(get_current_actor),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    """Повторный вызов на завершенном заказе возвращает тот же результат."""
    order = machine.complete(order_id, current_actor)
    return OrderCompleteResponse(status=order.status, points_awarded=order.points_awarded or 0)


@router.post("/orders/{order_id}/cancel", response_model=OrderStatusResponse)
def cancel_order(
    order_id: str,
    cancel_data: OrderCancelRequest,
    current_actor: Actor = Depends(get_current_actor),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    order = machine.cancel(order_id, cancel_data.reason, current_actor)
    return OrderStatusResponse(status=order.status)


# --- Оплата переводом ---

@router.post("/orders/{order_id}/payment-proof", response_model=OrderPaymentResponse)
def submit_payment_proof(
    order_id: str,
    current_actor: Actor = Depends(get_current_actor),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    """Покупатель сообщает, что отправил перевод и приложил чек."""
    order = machine.submit_payment_proof(order_id, current_actor)
    return OrderPaymentResponse(status=order.status, payment_status=order.payment_status)


@router.post("/orders/{order_id}/payment-review", response_model=OrderPaymentResponse)
def review_payment(
    order_id: str,
    review_data: PaymentReviewRequest,
    current_actor: Actor = Depends(get_current_actor),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    order = machine.review_payment(order_id, review_data.approved, current_actor, review_data.rejection_reason)
    return OrderPaymentResponse(status=order.status, payment_status=order.payment_status)


@router.post("/orders/{order_id}/refund", response_model=OrderPaymentResponse)
def refund_order(
    order_id: str,
    current_actor: Actor = Depends(get_current_actor),
    machine: OrderStateMachine = Depends(get_order_machine),
):
    order = machine.refund(order_id, current_actor)
    return OrderPaymentResponse(status=order.status, payment_status=order.payment_status)
