# tests/services/test_order_lifecycle.py

from datetime import timedelta

import pytest

from marketplace.core.exceptions import InvalidTransition, NotAuthorized, NotFound
from marketplace.core.states import CancelReason, OrderStatus, PaymentMethod, PaymentStatus
from marketplace.models.loyalty import PointsHistoryEntry
from marketplace.models.order import Order
from marketplace.services import loyalty as loyalty_service
from marketplace.services import order as order_service
from marketplace.services.order import OrderStateMachine
from marketplace.utils.time import utcnow
from tests.factories import ADMIN, BUYER, COURIER, OTHER_BUYER, OTHER_COURIER, OTHER_SELLER, SELLER

# Порядок статусов вдоль основной ветки графа
FORWARD_RANK = {
    OrderStatus.PENDING.value: 0,
    OrderStatus.SELLER_CONFIRMED.value: 1,
    OrderStatus.DELIVERED.value: 2,
    OrderStatus.COMPLETED.value: 3,
}


@pytest.fixture
def machine(db_session, bus):
    return OrderStateMachine(db_session, bus)


def _earning_rows(db, order_id):
    return db.query(PointsHistoryEntry).filter(
        PointsHistoryEntry.order_id == order_id,
        PointsHistoryEntry.points_earned > 0,
    ).count()


# --- Подтверждение ---

def test_seller_confirms_pending_order(machine, create_order, dispatcher):
    order = create_order()

    result = machine.confirm(order.id, SELLER)

    assert result.status == OrderStatus.SELLER_CONFIRMED
    assert dispatcher.transitions("order", order.id) == [("pending", "seller_confirmed")]
    event = dispatcher.events[0]
    assert event.actor_id == SELLER.id
    assert event.order_id == order.id


@pytest.mark.parametrize("actor", [BUYER, OTHER_SELLER, COURIER])
def test_only_own_seller_can_confirm(machine, create_order, dispatcher, actor):
    order = create_order()

    with pytest.raises(NotAuthorized):
        machine.confirm(order.id, actor)

    assert machine.db.get(Order, order.id).status == OrderStatus.PENDING
    assert dispatcher.events == []


def test_admin_can_confirm_any_order(machine, create_order):
    order = create_order()
    assert machine.confirm(order.id, ADMIN).status == OrderStatus.SELLER_CONFIRMED


def test_confirm_twice_is_invalid_transition(machine, create_order, dispatcher):
    order = create_order()
    machine.confirm(order.id, SELLER)

    with pytest.raises(InvalidTransition):
        machine.confirm(order.id, SELLER)

    assert len(dispatcher.events) == 1


def test_concurrent_confirm_has_exactly_one_winner(db_session, other_session, bus, create_order, dispatcher):
    order = create_order()
    # Второй запрос уже прочитал заказ в статусе pending
    stale = other_session.get(Order, order.id)
    assert stale.status == OrderStatus.PENDING

    winner = OrderStateMachine(db_session, bus).confirm(order.id, SELLER)
    with pytest.raises(InvalidTransition):
        OrderStateMachine(other_session, bus).confirm(order.id, SELLER)

    assert winner.status == OrderStatus.SELLER_CONFIRMED
    assert stale.status == OrderStatus.SELLER_CONFIRMED
    assert dispatcher.transitions("order", order.id) == [("pending", "seller_confirmed")]


def test_unknown_order_is_not_found(machine):
    with pytest.raises(NotFound):
        machine.confirm("missing-order", SELLER)


# --- Доставка заказа ---

def test_seller_can_deliver_without_courier(machine, create_order):
    order = create_order(status=OrderStatus.SELLER_CONFIRMED)
    assert machine.mark_delivered(order.id, SELLER).status == OrderStatus.DELIVERED


def test_only_courier_of_record_can_mark_delivered(machine, create_order):
    order = create_order(status=OrderStatus.SELLER_CONFIRMED, courier_id=COURIER.id)

    with pytest.raises(NotAuthorized):
        machine.mark_delivered(order.id, OTHER_COURIER)
    with pytest.raises(NotAuthorized):
        machine.mark_delivered(order.id, BUYER)

    assert machine.mark_delivered(order.id, COURIER).status == OrderStatus.DELIVERED


def test_pending_order_cannot_be_delivered(machine, create_order):
    order = create_order()
    with pytest.raises(InvalidTransition):
        machine.mark_delivered(order.id, SELLER)


# --- Завершение и начисление баллов ---

def test_complete_awards_points_once(machine, create_order, rewards_config, dispatcher):
    rewards_config()
    order = create_order(status=OrderStatus.DELIVERED, subtotal_cents=100_000)

    result = machine.complete(order.id, BUYER)

    assert result.status == OrderStatus.COMPLETED
    assert result.points_awarded == 28
    assert result.completed_at is not None
    assert _earning_rows(machine.db, order.id) == 1
    assert loyalty_service.available_balance(machine.db, BUYER.id) == 28
    assert dispatcher.transitions("order", order.id) == [("delivered", "completed")]


def test_complete_twice_is_a_no_op(machine, create_order, rewards_config, dispatcher):
    rewards_config()
    order = create_order(status=OrderStatus.DELIVERED)

    machine.complete(order.id, BUYER)
    again = machine.complete(order.id, SELLER)

    assert again.status == OrderStatus.COMPLETED
    assert again.points_awarded == 28
    assert _earning_rows(machine.db, order.id) == 1
    assert len(dispatcher.transitions("order", order.id)) == 1


def test_concurrent_complete_leaves_single_earning(db_session, other_session, bus, create_order, rewards_config, dispatcher):
    rewards_config()
    order = create_order(status=OrderStatus.DELIVERED)
    other_session.get(Order, order.id)

    first = OrderStateMachine(db_session, bus).complete(order.id, BUYER)
    second = OrderStateMachine(other_session, bus).complete(order.id, SELLER)

    assert first.status == second.status == OrderStatus.COMPLETED
    assert second.points_awarded == 28
    assert _earning_rows(db_session, order.id) == 1
    assert loyalty_service.available_balance(db_session, BUYER.id) == 28
    assert dispatcher.transitions("order", order.id) == [("delivered", "completed")]


def test_complete_without_rewards_program_awards_nothing(machine, create_order):
    order = create_order(status=OrderStatus.DELIVERED)

    result = machine.complete(order.id, BUYER)

    assert result.status == OrderStatus.COMPLETED
    assert result.points_awarded == 0
    assert _earning_rows(machine.db, order.id) == 0


def test_points_are_earned_on_paid_total(machine, create_order, rewards_config):
    rewards_config()
    # 700 песо после скидки * 0.0286 = 20.02 -> 20
    order = create_order(status=OrderStatus.DELIVERED, subtotal_cents=100_000, discount_cents=30_000)

    assert machine.complete(order.id, BUYER).points_awarded == 20


def test_complete_requires_delivered_order(machine, create_order):
    order = create_order(status=OrderStatus.SELLER_CONFIRMED)

    with pytest.raises(InvalidTransition):
        machine.complete(order.id, BUYER)


def test_courier_cannot_complete(machine, create_order):
    order = create_order(status=OrderStatus.DELIVERED, courier_id=COURIER.id)

    with pytest.raises(NotAuthorized):
        machine.complete(order.id, COURIER)


def test_cash_order_payment_is_confirmed_on_completion(machine, create_order):
    order = create_order(status=OrderStatus.DELIVERED, payment_method=PaymentMethod.CASH)

    assert machine.complete(order.id, BUYER).payment_status == PaymentStatus.CONFIRMED


def test_transfer_order_needs_confirmed_payment_to_complete(machine, create_order):
    unpaid = create_order(status=OrderStatus.DELIVERED, payment_method=PaymentMethod.TRANSFER)
    paid = create_order(
        status=OrderStatus.DELIVERED,
        payment_method=PaymentMethod.TRANSFER,
        payment_status=PaymentStatus.CONFIRMED,
    )

    with pytest.raises(InvalidTransition):
        machine.complete(unpaid.id, BUYER)
    assert machine.complete(paid.id, BUYER).status == OrderStatus.COMPLETED


def test_observed_statuses_only_move_forward(machine, create_order):
    order = create_order()

    machine.confirm(order.id, SELLER)
    machine.mark_delivered(order.id, SELLER)
    machine.complete(order.id, BUYER)
    with pytest.raises(InvalidTransition):
        machine.confirm(order.id, SELLER)

    history = machine.bus.dispatcher.transitions("order", order.id)
    assert history == [
        ("pending", "seller_confirmed"),
        ("seller_confirmed", "delivered"),
        ("delivered", "completed"),
    ]
    ranks = [FORWARD_RANK[to_status] for _, to_status in history]
    assert ranks == sorted(ranks)


# --- Отмена ---

@pytest.mark.parametrize("actor", [BUYER, SELLER])
def test_participants_can_cancel_open_order(machine, create_order, actor):
    order = create_order(status=OrderStatus.SELLER_CONFIRMED)

    result = machine.cancel(order.id, CancelReason.NO_PAYMENT, actor)

    assert result.status == OrderStatus.CANCELLED_NO_PAYMENT
    assert result.cancel_reason == "no_payment"


@pytest.mark.parametrize("actor", [OTHER_BUYER, COURIER])
def test_outsiders_cannot_cancel(machine, create_order, actor):
    order = create_order(courier_id=COURIER.id)

    with pytest.raises(NotAuthorized):
        machine.cancel(order.id, CancelReason.NO_PAYMENT, actor)


@pytest.mark.parametrize("status", [OrderStatus.DELIVERED, OrderStatus.COMPLETED, OrderStatus.CANCELLED_NO_PAYMENT])
def test_closed_orders_cannot_be_cancelled(machine, create_order, status):
    order = create_order(status=status)

    with pytest.raises(InvalidTransition):
        machine.cancel(order.id, CancelReason.NO_PAYMENT, SELLER)


def test_cancel_keeps_spent_points_spent(machine, create_order, grant_points):
    grant_points(BUYER.id, 100)
    order = create_order(points_spent=40, discount_cents=1_400)
    loyalty_service.append_spending(machine.db, BUYER.id, order.id, SELLER.id, 40)
    machine.db.commit()

    machine.cancel(order.id, CancelReason.NO_PAYMENT, BUYER)

    assert loyalty_service.available_balance(machine.db, BUYER.id) == 60


# --- Оплата переводом ---

def test_transfer_payment_flow(machine, create_order, dispatcher):
    order = create_order(payment_method=PaymentMethod.TRANSFER, expires_at=utcnow() + timedelta(hours=1))

    machine.submit_payment_proof(order.id, BUYER)
    machine.review_payment(order.id, True, SELLER)
    result = machine.refund(order.id, SELLER)

    assert result.payment_status == PaymentStatus.REFUNDED
    assert result.status == OrderStatus.PENDING
    assert dispatcher.transitions("order_payment", order.id) == [
        ("awaiting_transfer", "pending_review"),
        ("pending_review", "confirmed"),
        ("confirmed", "refunded"),
    ]


def test_rejected_payment_cancels_open_order(machine, create_order, dispatcher):
    order = create_order(payment_method=PaymentMethod.TRANSFER)
    machine.submit_payment_proof(order.id, BUYER)

    result = machine.review_payment(order.id, False, SELLER, rejection_reason="Receipt is unreadable")

    assert result.payment_status == PaymentStatus.REJECTED
    assert result.status == OrderStatus.CANCELLED_PAYMENT_REJECTED
    assert result.cancel_reason == "payment_rejected"
    assert dispatcher.transitions("order", order.id) == [("pending", "cancelled:payment_rejected")]
    assert ("pending_review", "rejected") in dispatcher.transitions("order_payment", order.id)


def test_only_seller_reviews_payment(machine, create_order):
    order = create_order(payment_method=PaymentMethod.TRANSFER, payment_status=PaymentStatus.PENDING_REVIEW)

    with pytest.raises(NotAuthorized):
        machine.review_payment(order.id, True, BUYER)


def test_payment_cannot_be_confirmed_without_receipt(machine, create_order):
    order = create_order(payment_method=PaymentMethod.TRANSFER)

    with pytest.raises(InvalidTransition):
        machine.review_payment(order.id, True, SELLER)


def test_payment_of_cancelled_order_cannot_be_confirmed(machine, create_order, dispatcher):
    order = create_order(
        status=OrderStatus.CANCELLED_NO_PAYMENT,
        payment_method=PaymentMethod.TRANSFER,
        payment_status=PaymentStatus.PENDING_REVIEW,
    )

    with pytest.raises(InvalidTransition):
        machine.review_payment(order.id, True, SELLER)

    machine.db.refresh(order)
    assert order.payment_status == PaymentStatus.PENDING_REVIEW
    assert dispatcher.transitions("order_payment", order.id) == []


def test_payment_of_delivered_order_can_be_confirmed(machine, create_order):
    order = create_order(
        status=OrderStatus.DELIVERED,
        payment_method=PaymentMethod.TRANSFER,
        payment_status=PaymentStatus.PENDING_REVIEW,
    )

    assert machine.review_payment(order.id, True, SELLER).payment_status == PaymentStatus.CONFIRMED


def test_payment_approval_loses_to_concurrent_cancel(db_session, other_session, bus, create_order):
    order = create_order(payment_method=PaymentMethod.TRANSFER, payment_status=PaymentStatus.PENDING_REVIEW)
    # Продавец открыл чек, пока заказ еще был открыт
    other_session.get(Order, order.id)

    OrderStateMachine(db_session, bus).cancel(order.id, CancelReason.NO_PAYMENT, BUYER)
    with pytest.raises(InvalidTransition):
        OrderStateMachine(other_session, bus).review_payment(order.id, True, SELLER)

    db_session.refresh(order)
    assert order.status == OrderStatus.CANCELLED_NO_PAYMENT
    assert order.payment_status == PaymentStatus.PENDING_REVIEW


def test_receipt_after_payment_window_is_rejected(machine, create_order):
    order = create_order(payment_method=PaymentMethod.TRANSFER, expires_at=utcnow() - timedelta(minutes=1))

    with pytest.raises(InvalidTransition):
        machine.submit_payment_proof(order.id, BUYER)


def test_cash_order_takes_no_receipt(machine, create_order):
    order = create_order(payment_method=PaymentMethod.CASH)

    with pytest.raises(InvalidTransition):
        machine.submit_payment_proof(order.id, BUYER)


def test_refund_requires_confirmed_payment(machine, create_order):
    order = create_order(payment_method=PaymentMethod.TRANSFER)

    with pytest.raises(InvalidTransition):
        machine.refund(order.id, SELLER)


# --- Чтение ---

def test_order_is_visible_only_to_participants(db_session, create_order):
    order = create_order(courier_id=COURIER.id)

    for actor in (BUYER, SELLER, COURIER, ADMIN):
        assert order_service.get_visible_order(db_session, order.id, actor).id == order.id
    for actor in (OTHER_BUYER, OTHER_SELLER, OTHER_COURIER):
        with pytest.raises(NotFound):
            order_service.get_visible_order(db_session, order.id, actor)


def test_list_orders_depends_on_role(db_session, create_order):
    create_order()
    create_order(status=OrderStatus.SELLER_CONFIRMED)
    create_order(seller_id=OTHER_SELLER.id)
    create_order(buyer_id=OTHER_BUYER.id)

    assert order_service.list_orders(db_session, BUYER, page=1, size=10).total_items == 3
    assert order_service.list_orders(db_session, SELLER, page=1, size=10).total_items == 3
    assert order_service.list_orders(db_session, OTHER_SELLER, page=1, size=10).total_items == 1
    assert order_service.list_orders(db_session, COURIER, page=1, size=10).total_items == 0

    confirmed = order_service.list_orders(db_session, BUYER, page=1, size=10, statuses=[OrderStatus.SELLER_CONFIRMED])
    assert confirmed.total_items == 1
    assert confirmed.items[0].status == OrderStatus.SELLER_CONFIRMED

    second_page = order_service.list_orders(db_session, BUYER, page=2, size=2)
    assert second_page.total_items == 3
    assert len(second_page.items) == 1
