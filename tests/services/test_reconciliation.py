# tests/services/test_reconciliation.py

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from marketplace.core.states import DeliveryStatus, OrderStatus, PaymentMethod, PaymentStatus
from marketplace.crud import delivery as crud_delivery
from marketplace.crud import loyalty as crud_loyalty
from marketplace.models.order import Order
from marketplace.schemas.admin import NegativeBalance
from marketplace.services import loyalty as loyalty_service
from marketplace.services import reconciliation as reconciliation_service
from marketplace.services.delivery import DeliveryOfferStateMachine
from marketplace.services.order import OrderStateMachine
from marketplace.services.reconciliation import run_reconciliation
from marketplace.utils.time import utcnow
from tests.factories import BUYER, COURIER, OTHER_BUYER, OTHER_COURIER, SELLER


def _offer(db, order, status=DeliveryStatus.PENDING, courier_id=None, expires_at=None):
    offer = crud_delivery.create_offer(db, order_id=order.id, courier_id=courier_id, expires_at=expires_at)
    offer.status = status
    db.commit()
    return offer


def test_unpaid_orders_past_payment_window_are_cancelled(db_session, bus, create_order):
    expired = create_order(payment_method=PaymentMethod.TRANSFER, expires_at=utcnow() - timedelta(hours=1))
    fresh = create_order(payment_method=PaymentMethod.TRANSFER, expires_at=utcnow() + timedelta(hours=1))
    under_review = create_order(
        payment_method=PaymentMethod.TRANSFER,
        payment_status=PaymentStatus.PENDING_REVIEW,
        expires_at=utcnow() - timedelta(hours=1),
    )

    report = run_reconciliation(db_session, bus)

    assert report.expired_orders_cancelled == 1
    assert expired.status == OrderStatus.CANCELLED_NO_PAYMENT
    assert expired.cancel_reason == "no_payment"
    db_session.refresh(fresh)
    db_session.refresh(under_review)
    assert fresh.status == OrderStatus.PENDING
    assert under_review.status == OrderStatus.PENDING


def test_expired_pending_offers_are_cancelled(db_session, bus, create_order, dispatcher):
    order = create_order(status=OrderStatus.SELLER_CONFIRMED)
    stale = _offer(db_session, order, expires_at=utcnow() - timedelta(minutes=5))
    live = _offer(db_session, order, expires_at=utcnow() + timedelta(minutes=5))

    report = run_reconciliation(db_session, bus)

    assert report.expired_offers_cancelled == 1
    assert stale.status == DeliveryStatus.CANCELLED
    db_session.refresh(live)
    assert live.status == DeliveryStatus.PENDING
    event = next(e for e in dispatcher.events if e.entity_id == stale.id)
    assert event.actor_id == "system"


def test_offers_of_closed_orders_are_cancelled(db_session, bus, create_order):
    completed = create_order(status=OrderStatus.COMPLETED, points_awarded=0)
    cancelled = create_order(status=OrderStatus.CANCELLED_NO_PAYMENT)
    in_transit = _offer(db_session, completed, status=DeliveryStatus.IN_TRANSIT, courier_id=COURIER.id)
    pending = _offer(db_session, cancelled)

    report = run_reconciliation(db_session, bus)

    assert report.orphaned_offers_cancelled == 2
    assert in_transit.status == DeliveryStatus.CANCELLED
    assert pending.status == DeliveryStatus.CANCELLED


def test_offers_left_on_delivered_order_are_cancelled(db_session, bus, create_order):
    order = create_order(status=OrderStatus.DELIVERED, courier_id=COURIER.id)
    pending = _offer(db_session, order)

    report = run_reconciliation(db_session, bus)

    assert report.orphaned_offers_cancelled == 1
    assert pending.status == DeliveryStatus.CANCELLED


# --- Потерянные реакции на события доставки ---

def _deliveries_with_accepted_offer(db, bus, order):
    deliveries = DeliveryOfferStateMachine(db, bus)
    offer = deliveries.request_delivery(order.id, SELLER)
    deliveries.accept(offer.id, COURIER.id, COURIER)
    return deliveries, offer


def test_lost_courier_assignment_is_restored(mocker, db_session, bus, create_order):
    order = create_order(status=OrderStatus.SELLER_CONFIRMED)
    mocker.patch.object(OrderStateMachine, "assign_courier", side_effect=RuntimeError("worker died"))
    _, offer = _deliveries_with_accepted_offer(db_session, bus, order)
    assert db_session.get(Order, order.id).courier_id is None
    mocker.stopall()

    report = run_reconciliation(db_session, bus)

    assert report.couriers_recorded == 1
    assert report.couriers_released == 0
    assert db_session.get(Order, order.id).courier_id == COURIER.id
    assert offer.status == DeliveryStatus.ACCEPTED


def test_lost_delivery_is_replayed_on_order(mocker, db_session, bus, create_order, dispatcher):
    order = create_order(status=OrderStatus.SELLER_CONFIRMED)
    deliveries, offer = _deliveries_with_accepted_offer(db_session, bus, order)
    mocker.patch.object(OrderStateMachine, "mark_delivered", side_effect=RuntimeError("worker died"))
    for status in (DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED):
        deliveries.advance(offer.id, status, COURIER)
    assert db_session.get(Order, order.id).status == OrderStatus.SELLER_CONFIRMED
    mocker.stopall()

    report = run_reconciliation(db_session, bus)

    assert report.deliveries_replayed == 1
    assert db_session.get(Order, order.id).status == OrderStatus.DELIVERED
    order_event = next(e for e in dispatcher.events if e.entity_type == "order")
    assert (order_event.to_status, order_event.actor_id) == ("delivered", COURIER.id)

    again = run_reconciliation(db_session, bus)
    assert again.deliveries_replayed == 0


def test_delivery_is_replayed_even_without_courier_of_record(db_session, bus, create_order):
    order = create_order(status=OrderStatus.SELLER_CONFIRMED)
    _offer(db_session, order, status=DeliveryStatus.DELIVERED, courier_id=COURIER.id)

    report = run_reconciliation(db_session, bus)

    assert report.couriers_recorded == 1
    assert report.deliveries_replayed == 1
    db_session.refresh(order)
    assert order.status == OrderStatus.DELIVERED
    assert order.courier_id == COURIER.id


def test_courier_without_live_delivery_is_released(db_session, bus, create_order):
    dropped = create_order(status=OrderStatus.SELLER_CONFIRMED, courier_id=COURIER.id)
    _offer(db_session, dropped, status=DeliveryStatus.CANCELLED, courier_id=COURIER.id)
    working = create_order(status=OrderStatus.SELLER_CONFIRMED, courier_id=OTHER_COURIER.id)
    _offer(db_session, working, status=DeliveryStatus.IN_TRANSIT, courier_id=OTHER_COURIER.id)
    closed = create_order(status=OrderStatus.CANCELLED_NO_PAYMENT, courier_id=COURIER.id)

    report = run_reconciliation(db_session, bus)

    assert report.couriers_released == 1
    db_session.refresh(dropped)
    db_session.refresh(working)
    db_session.refresh(closed)
    assert dropped.courier_id is None
    assert working.courier_id == OTHER_COURIER.id
    assert closed.courier_id == COURIER.id


def test_missing_earning_is_restored_once(db_session, bus, create_order):
    order = create_order(status=OrderStatus.COMPLETED, points_awarded=28)

    first = run_reconciliation(db_session, bus)
    second = run_reconciliation(db_session, bus)

    assert first.earnings_restored == 1
    assert second.earnings_restored == 0
    assert crud_loyalty.get_earning_by_order_id(db_session, order.id).points_earned == 28
    assert loyalty_service.available_balance(db_session, BUYER.id) == 28


def test_negative_balances_are_reported_not_fixed(db_session, bus):
    crud_loyalty.create_entry(db_session, user_id=OTHER_BUYER.id, points_spent=10, description="Legacy import")
    db_session.commit()

    report = run_reconciliation(db_session, bus)

    assert report.negative_balances == [NegativeBalance(user_id=OTHER_BUYER.id, balance=-10)]
    assert loyalty_service.available_balance(db_session, OTHER_BUYER.id) == -10


def test_consistent_data_gives_empty_report(db_session, bus, create_order, dispatcher):
    create_order()
    create_order(status=OrderStatus.SELLER_CONFIRMED)

    report = run_reconciliation(db_session, bus)

    assert report.expired_orders_cancelled == 0
    assert report.expired_offers_cancelled == 0
    assert report.orphaned_offers_cancelled == 0
    assert report.couriers_recorded == 0
    assert report.deliveries_replayed == 0
    assert report.couriers_released == 0
    assert report.earnings_restored == 0
    assert report.negative_balances == []
    assert dispatcher.events == []


# --- Задача планировщика ---

@pytest.fixture
def task_env(mocker, bus):
    redis_mock = mocker.patch("marketplace.services.reconciliation.redis_client")
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.delete = AsyncMock()

    session_factory = mocker.patch("marketplace.services.reconciliation.SessionLocal")
    session = session_factory.return_value.__enter__.return_value

    mocker.patch("marketplace.services.reconciliation.get_event_bus", return_value=bus)
    run_mock = mocker.patch("marketplace.services.reconciliation.run_reconciliation")
    return redis_mock, session, run_mock


async def test_task_runs_under_redis_lock(task_env, bus):
    redis_mock, session, run_mock = task_env

    await reconciliation_service.reconciliation_task()

    redis_mock.set.assert_awaited_once_with("reconciliation_lock", "1", ex=300, nx=True)
    run_mock.assert_called_once_with(session, bus)
    redis_mock.delete.assert_awaited_once_with("reconciliation_lock")


async def test_task_skips_when_lock_is_taken(task_env):
    redis_mock, _, run_mock = task_env
    redis_mock.set.return_value = None

    await reconciliation_service.reconciliation_task()

    run_mock.assert_not_called()
    redis_mock.delete.assert_not_awaited()


async def test_task_failure_releases_lock(task_env):
    redis_mock, session, run_mock = task_env
    run_mock.side_effect = RuntimeError("database is gone")

    await reconciliation_service.reconciliation_task()

    session.rollback.assert_called_once()
    redis_mock.delete.assert_awaited_once_with("reconciliation_lock")
