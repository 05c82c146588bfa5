# marketplace/services/reconciliation.py
"""
Периодическая сверка согласованности заказов, доставок и журнала баллов.

Все исправления идут через те же машины состояний, что и обычные запросы,
поэтому сверка безопасна при параллельной работе API: проигравший гонку
переход просто пропускается.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from marketplace.core.exceptions import DuplicateEntry, LifecycleError
from marketplace.core.redis import redis_client
from marketplace.core.states import ActorRole, CancelReason
from marketplace.crud import delivery as crud_delivery
from marketplace.crud import loyalty as crud_loyalty
from marketplace.crud import order as crud_order
from marketplace.db.session import SessionLocal
from marketplace.dependencies import get_event_bus
from marketplace.schemas.actor import SYSTEM_ACTOR, Actor
from marketplace.schemas.admin import NegativeBalance, ReconciliationReport
from marketplace.services import loyalty as loyalty_service
from marketplace.services.delivery import DeliveryOfferStateMachine
from marketplace.services.events import EventBus
from marketplace.services.order import OrderStateMachine
from marketplace.utils.time import utcnow

logger = logging.getLogger(__name__)

RECONCILIATION_LOCK_KEY = "reconciliation_lock"
RECONCILIATION_LOCK_TTL_SECONDS = 300


def run_reconciliation(db: Session, bus: EventBus, now: datetime | None = None) -> ReconciliationReport:
    now = now or utcnow()
    report = ReconciliationReport(started_at=now)
    orders = OrderStateMachine(db, bus)
    deliveries = DeliveryOfferStateMachine(db, bus)

    # 1. Неоплаченные заказы с истекшим окном оплаты
    for order in crud_order.get_expired_unpaid_orders(db, now):
        try:
            orders.cancel(order.id, CancelReason.NO_PAYMENT, SYSTEM_ACTOR)
            report.expired_orders_cancelled += 1
        except LifecycleError as e:
            logger.info(f"Reconciliation: skipped expired order {order.id}: {e.message}")

    # 2. Просроченные предложения доставки, которые никто не принял
    for offer in crud_delivery.get_expired_pending_offers(db, now):
        try:
            deliveries.cancel(offer.id, SYSTEM_ACTOR)
            report.expired_offers_cancelled += 1
        except LifecycleError as e:
            logger.info(f"Reconciliation: skipped expired offer {offer.id}: {e.message}")

    # 3. Незавершенные доставки у врученных, отмененных или завершенных заказов
    for offer in crud_delivery.get_orphaned_offers(db):
        try:
            deliveries.cancel(offer.id, SYSTEM_ACTOR)
            report.orphaned_offers_cancelled += 1
        except LifecycleError as e:
            logger.info(f"Reconciliation: skipped orphaned offer {offer.id}: {e.message}")

    # 4. Принятые доставки, чей курьер не дошел до заказа
    for offer in crud_delivery.get_offers_missing_courier_of_record(db):
        orders.assign_courier(offer.order_id, offer.courier_id)
        report.couriers_recorded += 1
        logger.warning(f"Reconciliation: order {offer.order_id} got courier {offer.courier_id} from offer {offer.id}")

    # 5. Выполненные доставки, после которых заказ так и не стал delivered
    for offer in crud_delivery.get_delivered_offers_of_undelivered_orders(db):
        courier = Actor(id=offer.courier_id, role=ActorRole.COURIER)
        try:
            orders.mark_delivered(offer.order_id, courier)
            report.deliveries_replayed += 1
            logger.warning(f"Reconciliation: order {offer.order_id} marked delivered after offer {offer.id}")
        except LifecycleError as e:
            logger.info(f"Reconciliation: skipped delivered offer {offer.id}: {e.message}")

    # 6. Открытые заказы с курьером, который уже отказался от доставки
    for order in crud_order.get_orders_with_stale_courier(db):
        orders.release_courier(order.id, order.courier_id)
        report.couriers_released += 1
        logger.warning(f"Reconciliation: released courier from order {order.id}, no live delivery left")

    # 7. Завершенные заказы, у которых не записалось начисление
    for order in crud_order.get_completed_orders_missing_earning(db):
        try:
            loyalty_service.append_earning(
                db,
                user_id=order.buyer_id,
                order_id=order.id,
                seller_id=order.seller_id,
                amount=order.points_awarded,
                description=f"Points earned for order {order.id}",
            )
            db.commit()
            report.earnings_restored += 1
            logger.warning(f"Reconciliation: restored missing earning of {order.points_awarded} points for order {order.id}")
        except DuplicateEntry:
            db.rollback()

    # 8. Отрицательные балансы только попадают в отчет
    for user_id, balance in crud_loyalty.get_users_with_negative_balance(db):
        logger.error(f"Reconciliation: user {user_id} has negative points balance {balance}")
        report.negative_balances.append(NegativeBalance(user_id=user_id, balance=balance))

    logger.info(
        f"Reconciliation finished: {report.expired_orders_cancelled} expired orders, "
        f"{report.expired_offers_cancelled} expired offers, {report.orphaned_offers_cancelled} orphaned offers, "
        f"{report.couriers_recorded} couriers recorded, {report.deliveries_replayed} deliveries replayed, "
        f"{report.couriers_released} couriers released, "
        f"{report.earnings_restored} earnings restored, {len(report.negative_balances)} negative balances"
    )
    return report


async def reconciliation_task():
    """
    Задача планировщика. Redis-блокировка не дает двум воркерам сверять одновременно.
    """
    logger.info("--- Starting scheduled job: Reconciliation ---")

    is_locked = await redis_client.set(RECONCILIATION_LOCK_KEY, "1", ex=RECONCILIATION_LOCK_TTL_SECONDS, nx=True)
    if not is_locked:
        logger.info("Reconciliation is already running on another worker. Skipping.")
        return

    try:
        with SessionLocal() as db:
            try:
                run_reconciliation(db, get_event_bus())
            except Exception:
                logger.error("An error occurred during reconciliation task", exc_info=True)
                db.rollback()
    finally:
        await redis_client.delete(RECONCILIATION_LOCK_KEY)

    logger.info("--- Finished scheduled job: Reconciliation ---")
