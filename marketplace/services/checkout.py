# marketplace/services/checkout.py

import logging
from datetime import timedelta
from typing import List

from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.exceptions import InvalidInput, LifecycleError, NotAuthorized
from marketplace.core.states import ActorRole, OrderStatus, PaymentMethod, initial_payment_status
from marketplace.crud import cart as crud_cart
from marketplace.crud import loyalty as crud_loyalty
from marketplace.crud import order as crud_order
from marketplace.schemas.actor import Actor
from marketplace.schemas.checkout import CheckoutCreate, CheckoutResult
from marketplace.schemas.events import LifecycleEvent
from marketplace.services import loyalty as loyalty_service
from marketplace.services import redemption as redemption_service
from marketplace.services.events import EventBus
from marketplace.utils.time import utcnow

logger = logging.getLogger(__name__)


def _resolve_buyer(checkout: CheckoutCreate, actor: Actor) -> str:
    # Покупатель всегда из токена; админ может оформить заказ за покупателя
    if actor.is_privileged:
        return checkout.buyer_id or actor.id
    if actor.role != ActorRole.BUYER:
        raise NotAuthorized(f"Actor {actor.id} ({actor.role.value}) cannot check out")
    if checkout.buyer_id and checkout.buyer_id != actor.id:
        logger.warning(f"Checkout body buyer_id {checkout.buyer_id} does not match token subject {actor.id}")
        raise NotAuthorized("buyer_id does not match the authenticated user")
    return actor.id


def _collect_items(db: Session, checkout: CheckoutCreate, buyer_id: str) -> tuple[List[dict], bool]:
    """Позиции из запроса или, если их нет, из серверной корзины. Второй элемент - взята ли корзина."""
    if checkout.items is not None:
        items = [item.model_dump() for item in checkout.items]
        from_cart = False
    else:
        items = [
            {
                "product_id": item.product_id,
                "title": item.title,
                "unit_price_cents": item.unit_price_cents,
                "quantity": item.quantity,
            }
            for item in crud_cart.get_cart_items(db, user_id=buyer_id, seller_id=checkout.seller_id)
        ]
        from_cart = True

    if not items:
        raise InvalidInput("Order must contain at least one item")
    return items, from_cart


def create_order_from_checkout(db: Session, checkout: CheckoutCreate, actor: Actor, bus: EventBus) -> CheckoutResult:
    """
    Оформление заказа.

    Скидка баллами считается заново под блокировкой журнала покупателя, поэтому
    списание не может уйти в минус даже при параллельных оформлениях.
    Заказ, его позиции и списание баллов сохраняются одной транзакцией.
    """
    # --- Шаг 1: Кто покупает и что ---
    buyer_id = _resolve_buyer(checkout, actor)
    items, from_cart = _collect_items(db, checkout, buyer_id)
    subtotal_cents = sum(item["unit_price_cents"] * item["quantity"] for item in items)

    try:
        # --- Шаг 2: Пересчет скидки по актуальному балансу ---
        balance = crud_loyalty.lock_user_ledger(db, buyer_id)
        quote = redemption_service.calculate_redemption(
            db,
            user_id=buyer_id,
            seller_id=checkout.seller_id,
            order_total_cents=subtotal_cents,
            requested_points=checkout.requested_points_to_redeem,
            balance=balance,
        )
        if quote.points_to_spend < checkout.requested_points_to_redeem:
            logger.info(
                f"Checkout for user {buyer_id}: requested {checkout.requested_points_to_redeem} points, "
                f"clamped to {quote.points_to_spend} ({quote.reason or 'limit'})"
            )

        # --- Шаг 3: Создание заказа ---
        now = utcnow()
        expires_at = None
        if checkout.payment_method == PaymentMethod.TRANSFER:
            expires_at = now + timedelta(minutes=settings.ORDER_PAYMENT_WINDOW_MINUTES)

        order = crud_order.create_order(
            db,
            items=items,
            buyer_id=buyer_id,
            seller_id=checkout.seller_id,
            subtotal_cents=subtotal_cents,
            discount_cents=quote.discount_cents,
            total_cents=subtotal_cents - quote.discount_cents,
            points_spent=quote.points_to_spend,
            payment_method=checkout.payment_method,
            payment_status=initial_payment_status(checkout.payment_method),
            status=OrderStatus.PENDING,
            expires_at=expires_at,
        )

        # --- Шаг 4: Списание баллов в той же транзакции ---
        if quote.points_to_spend > 0:
            loyalty_service.append_spending(
                db,
                user_id=buyer_id,
                order_id=order.id,
                seller_id=checkout.seller_id,
                amount=quote.points_to_spend,
                description=f"Points redeemed for order {order.id}",
            )

        if from_cart:
            crud_cart.clear_cart(db, user_id=buyer_id, seller_id=checkout.seller_id)

        db.commit()
    except LifecycleError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        logger.error(f"Checkout failed for user {buyer_id} at seller {checkout.seller_id}", exc_info=True)
        raise

    db.refresh(order)
    logger.info(
        f"Order {order.id} created for user {buyer_id}: subtotal {subtotal_cents}, "
        f"discount {order.discount_cents}, points spent {order.points_spent}"
    )

    # --- Шаг 5: Событие о новом заказе ---
    bus.publish(db, LifecycleEvent(
        entity_type="order",
        entity_id=order.id,
        from_status=None,
        to_status=OrderStatus.PENDING.value,
        actor_id=actor.id,
        order_id=order.id,
    ))

    return CheckoutResult(
        order_id=order.id,
        discount_cents=order.discount_cents,
        points_spent=order.points_spent,
        total_cents=order.total_cents,
    )
