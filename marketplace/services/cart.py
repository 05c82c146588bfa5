# marketplace/services/cart.py

import logging

from sqlalchemy.orm import Session

from marketplace.crud import cart as crud_cart
from marketplace.schemas.actor import Actor
from marketplace.schemas.cart import CartItemResponse, CartItemUpdate, CartResponse
from marketplace.services import redemption as redemption_service

logger = logging.getLogger(__name__)


def get_user_cart(db: Session, actor: Actor, seller_id: str) -> CartResponse:
    """
    Корзина покупателя у продавца вместе с подсказкой, сколько баллов можно
    списать. Итоговая скидка все равно пересчитывается при оформлении заказа.
    """
    items = crud_cart.get_cart_items(db, user_id=actor.id, seller_id=seller_id)
    subtotal_cents = sum(item.unit_price_cents * item.quantity for item in items)

    quote = redemption_service.calculate_redemption(
        db,
        user_id=actor.id,
        seller_id=seller_id,
        order_total_cents=subtotal_cents,
    )
    max_discount_cents = quote.max_redeemable * (quote.point_value_cents or 0)

    return CartResponse(
        seller_id=seller_id,
        items=[CartItemResponse.model_validate(item) for item in items],
        subtotal_cents=subtotal_cents,
        max_points_to_spend=quote.max_redeemable,
        max_discount_cents=max_discount_cents,
    )


def update_cart_item(db: Session, actor: Actor, item_data: CartItemUpdate) -> CartResponse:
    crud_cart.add_or_update_cart_item(
        db,
        user_id=actor.id,
        seller_id=item_data.seller_id,
        product_id=item_data.product_id,
        quantity=item_data.quantity,
        unit_price_cents=item_data.unit_price_cents,
        title=item_data.title,
    )
    logger.info(f"User {actor.id} set {item_data.product_id} x{item_data.quantity} in cart for seller {item_data.seller_id}")
    return get_user_cart(db, actor, item_data.seller_id)


def remove_cart_item(db: Session, actor: Actor, seller_id: str, product_id: str) -> CartResponse:
    if not crud_cart.remove_cart_item(db, user_id=actor.id, seller_id=seller_id, product_id=product_id):
        logger.info(f"User {actor.id} tried to remove {product_id} that is not in the cart")
    return get_user_cart(db, actor, seller_id)


def clear_cart(db: Session, actor: Actor, seller_id: str) -> None:
    crud_cart.clear_cart(db, user_id=actor.id, seller_id=seller_id)
    db.commit()
