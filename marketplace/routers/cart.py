# marketplace/routers/cart.py

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from marketplace.core.states import ActorRole
from marketplace.dependencies import get_db, require_role
from marketplace.schemas.actor import Actor
from marketplace.schemas.cart import CartItemUpdate, CartResponse
from marketplace.services import cart as cart_service

logger = logging.getLogger(__name__)

router = APIRouter()

require_buyer = require_role(ActorRole.BUYER)


# --- Эндпоинты для Корзины ---

@router.get("/cart", response_model=CartResponse)
def get_cart(
    seller_id: str = Query(..., description="Корзина ведется отдельно для каждого продавца."),
    current_actor: Actor = Depends(require_buyer),
    db: Session = Depends(get_db),
):
    """Получение содержимого корзины текущего пользователя."""
    return cart_service.get_user_cart(db, current_actor, seller_id)


@router.post("/cart/items", response_model=CartResponse)
def update_cart_item(
    item_data: CartItemUpdate,
    current_actor: Actor = Depends(require_buyer),
    db: Session = Depends(get_db),
):
    """Добавление товара в корзину или изменение его количества."""
    return cart_service.update_cart_item(db, current_actor, item_data)


@router.delete("/cart/items/{product_id}", response_model=CartResponse)
def remove_cart_item(
    product_id: str,
    seller_id: str = Query(...),
    current_actor: Actor = Depends(require_buyer),
    db: Session = Depends(get_db),
):
    return cart_service.remove_cart_item(db, current_actor, seller_id, product_id)


@router.delete("/cart", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart(
    seller_id: str = Query(...),
    current_actor: Actor = Depends(require_buyer),
    db: Session = Depends(get_db),
):
    cart_service.clear_cart(db, current_actor, seller_id)
