# marketplace/crud/cart.py
from sqlalchemy.orm import Session

from marketplace.models.cart import Cart, CartItem


def get_cart(db: Session, user_id: str, seller_id: str) -> Cart | None:
    return db.query(Cart).filter_by(user_id=user_id, seller_id=seller_id).first()

def get_or_create_cart(db: Session, user_id: str, seller_id: str) -> Cart:
    cart = get_cart(db, user_id, seller_id)
    if cart is None:
        cart = Cart(user_id=user_id, seller_id=seller_id)
        db.add(cart)
        db.flush()
    return cart

def get_cart_items(db: Session, user_id: str, seller_id: str):
    """Получает все товары в корзине пользователя у конкретного продавца."""
    return db.query(CartItem).join(Cart).filter(
        Cart.user_id == user_id, Cart.seller_id == seller_id
    ).all()

def add_or_update_cart_item(
    db: Session,
    user_id: str,
    seller_id: str,
    product_id: str,
    quantity: int,
    unit_price_cents: int,
    title: str | None = None,
) -> CartItem:
    """
    Добавляет товар в корзину или обновляет количество и цену.
    """
    cart = get_or_create_cart(db, user_id, seller_id)
    item = db.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()

    if item:
        item.quantity = quantity
        item.unit_price_cents = unit_price_cents
        if title is not None:
            item.title = title
    else:
        item = CartItem(
            cart_id=cart.id,
            product_id=product_id,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            title=title,
        )
        db.add(item)
    db.commit()
    db.refresh(item)
    return item

def remove_cart_item(db: Session, user_id: str, seller_id: str, product_id: str) -> bool:
    cart = get_cart(db, user_id, seller_id)
    if cart is None:
        return False
    item = db.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()
    if item:
        db.delete(item)
        db.commit()
        return True
    return False

def clear_cart(db: Session, user_id: str, seller_id: str):
    """
    Полностью очищает корзину у продавца.
    Без commit: при оформлении заказа выполняется в той же транзакции.
    """
    cart = get_cart(db, user_id, seller_id)
    if cart is not None:
        db.query(CartItem).filter_by(cart_id=cart.id).delete()
