# marketplace/models/cart.py
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship
from sqlalchemy.schema import UniqueConstraint

from marketplace.db.session import Base


class Cart(Base):
    """Корзина живет на сервере: одна на пару покупатель/продавец."""
    __tablename__ = "carts"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan", lazy="selectin")

    __table_args__ = (UniqueConstraint('user_id', 'seller_id', name='_user_seller_cart_uc'),)


class CartItem(Base):
    __tablename__ = "cart_items"
    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False)
    product_id = Column(String, nullable=False)
    title = Column(Text, nullable=True)
    unit_price_cents = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    cart = relationship("Cart", back_populates="items")

    __table_args__ = (
        UniqueConstraint('cart_id', 'product_id', name='_cart_product_uc'),
        CheckConstraint("unit_price_cents >= 0", name="ck_cart_items_price_non_negative"),
        CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
    )
