# marketplace/models/order.py
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from marketplace.core.states import OrderStatus, PaymentMethod, PaymentStatus
from marketplace.db.session import Base
from marketplace.models.base import generate_id, status_enum


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=generate_id)
    # ID пользователей приходят от внешнего провайдера идентификации
    buyer_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)
    # Курьер появляется только после принятия предложения доставки
    courier_id = Column(String, nullable=True, index=True)

    # Все суммы в минимальных единицах валюты (сентаво), никаких float
    subtotal_cents = Column(Integer, nullable=False)
    discount_cents = Column(Integer, nullable=False, default=0, server_default='0')
    total_cents = Column(Integer, nullable=False)
    points_spent = Column(Integer, nullable=False, default=0, server_default='0')

    payment_method = Column(status_enum(PaymentMethod, "payment_method"), nullable=False)
    payment_status = Column(status_enum(PaymentStatus, "payment_status"), nullable=False, index=True)
    status = Column(status_enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING, index=True)
    cancel_reason = Column(String, nullable=True)

    # NULL - баллы еще не начислялись. Записывается ровно один раз при завершении.
    points_awarded = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")

    __table_args__ = (
        CheckConstraint("subtotal_cents >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("discount_cents >= 0", name="ck_orders_discount_non_negative"),
        CheckConstraint("total_cents >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint("points_spent >= 0", name="ck_orders_points_spent_non_negative"),
        CheckConstraint("points_awarded IS NULL OR points_awarded >= 0", name="ck_orders_points_awarded_non_negative"),
    )


class OrderItem(Base):
    """Снимок позиции корзины на момент оформления заказа."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    title = Column(Text, nullable=True)
    unit_price_cents = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("unit_price_cents >= 0", name="ck_order_items_price_non_negative"),
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
