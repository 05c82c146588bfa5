# marketplace/models/delivery.py
from sqlalchemy import Column, DateTime, ForeignKey, Index, String, func, text

from marketplace.core.states import DeliveryStatus
from marketplace.db.session import Base
from marketplace.models.base import generate_id, status_enum

# Один заказ - не больше одной "занятой" доставки. Условие частичного индекса
# должно совпадать с DELIVERY_ENGAGED из core/states.py.
_ENGAGED_CONDITION = text("status IN ('accepted', 'picked_up', 'in_transit')")


class DeliveryOffer(Base):
    __tablename__ = "delivery_offers"

    id = Column(String(36), primary_key=True, default=generate_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    # NULL - открытое предложение для любого курьера. После принятия не меняется.
    courier_id = Column(String, nullable=True, index=True)
    status = Column(status_enum(DeliveryStatus, "delivery_status"), nullable=False, default=DeliveryStatus.PENDING, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_delivery_offers_engaged_order",
            "order_id",
            unique=True,
            postgresql_where=_ENGAGED_CONDITION,
            sqlite_where=_ENGAGED_CONDITION,
        ),
    )
