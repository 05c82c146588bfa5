# marketplace/schemas/order.py
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from marketplace.core.states import CancelReason, OrderStatus, PaymentMethod, PaymentStatus


class OrderLineItem(BaseModel):
    product_id: str
    title: str | None = None
    unit_price_cents: int
    quantity: int

    class Config:
        from_attributes = True


class Order(BaseModel):
    id: str
    buyer_id: str
    seller_id: str
    courier_id: str | None = None
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    points_spent: int
    points_awarded: int | None = None
    cancel_reason: str | None = None
    created_at: datetime
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    items: List[OrderLineItem] = []

    class Config:
        from_attributes = True


class PaginatedOrders(BaseModel):
    total_items: int
    current_page: int
    size: int
    items: List[Order]


# --- Ответы операций жизненного цикла ---

class OrderStatusResponse(BaseModel):
    status: OrderStatus


class OrderCompleteResponse(BaseModel):
    status: OrderStatus
    points_awarded: int


class OrderPaymentResponse(BaseModel):
    status: OrderStatus
    payment_status: PaymentStatus


# --- Тела запросов ---

class OrderCancelRequest(BaseModel):
    reason: CancelReason = CancelReason.NO_PAYMENT


class PaymentReviewRequest(BaseModel):
    approved: bool
    rejection_reason: str | None = Field(None, max_length=500)
