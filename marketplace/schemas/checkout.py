# marketplace/schemas/checkout.py
from typing import List

from pydantic import BaseModel, Field

from marketplace.core.states import PaymentMethod


class CheckoutItem(BaseModel):
    product_id: str
    title: str | None = None
    # strict=True: "100" или 100.5 не превратятся молча в целое
    unit_price_cents: int = Field(ge=0, strict=True)
    quantity: int = Field(gt=0, strict=True)


class CheckoutCreate(BaseModel):
    # buyer_id необязателен: покупатель всегда берется из токена
    buyer_id: str | None = None
    seller_id: str
    # Без items заказ собирается из серверной корзины покупателя у этого продавца
    items: List[CheckoutItem] | None = None
    payment_method: PaymentMethod
    requested_points_to_redeem: int = Field(0, ge=0, strict=True)


class CheckoutResult(BaseModel):
    order_id: str
    discount_cents: int
    points_spent: int
    total_cents: int
