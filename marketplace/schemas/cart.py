# marketplace/schemas/cart.py
from typing import List

from pydantic import BaseModel, Field


# Схема для добавления/обновления товара в корзине
class CartItemUpdate(BaseModel):
    seller_id: str
    product_id: str
    title: str | None = None
    unit_price_cents: int = Field(ge=0, strict=True)
    quantity: int = Field(1, gt=0, strict=True) # Количество должно быть больше 0


class CartItemResponse(BaseModel):
    product_id: str
    title: str | None = None
    unit_price_cents: int
    quantity: int

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    seller_id: str
    items: List[CartItemResponse]
    subtotal_cents: int
    # Подсказка для экрана корзины; при оформлении все пересчитывается заново
    max_points_to_spend: int
    max_discount_cents: int
