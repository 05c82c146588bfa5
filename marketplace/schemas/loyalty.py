# marketplace/schemas/loyalty.py
from datetime import datetime
from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field


class PointsHistoryEntry(BaseModel):
    id: str
    order_id: str | None = None
    seller_id: str | None = None
    points_earned: int
    points_spent: int
    description: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class PointsBalance(BaseModel):
    available: int


class PointsHistory(BaseModel):
    available: int
    total_items: int
    transactions: List[PointsHistoryEntry]


class RedemptionQuote(BaseModel):
    """Результат расчета списания. Нулевая квота - не ошибка."""
    discount_cents: int = 0
    points_to_spend: int = 0
    max_redeemable: int = 0
    available_points: int = 0
    point_value_cents: int | None = None
    # Почему списание недоступно: 'config_unavailable', 'below_minimum', 'no_points'
    reason: str | None = None


class EarningPreview(BaseModel):
    order_total_cents: int
    points_earned: int
    tier_name: str | None = None


class SellerRewardTier(BaseModel):
    tier_name: str
    minimum_purchase_cents: int = Field(ge=0, strict=True)
    points_multiplier: Decimal = Field(Decimal("1.0"), gt=0)
    is_active: bool = True

    class Config:
        from_attributes = True


class SellerRewardsConfig(BaseModel):
    is_active: bool
    minimum_purchase_cents: int = Field(ge=0, strict=True)
    points_per_peso: Decimal = Field(Decimal("0.0286"), ge=0)
    point_value_cents: int = Field(3500, gt=0, strict=True)
    max_redemption_fraction: Decimal = Field(Decimal("0.5"), ge=0, le=1)
    tiers: List[SellerRewardTier] = []

    class Config:
        from_attributes = True
