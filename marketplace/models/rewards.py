# marketplace/models/rewards.py
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, func

from marketplace.db.session import Base


class SellerRewardsConfig(Base):
    __tablename__ = "seller_rewards_config"

    seller_id = Column(String, primary_key=True)
    is_active = Column(Boolean, nullable=False, default=False, server_default='false')
    minimum_purchase_cents = Column(Integer, nullable=False, default=0, server_default='0')

    # Начисление: сколько баллов дается за один песо покупки (0.0286 ~ 1 балл за 35 песо)
    points_per_peso = Column(Numeric(10, 6), nullable=False, default=Decimal("0.0286"))
    # Списание: сколько сентаво скидки дает один балл
    point_value_cents = Column(Integer, nullable=False, default=3500)
    # Какую долю суммы заказа можно оплатить баллами
    max_redemption_fraction = Column(Numeric(4, 3), nullable=False, default=Decimal("0.5"))

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("minimum_purchase_cents >= 0", name="ck_rewards_minimum_non_negative"),
        CheckConstraint("point_value_cents > 0", name="ck_rewards_point_value_positive"),
        CheckConstraint(
            "max_redemption_fraction >= 0 AND max_redemption_fraction <= 1",
            name="ck_rewards_fraction_range",
        ),
    )


class SellerRewardTier(Base):
    """Уровни продавца (Бронза/Серебро/Золото) с множителем начисления."""
    __tablename__ = "seller_reward_tiers"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String, nullable=False, index=True)
    tier_name = Column(String, nullable=False)
    minimum_purchase_cents = Column(Integer, nullable=False)
    points_multiplier = Column(Numeric(6, 3), nullable=False, default=Decimal("1.0"))
    is_active = Column(Boolean, nullable=False, default=True, server_default='true')
