# marketplace/services/redemption.py
"""
Расчет списания баллов при оформлении заказа и прогноз начисления.

Квота считается заново в момент создания заказа; скидка, присланная
клиентом, носит только справочный характер.
"""
import logging
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy.orm import Session

from marketplace.core.exceptions import ConfigUnavailable, require_non_negative_int
from marketplace.crud import rewards as crud_rewards
from marketplace.models.rewards import SellerRewardsConfig
from marketplace.schemas.loyalty import EarningPreview, RedemptionQuote
from marketplace.services import loyalty as loyalty_service

logger = logging.getLogger(__name__)


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _active_config(db: Session, seller_id: str) -> SellerRewardsConfig:
    config = crud_rewards.get_active_config(db, seller_id)
    if config is None:
        raise ConfigUnavailable(f"Seller {seller_id} has no active rewards config")
    return config


def calculate_redemption(
    db: Session,
    user_id: str,
    seller_id: str,
    order_total_cents: int,
    requested_points: int | None = None,
    balance: int | None = None,
) -> RedemptionQuote:
    """
    Сколько баллов пользователь может списать на заказ у продавца.

    Отсутствие или выключенная программа лояльности - не ошибка, а нулевая квота.
    Запрос сверх лимита не отклоняется, а обрезается до допустимого значения.
    `balance` передает checkout, который уже посчитал его под блокировкой журнала.
    """
    require_non_negative_int(order_total_cents, "order_total_cents")
    if requested_points is not None:
        require_non_negative_int(requested_points, "requested_points")

    # 1. Настройки продавца
    try:
        config = _active_config(db, seller_id)
    except ConfigUnavailable as e:
        logger.debug(f"Redemption unavailable: {e.message}")
        return RedemptionQuote(reason="config_unavailable")

    # 2. Минимальная сумма покупки
    if order_total_cents < config.minimum_purchase_cents:
        return RedemptionQuote(point_value_cents=config.point_value_cents, reason="below_minimum")

    # 3-4. Лимит скидки и сколько баллов в него помещается
    max_discount_cents = _floor(Decimal(order_total_cents) * Decimal(config.max_redemption_fraction))
    max_points_by_discount = max_discount_cents // config.point_value_cents

    # 5. Ограничение балансом
    available = balance if balance is not None else loyalty_service.available_balance(db, user_id)
    max_redeemable = max(0, min(available, max_points_by_discount))

    # 6. Обрезаем запрос до [0, max_redeemable]
    points_to_spend = min(requested_points or 0, max_redeemable)

    return RedemptionQuote(
        discount_cents=points_to_spend * config.point_value_cents,
        points_to_spend=points_to_spend,
        max_redeemable=max_redeemable,
        available_points=available,
        point_value_cents=config.point_value_cents,
        reason=None if max_redeemable > 0 else "no_points",
    )


def estimate_points_earned(db: Session, seller_id: str, paid_total_cents: int) -> EarningPreview:
    """
    Баллы за оплаченный заказ: сумма в песо * points_per_peso * множитель уровня, вниз до целого.
    Без активной программы или ниже минимальной суммы - ноль.
    """
    require_non_negative_int(paid_total_cents, "paid_total_cents")

    try:
        config = _active_config(db, seller_id)
    except ConfigUnavailable:
        return EarningPreview(order_total_cents=paid_total_cents, points_earned=0)
    if paid_total_cents < config.minimum_purchase_cents:
        return EarningPreview(order_total_cents=paid_total_cents, points_earned=0)

    tier = crud_rewards.get_tier_for_amount(db, seller_id, paid_total_cents)
    multiplier = Decimal(tier.points_multiplier) if tier else Decimal("1")

    pesos = Decimal(paid_total_cents) / Decimal(100)
    points = _floor(pesos * Decimal(config.points_per_peso) * multiplier)

    return EarningPreview(
        order_total_cents=paid_total_cents,
        points_earned=max(points, 0),
        tier_name=tier.tier_name if tier else None,
    )
