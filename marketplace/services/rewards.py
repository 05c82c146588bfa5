# marketplace/services/rewards.py

import logging

from sqlalchemy.orm import Session

from marketplace.core.exceptions import NotFound
from marketplace.crud import rewards as crud_rewards
from marketplace.schemas.loyalty import SellerRewardsConfig, SellerRewardTier

logger = logging.getLogger(__name__)


def get_rewards_config(db: Session, seller_id: str) -> SellerRewardsConfig:
    config = crud_rewards.get_config(db, seller_id)
    if config is None:
        raise NotFound(f"Seller {seller_id} has no rewards config")
    tiers = crud_rewards.get_tiers(db, seller_id)
    return SellerRewardsConfig(
        is_active=config.is_active,
        minimum_purchase_cents=config.minimum_purchase_cents,
        points_per_peso=config.points_per_peso,
        point_value_cents=config.point_value_cents,
        max_redemption_fraction=config.max_redemption_fraction,
        tiers=[SellerRewardTier.model_validate(tier) for tier in tiers],
    )


def update_rewards_config(db: Session, seller_id: str, config_data: SellerRewardsConfig) -> SellerRewardsConfig:
    """Продавец сохраняет настройки программы лояльности целиком, вместе с уровнями."""
    values = config_data.model_dump(exclude={"tiers"})
    tiers = [tier.model_dump() for tier in config_data.tiers]
    crud_rewards.upsert_config(db, seller_id, tiers=tiers, **values)

    logger.info(
        f"Seller {seller_id} updated rewards config: active={config_data.is_active}, "
        f"point value {config_data.point_value_cents}, {len(tiers)} tiers"
    )
    return get_rewards_config(db, seller_id)
