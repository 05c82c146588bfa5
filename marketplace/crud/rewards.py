# marketplace/crud/rewards.py
from typing import List

from sqlalchemy.orm import Session

from marketplace.models.rewards import SellerRewardsConfig, SellerRewardTier


def get_config(db: Session, seller_id: str) -> SellerRewardsConfig | None:
    return db.get(SellerRewardsConfig, seller_id)

def get_active_config(db: Session, seller_id: str) -> SellerRewardsConfig | None:
    """Конфигурация продавца, только если программа лояльности включена."""
    config = get_config(db, seller_id)
    if config is None or not config.is_active:
        return None
    return config

def get_tiers(db: Session, seller_id: str, active_only: bool = False) -> List[SellerRewardTier]:
    query = db.query(SellerRewardTier).filter(SellerRewardTier.seller_id == seller_id)
    if active_only:
        query = query.filter(SellerRewardTier.is_active.is_(True))
    return query.order_by(SellerRewardTier.minimum_purchase_cents.asc()).all()

def get_tier_for_amount(db: Session, seller_id: str, amount_cents: int) -> SellerRewardTier | None:
    """Самый высокий активный уровень, порог которого не превышает сумму покупки."""
    return db.query(SellerRewardTier).filter(
        SellerRewardTier.seller_id == seller_id,
        SellerRewardTier.is_active.is_(True),
        SellerRewardTier.minimum_purchase_cents <= amount_cents,
    ).order_by(SellerRewardTier.minimum_purchase_cents.desc()).first()

def upsert_config(db: Session, seller_id: str, tiers: List[dict], **values) -> SellerRewardsConfig:
    """
    Создает или обновляет настройки продавца; уровни заменяются целиком.
    """
    config = get_config(db, seller_id)
    if config is None:
        config = SellerRewardsConfig(seller_id=seller_id, **values)
        db.add(config)
    else:
        for field, value in values.items():
            setattr(config, field, value)

    db.query(SellerRewardTier).filter(SellerRewardTier.seller_id == seller_id).delete()
    for tier in tiers:
        db.add(SellerRewardTier(seller_id=seller_id, **tier))

    db.commit()
    db.refresh(config)
    return config
