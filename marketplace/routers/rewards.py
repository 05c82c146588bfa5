# marketplace/routers/rewards.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.core.states import ActorRole
from marketplace.dependencies import get_db, require_role
from marketplace.schemas.actor import Actor
from marketplace.schemas.loyalty import SellerRewardsConfig
from marketplace.services import rewards as rewards_service

router = APIRouter()


@router.get("/sellers/me/rewards-config", response_model=SellerRewardsConfig)
def get_my_rewards_config(
    current_actor: Actor = Depends(require_role(ActorRole.SELLER)),
    db: Session = Depends(get_db),
):
    return rewards_service.get_rewards_config(db, current_actor.id)


@router.put("/sellers/me/rewards-config", response_model=SellerRewardsConfig)
def update_my_rewards_config(
    config_data: SellerRewardsConfig,
    current_actor: Actor = Depends(require_role(ActorRole.SELLER)),
    db: Session = Depends(get_db),
):
    """Настройки программы лояльности продавца (включая уровни) сохраняются целиком."""
    return rewards_service.update_rewards_config(db, current_actor.id, config_data)
