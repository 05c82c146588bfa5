# marketplace/routers/points.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.core.exceptions import NotAuthorized
from marketplace.dependencies import get_current_actor, get_db
from marketplace.schemas.actor import Actor
from marketplace.schemas.loyalty import EarningPreview, PointsBalance, PointsHistory, RedemptionQuote
from marketplace.services import loyalty as loyalty_service
from marketplace.services import redemption as redemption_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/points/balance", response_model=PointsBalance)
def get_points_balance(
    user_id: Optional[str] = Query(None, description="Чужой баланс доступен только администратору."),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    target_id = user_id or current_actor.id
    if target_id != current_actor.id and not current_actor.is_privileged:
        raise NotAuthorized(f"Actor {current_actor.id} requested balance of {target_id}")
    return PointsBalance(available=loyalty_service.available_balance(db, target_id))


@router.get("/points/history", response_model=PointsHistory)
def get_points_history(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Баланс и история начислений/списаний, от новых к старым."""
    return loyalty_service.get_points_history(db, current_actor.id, skip=(page - 1) * size, limit=size)


@router.get("/points/redemption-preview", response_model=RedemptionQuote)
def get_redemption_preview(
    seller_id: str,
    order_total_cents: int = Query(..., ge=0),
    requested_points: Optional[int] = Query(None, ge=0),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Сколько баллов можно списать на такую покупку. Справочно: при оформлении считается заново."""
    return redemption_service.calculate_redemption(
        db,
        user_id=current_actor.id,
        seller_id=seller_id,
        order_total_cents=order_total_cents,
        requested_points=requested_points,
    )


@router.get("/points/earning-preview", response_model=EarningPreview)
def get_earning_preview(
    seller_id: str,
    order_total_cents: int = Query(..., ge=0),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return redemption_service.estimate_points_earned(db, seller_id, order_total_cents)
