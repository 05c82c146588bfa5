# marketplace/routers/checkout.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace.dependencies import get_current_actor, get_db, get_event_bus
from marketplace.schemas.actor import Actor
from marketplace.schemas.checkout import CheckoutCreate, CheckoutResult
from marketplace.services import checkout as checkout_service
from marketplace.services.events import EventBus

router = APIRouter()


@router.post("/checkout", response_model=CheckoutResult, status_code=status.HTTP_201_CREATED)
def create_new_order(
    checkout_data: CheckoutCreate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    """
    Создает заказ. Скидка баллами пересчитывается на сервере;
    запрос сверх допустимого обрезается, а не отклоняется.
    """
    return checkout_service.create_order_from_checkout(db, checkout_data, current_actor, bus)
