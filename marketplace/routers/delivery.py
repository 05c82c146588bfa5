# marketplace/routers/delivery.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from marketplace.core.states import ActorRole
from marketplace.dependencies import get_current_actor, get_db, get_event_bus, require_role
from marketplace.schemas.actor import Actor
from marketplace.schemas.delivery import (
    DeliveryAcceptRequest, DeliveryAdvanceRequest, DeliveryOffer, DeliveryOfferList,
    DeliveryRequestCreate, DeliveryStatusResponse,
)
from marketplace.services import delivery as delivery_service
from marketplace.services.delivery import DeliveryOfferStateMachine
from marketplace.services.events import EventBus

router = APIRouter()


def get_delivery_machine(db: Session = Depends(get_db), bus: EventBus = Depends(get_event_bus)) -> DeliveryOfferStateMachine:
    return DeliveryOfferStateMachine(db, bus)


@router.post("/orders/{order_id}/delivery-offers", response_model=DeliveryOffer, status_code=status.HTTP_201_CREATED)
def request_delivery(
    order_id: str,
    request_data: DeliveryRequestCreate,
    current_actor: Actor = Depends(require_role(ActorRole.SELLER)),
    machine: DeliveryOfferStateMachine = Depends(get_delivery_machine),
):
    """Продавец просит доставку для подтвержденного заказа."""
    return machine.request_delivery(order_id, current_actor, courier_id=request_data.courier_id)


@router.get("/delivery-offers", response_model=DeliveryOfferList)
def get_delivery_offers(
    order_id: Optional[str] = Query(None, description="Предложения конкретного заказа (для продавца)."),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Курьер без order_id получает свои и открытые предложения."""
    return DeliveryOfferList(items=delivery_service.list_offers(db, current_actor, order_id))


@router.post("/delivery-offers/{offer_id}/accept", response_model=DeliveryStatusResponse)
def accept_delivery_offer(
    offer_id: str,
    accept_data: DeliveryAcceptRequest,
    current_actor: Actor = Depends(require_role(ActorRole.COURIER)),
    machine: DeliveryOfferStateMachine = Depends(get_delivery_machine),
):
    offer = machine.accept(offer_id, accept_data.courier_id, current_actor)
    return DeliveryStatusResponse(status=offer.status)


@router.post("/delivery-offers/{offer_id}/advance", response_model=DeliveryStatusResponse)
def advance_delivery_offer(
    offer_id: str,
    advance_data: DeliveryAdvanceRequest,
    current_actor: Actor = Depends(require_role(ActorRole.COURIER)),
    machine: DeliveryOfferStateMachine = Depends(get_delivery_machine),
):
    offer = machine.advance(offer_id, advance_data.to_status, current_actor)
    return DeliveryStatusResponse(status=offer.status)


@router.post("/delivery-offers/{offer_id}/cancel", response_model=DeliveryStatusResponse)
def cancel_delivery_offer(
    offer_id: str,
    current_actor: Actor = Depends(get_current_actor),
    machine: DeliveryOfferStateMachine = Depends(get_delivery_machine),
):
    offer = machine.cancel(offer_id, current_actor)
    return DeliveryStatusResponse(status=offer.status)
