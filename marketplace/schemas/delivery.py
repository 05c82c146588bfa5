# marketplace/schemas/delivery.py
from datetime import datetime
from typing import List

from pydantic import BaseModel

from marketplace.core.states import DeliveryStatus


class DeliveryOffer(BaseModel):
    id: str
    order_id: str
    courier_id: str | None = None
    status: DeliveryStatus
    created_at: datetime
    expires_at: datetime | None = None

    class Config:
        from_attributes = True


class DeliveryOfferList(BaseModel):
    items: List[DeliveryOffer]


class DeliveryRequestCreate(BaseModel):
    # Без courier_id предложение видят все свободные курьеры
    courier_id: str | None = None


class DeliveryAcceptRequest(BaseModel):
    courier_id: str


class DeliveryAdvanceRequest(BaseModel):
    to_status: DeliveryStatus


class DeliveryStatusResponse(BaseModel):
    status: DeliveryStatus
