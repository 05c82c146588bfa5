# marketplace/schemas/events.py
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

EntityType = Literal["order", "order_payment", "delivery_offer"]


class LifecycleEvent(BaseModel):
    entity_type: EntityType
    entity_id: str
    from_status: str | None
    to_status: str
    actor_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    # Для событий доставки - заказ, к которому она относится
    order_id: str | None = None
