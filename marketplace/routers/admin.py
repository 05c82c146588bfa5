# marketplace/routers/admin.py

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.dependencies import get_admin_actor, get_db, get_event_bus
from marketplace.schemas.actor import Actor
from marketplace.schemas.admin import ReconciliationReport
from marketplace.services import reconciliation as reconciliation_service
from marketplace.services.events import EventBus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/reconciliation/run", response_model=ReconciliationReport)
def run_reconciliation_endpoint(
    admin_actor: Actor = Depends(get_admin_actor),
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    """
    [АДМИН] Запускает сверку немедленно и возвращает отчет.
    Плановый запуск идет через планировщик.
    """
    logger.info(f"Reconciliation was manually triggered by admin {admin_actor.id}.")
    return reconciliation_service.run_reconciliation(db, bus)
