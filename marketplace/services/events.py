# marketplace/services/events.py
"""
Шина событий жизненного цикла.

Машины состояний публикуют событие после commit. Шина сначала вызывает
внутренних подписчиков (так доставка сообщает заказу о вручении, не зная о
нем напрямую), затем передает событие диспетчеру уведомлений.
"""
import logging
from collections import defaultdict
from typing import Callable, DefaultDict, List, Tuple

from sqlalchemy.orm import Session

from marketplace.core.exceptions import LifecycleError
from marketplace.schemas.events import LifecycleEvent
from marketplace.services.notification import NotificationDispatcher

logger = logging.getLogger(__name__)

EventHandler = Callable[[Session, LifecycleEvent, "EventBus"], None]


class EventBus:
    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher
        self._handlers: DefaultDict[Tuple[str, str], List[EventHandler]] = defaultdict(list)

    def subscribe(self, entity_type: str, to_status: str, handler: EventHandler) -> None:
        self._handlers[(entity_type, str(to_status))].append(handler)

    def publish(self, db: Session, event: LifecycleEvent) -> None:
        for handler in self._handlers.get((event.entity_type, event.to_status), []):
            try:
                handler(db, event, self)
            except LifecycleError as e:
                # Исходный переход уже закоммичен; отказ подписчика - штатная ситуация
                db.rollback()
                logger.info(f"Handler {handler.__name__} skipped {event.entity_type} {event.entity_id}: {e.message}")
            except Exception:
                db.rollback()
                logger.error(
                    f"Handler {handler.__name__} failed for {event.entity_type} {event.entity_id} -> {event.to_status}",
                    exc_info=True,
                )

        self._dispatch(event)

    def _dispatch(self, event: LifecycleEvent) -> None:
        try:
            self.dispatcher.notify(event)
        except Exception:
            # Уведомления не транзакционны с переходом и не должны до него доходить
            logger.error(f"Failed to dispatch notification for {event.entity_type} {event.entity_id}", exc_info=True)
