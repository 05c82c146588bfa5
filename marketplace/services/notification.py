# marketplace/services/notification.py
"""
Диспетчер уведомлений - внешний участник. Ядро только вызывает notify(event)
и не ждет результата: сбой доставки не откатывает и не блокирует переход.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import httpx

from marketplace.schemas.events import LifecycleEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def notify(self, event: LifecycleEvent) -> None:
        ...


class LoggingNotificationDispatcher:
    """Диспетчер по умолчанию: события только попадают в лог."""

    def notify(self, event: LifecycleEvent) -> None:
        logger.info(
            f"Lifecycle event: {event.entity_type} {event.entity_id} "
            f"{event.from_status} -> {event.to_status} (actor {event.actor_id})"
        )


class WebhookNotificationDispatcher:
    """
    Отправляет события во внешнюю функцию push-уведомлений.
    POST выполняется в фоновом потоке, вызывающий код сразу получает управление.
    """

    def __init__(self, url: str, timeout: float = 5.0, max_workers: int = 4):
        self.url = url
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def notify(self, event: LifecycleEvent) -> None:
        self._executor.submit(self._post, event.model_dump(mode="json"))

    def _post(self, payload: dict) -> None:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            # Доставка уведомлений best-effort: логируем и идем дальше
            logger.warning(f"Failed to deliver notification for {payload.get('entity_type')} {payload.get('entity_id')}: {e}")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
