# marketplace/dependencies.py

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.states import ActorRole
from marketplace.db.session import SessionLocal
from marketplace.schemas.actor import Actor
from marketplace.services.events import EventBus
from marketplace.services.lifecycle import build_event_bus
from marketplace.services.notification import (
    LoggingNotificationDispatcher, NotificationDispatcher, WebhookNotificationDispatcher,
)

# --- Инициализация логгера ---
logger = logging.getLogger(__name__)

# --- Схемы аутентификации ---
strict_bearer_scheme = HTTPBearer(auto_error=True)

# --- Управление сессией БД ---
def get_db_session_instance() -> Session:
    """Создает и возвращает экземпляр сессии БД."""
    return SessionLocal()

def get_db() -> Iterator[Session]:
    """
    Основная зависимость FastAPI для получения сессии БД.
    Это генератор, который корректно работает с `Depends`.
    """
    db = get_db_session_instance()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def get_db_context() -> Iterator[Session]:
    """
    Контекстный менеджер для получения сессии БД вне FastAPI (скрипты и фоновые задачи).
    """
    db = get_db_session_instance()
    try:
        yield db
    finally:
        db.close()

# --- События и уведомления ---

@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    """Webhook, если он настроен, иначе уведомления только пишутся в лог."""
    if settings.NOTIFICATION_WEBHOOK_URL:
        logger.info(f"Lifecycle notifications will be posted to {settings.NOTIFICATION_WEBHOOK_URL}")
        return WebhookNotificationDispatcher(
            settings.NOTIFICATION_WEBHOOK_URL, timeout=settings.NOTIFICATION_TIMEOUT_SECONDS
        )
    return LoggingNotificationDispatcher()

@lru_cache
def get_event_bus() -> EventBus:
    return build_event_bus(get_notification_dispatcher())

# --- Зависимости аутентификации и авторизации ---

def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(strict_bearer_scheme),
) -> Actor:
    """
    ОБЯЗАТЕЛЬНАЯ зависимость.
    Токен выпускает внешний провайдер идентификации; доверяем только его `sub` и `role`.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT Error during token decoding: {e}")
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None:
        logger.warning("Token payload is missing 'sub'.")
        raise credentials_exception

    try:
        actor = Actor(id=str(user_id), role=payload.get("role"))
    except ValidationError:
        logger.warning(f"Token for {user_id} carries unknown role {payload.get('role')!r}.")
        raise credentials_exception

    # Системная роль только для внутренних задач, по HTTP ее не принимаем
    if actor.role == ActorRole.SYSTEM:
        logger.warning(f"Rejected token for {user_id} claiming the system role.")
        raise credentials_exception

    request.state.actor = actor
    logger.debug(f"Authenticated actor {actor.id} ({actor.role.value})")
    return actor


def require_role(*roles: ActorRole):
    """Фабрика зависимостей: пропускает только перечисленные роли (и админа)."""
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles and actor.role != ActorRole.ADMIN:
            logger.warning(f"Permission denied for {actor.id}: role {actor.role.value} not in {[r.value for r in roles]}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to access this resource."
            )
        return actor
    return dependency


def get_admin_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Зависимость для защиты админских эндпоинтов."""
    if actor.role != ActorRole.ADMIN:
        logger.warning(f"Permission denied for {actor.id}: admin role required.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to access this resource."
        )
    logger.info(f"Admin access GRANTED for {actor.id}.")
    return actor
