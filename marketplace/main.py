# marketplace/main.py

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Конфигурация и ядро
from marketplace.core.config import settings as config
from marketplace.core.exceptions import LifecycleError
from marketplace.core.logging_config import setup_logging
from marketplace.core.redis import redis_client

# Роутеры FastAPI
from marketplace.routers import (
    admin as admin_router, cart, checkout, delivery, order, points, rewards,
)

# Фоновые задачи и сервисы
from marketplace.dependencies import get_notification_dispatcher
from marketplace.services.reconciliation import reconciliation_task

# --- Инициализация ---
logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()

# --- Обработчики ошибок ---
async def lifecycle_exception_handler(request: Request, exc: LifecycleError):
    """
    Доменные ошибки в HTTP-ответ. Пользователь видит только `detail`,
    подробности остаются в логах.
    """
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Глобальный обработчик для всех необработанных исключений.
    """
    logger.critical(f"Unhandled exception for request: {request.method} {request.url}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error. The administrator has been notified."},
    )

# --- Lifespan Manager (запуск и остановка приложения) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application lifespan startup...")

    # Надежная блокировка через Redis: планировщик запускается только на одном воркере
    is_main_worker = await redis_client.set("app_startup_lock", "1", ex=60, nx=True)

    if is_main_worker:
        logger.info("This is the main worker. Running initial setup...")
        if not scheduler.running:
            scheduler.add_job(
                reconciliation_task,
                'interval',
                minutes=config.RECONCILIATION_INTERVAL_MINUTES,
                timezone=config.SCHEDULER_TIMEZONE,
            )
            scheduler.start()
            logger.info(f"Scheduler started: reconciliation every {config.RECONCILIATION_INTERVAL_MINUTES} min.")
    else:
        logger.info("This is a secondary worker. Skipping initial setup.")

    yield

    # Код при остановке
    dispatcher = get_notification_dispatcher()
    if hasattr(dispatcher, "shutdown"):
        dispatcher.shutdown()

    if is_main_worker:
        logger.info("Main worker shutting down...")
        if scheduler.running:
            scheduler.shutdown()
            logger.info("Scheduler shut down.")
        await redis_client.delete("app_startup_lock")
    else:
        logger.info("Secondary worker shutting down.")

# --- Создание FastAPI приложения ---
app = FastAPI(
    title="Marketplace Lifecycle Service",
    description="Order and delivery lifecycle with the loyalty points ledger",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Регистрация обработчиков исключений ---
app.add_exception_handler(LifecycleError, lifecycle_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Подключение роутеров FastAPI ---
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(order.router, tags=["Orders"])
api_router.include_router(delivery.router, tags=["Delivery"])
api_router.include_router(checkout.router, tags=["Checkout"])
api_router.include_router(cart.router, tags=["Cart"])
api_router.include_router(points.router, tags=["Points"])
api_router.include_router(rewards.router, tags=["Seller Rewards"])

# Админские эндпоинты
api_router.include_router(admin_router.router, prefix="/admin", tags=["Admin"])

# Подключаем главный роутер к приложению
app.include_router(api_router)
