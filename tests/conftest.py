# tests/conftest.py
import os

# Settings читает окружение при импорте, поэтому задаем его до импорта приложения
os.environ.setdefault("DATABASE_USER", "test")
os.environ.setdefault("DATABASE_PASSWORD", "test")
os.environ.setdefault("DATABASE_HOST", "localhost")
os.environ.setdefault("DATABASE_PORT", "5432")
os.environ.setdefault("DATABASE_NAME", "test")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.core.config import settings
from marketplace.core.states import OrderStatus, PaymentMethod, initial_payment_status
from marketplace.crud import loyalty as crud_loyalty
from marketplace.crud import order as crud_order
from marketplace.crud import rewards as crud_rewards
from marketplace.db.session import Base
from marketplace.models import cart, delivery, loyalty, order, rewards  # noqa: F401 - регистрируем таблицы
from marketplace.schemas.actor import Actor
from marketplace.services.lifecycle import build_event_bus
from tests.factories import BUYER, SELLER

# In-memory SQLite; StaticPool - чтобы все сессии видели одну и ту же базу
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingDispatcher:
    """Диспетчер уведомлений, который просто запоминает события."""

    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def transitions(self, entity_type: str, entity_id: str | None = None):
        return [
            (e.from_status, e.to_status)
            for e in self.events
            if e.entity_type == entity_type and (entity_id is None or e.entity_id == entity_id)
        ]


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Фикстура для создания чистой базы данных для каждого теста.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def other_session(db_session) -> Session:
    """Вторая сессия над той же базой: имитирует параллельный запрос со своим (устаревшим) состоянием."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def bus(dispatcher):
    return build_event_bus(dispatcher)


# --- Фабрики тестовых данных ---

@pytest.fixture
def create_order(db_session):
    def _create(
        status: OrderStatus = OrderStatus.PENDING,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        subtotal_cents: int = 100_000,
        **values,
    ):
        values.setdefault("buyer_id", BUYER.id)
        values.setdefault("seller_id", SELLER.id)
        values.setdefault("payment_status", initial_payment_status(payment_method))
        values.setdefault("discount_cents", 0)
        values.setdefault("points_spent", 0)
        order = crud_order.create_order(
            db_session,
            items=[{"product_id": "p-1", "title": "Empanadas", "unit_price_cents": subtotal_cents, "quantity": 1}],
            status=status,
            payment_method=payment_method,
            subtotal_cents=subtotal_cents,
            total_cents=subtotal_cents - values["discount_cents"],
            **values,
        )
        db_session.commit()
        return order
    return _create


@pytest.fixture
def rewards_config(db_session):
    """Программа лояльности продавца; по умолчанию 1 балл = 35 сентаво, до 50% заказа."""
    def _create(seller_id: str = SELLER.id, tiers=None, **values):
        values.setdefault("is_active", True)
        values.setdefault("minimum_purchase_cents", 0)
        values.setdefault("points_per_peso", Decimal("0.0286"))
        values.setdefault("point_value_cents", 35)
        values.setdefault("max_redemption_fraction", Decimal("0.5"))
        return crud_rewards.upsert_config(db_session, seller_id, tiers=tiers or [], **values)
    return _create


@pytest.fixture
def grant_points(db_session):
    """Начисление без заказа (как ручная корректировка), чтобы у пользователя был баланс."""
    def _grant(user_id: str, amount: int):
        entry = crud_loyalty.create_entry(db_session, user_id=user_id, points_earned=amount, description="Test grant")
        db_session.commit()
        return entry
    return _grant


# --- HTTP ---

def make_token(actor_id: str, role: str) -> str:
    return jwt.encode({"sub": actor_id, "role": role}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


@pytest.fixture
def auth_headers():
    def _headers(actor: Actor) -> dict:
        return {"Authorization": f"Bearer {make_token(actor.id, actor.role.value)}"}
    return _headers


@pytest.fixture
async def client(db_session, bus):
    from marketplace.dependencies import get_db, get_event_bus
    from marketplace.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_bus] = lambda: bus

    # ASGITransport не запускает lifespan: ни Redis, ни планировщик тестам не нужны
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
