# alembic/env.py

import sys
from os.path import abspath, dirname
# Добавляем путь к нашему проекту, чтобы импорты работали
sys.path.insert(0, abspath(dirname(dirname(__file__))))

from logging.config import fileConfig
from sqlalchemy import engine_from_config
from sqlalchemy.pool import NullPool
from alembic import context

# 1. Объект настроек, который умеет читать .env
from marketplace.core.config import settings
# 2. Базовый класс моделей
from marketplace.db.session import Base
# 3. Все модели, чтобы они попали в метаданные
from marketplace.models.order import Order, OrderItem
from marketplace.models.delivery import DeliveryOffer
from marketplace.models.loyalty import PointsHistoryEntry
from marketplace.models.rewards import SellerRewardsConfig, SellerRewardTier
from marketplace.models.cart import Cart, CartItem

# 4. Указываем Alembic на метаданные наших моделей
target_metadata = Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=settings.DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    # URL берем только из settings, а не из alembic.ini
    connectable = engine_from_config(
        {"sqlalchemy.url": settings.DATABASE_URL},
        prefix="sqlalchemy.",
        poolclass=NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection, target_metadata=target_metadata
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
