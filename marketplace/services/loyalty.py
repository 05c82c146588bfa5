# marketplace/services/loyalty.py

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.core.exceptions import DuplicateEntry, InsufficientBalance, InvalidInput, require_non_negative_int
from marketplace.crud import loyalty as crud_loyalty
from marketplace.models.loyalty import PointsHistoryEntry
from marketplace.schemas.loyalty import PointsHistory

logger = logging.getLogger(__name__)


def available_balance(db: Session, user_id: str) -> int:
    """Доступный баланс - всегда вычисляется из журнала, нигде не хранится."""
    return crud_loyalty.get_user_balance(db, user_id=user_id)


def append_earning(
    db: Session,
    user_id: str,
    order_id: str,
    seller_id: str | None,
    amount: int,
    description: str | None = None,
) -> PointsHistoryEntry:
    """
    Добавляет начисление за заказ. Вставка идет в savepoint и опирается на
    уникальный индекс по заказу, поэтому два параллельных вызова не создадут дубль.
    Требует внешнего вызова db.commit().
    """
    require_non_negative_int(amount, "amount")
    if amount == 0:
        raise InvalidInput("Earning entry must carry a positive amount")

    if crud_loyalty.get_earning_by_order_id(db, order_id) is not None:
        raise DuplicateEntry(f"Earning for order {order_id} already exists")

    try:
        with db.begin_nested():
            entry = crud_loyalty.create_entry(
                db,
                user_id=user_id,
                points_earned=amount,
                order_id=order_id,
                seller_id=seller_id,
                description=description or f"Points earned for order {order_id}",
            )
            db.flush()
    except IntegrityError:
        # Параллельный запрос успел вставить начисление между проверкой и вставкой
        logger.info(f"Earning for order {order_id} was appended concurrently, skipping.")
        raise DuplicateEntry(f"Earning for order {order_id} already exists")

    logger.info(f"Appended earning of {amount} points to user {user_id} for order {order_id}")
    return entry


def append_spending(
    db: Session,
    user_id: str,
    order_id: str | None,
    seller_id: str | None,
    amount: int,
    description: str | None = None,
) -> PointsHistoryEntry:
    """
    Безопасно списывает баллы: проверка баланса и вставка выполняются под
    блокировкой журнала пользователя, поэтому два параллельных списания
    не смогут вместе уйти в минус.
    Требует внешнего вызова db.commit().
    """
    require_non_negative_int(amount, "amount")
    if amount == 0:
        raise InvalidInput("Spending entry must carry a positive amount")

    # Шаг 1: блокируем журнал пользователя и считаем баланс под блокировкой
    current_balance = crud_loyalty.lock_user_ledger(db, user_id)

    if amount > current_balance:
        # Ничего еще не записано, откатывать нечего
        raise InsufficientBalance(
            f"User {user_id} tried to spend {amount} points with balance {current_balance}"
        )

    # Шаг 2: записываем списание
    entry = crud_loyalty.create_entry(
        db,
        user_id=user_id,
        points_spent=amount,
        order_id=order_id,
        seller_id=seller_id,
        description=description or f"Points redeemed for order {order_id}",
    )
    db.flush()

    logger.info(
        f"Appended spending for user {user_id}: {amount} points. "
        f"Balance before: {current_balance}, Balance after (uncommitted): {current_balance - amount}"
    )
    return entry


def get_points_history(db: Session, user_id: str, skip: int = 0, limit: int = 50) -> PointsHistory:
    """Собирает баланс и историю начислений/списаний для экрана пользователя."""
    return PointsHistory(
        available=available_balance(db, user_id),
        total_items=crud_loyalty.count_user_entries(db, user_id),
        transactions=crud_loyalty.get_user_entries(db, user_id=user_id, skip=skip, limit=limit),
    )
