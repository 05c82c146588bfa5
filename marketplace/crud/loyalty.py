# marketplace/crud/loyalty.py

import hashlib
from typing import List

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from marketplace.models.loyalty import PointsHistoryEntry

# --- Базовые CRUD-операции ---

def create_entry(
    db: Session,
    user_id: str,
    points_earned: int = 0,
    points_spent: int = 0,
    order_id: str | None = None,
    seller_id: str | None = None,
    description: str | None = None,
) -> PointsHistoryEntry:
    """
    Создает запись журнала и добавляет ее в сессию.
    Требует внешнего вызова db.commit().
    """
    entry = PointsHistoryEntry(
        user_id=user_id,
        points_earned=points_earned,
        points_spent=points_spent,
        order_id=order_id,
        seller_id=seller_id,
        description=description,
    )
    db.add(entry)
    return entry

def get_user_entries(
    db: Session,
    user_id: str,
    skip: int = 0,
    limit: int = 20
) -> List[PointsHistoryEntry]:
    """Получает пагинированный список записей пользователя (от новых к старым)."""
    return db.query(PointsHistoryEntry).filter(
        PointsHistoryEntry.user_id == user_id
    ).order_by(PointsHistoryEntry.created_at.desc()).offset(skip).limit(limit).all()

def count_user_entries(db: Session, user_id: str) -> int:
    return db.query(PointsHistoryEntry).filter(PointsHistoryEntry.user_id == user_id).count()

def get_earning_by_order_id(db: Session, order_id: str) -> PointsHistoryEntry | None:
    """Находит запись начисления за конкретный заказ."""
    return db.query(PointsHistoryEntry).filter(
        PointsHistoryEntry.order_id == order_id,
        PointsHistoryEntry.points_earned > 0,
    ).first()

def get_spending_by_order_id(db: Session, order_id: str) -> PointsHistoryEntry | None:
    return db.query(PointsHistoryEntry).filter(
        PointsHistoryEntry.order_id == order_id,
        PointsHistoryEntry.points_spent > 0,
    ).first()

# --- Расчетные CRUD-функции ---

def get_user_balance(db: Session, user_id: str) -> int:
    """
    Доступный баланс = сумма начислений минус сумма списаний.
    Один агрегирующий запрос, поэтому обе суммы берутся из одного снимка данных.
    """
    earned, spent = db.query(
        func.coalesce(func.sum(PointsHistoryEntry.points_earned), 0),
        func.coalesce(func.sum(PointsHistoryEntry.points_spent), 0),
    ).filter(PointsHistoryEntry.user_id == user_id).one()
    return int(earned) - int(spent)

def lock_user_ledger(db: Session, user_id: str) -> int:
    """
    Сериализует операции с журналом одного пользователя до конца транзакции
    и возвращает баланс, посчитанный под блокировкой.
    """
    if db.get_bind().dialect.name == "postgresql":
        # FOR UPDATE не защищает от вставки новых строк, поэтому сначала
        # берем advisory-блокировку на пользователя
        db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": _ledger_lock_key(user_id)})

    entries = db.execute(
        select(PointsHistoryEntry.points_earned, PointsHistoryEntry.points_spent)
        .where(PointsHistoryEntry.user_id == user_id)
        .with_for_update()
    ).all()
    return sum(earned - spent for earned, spent in entries)

def _ledger_lock_key(user_id: str) -> int:
    # pg_advisory_xact_lock принимает bigint со знаком
    digest = hashlib.sha1(f"points_history:{user_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)

# --- Функции для сверки ---

def get_users_with_negative_balance(db: Session) -> List[tuple[str, int]]:
    """Пользователи, у которых производный баланс ушел в минус. В норме список пуст."""
    balance = func.sum(PointsHistoryEntry.points_earned) - func.sum(PointsHistoryEntry.points_spent)
    rows = db.query(PointsHistoryEntry.user_id, balance).group_by(
        PointsHistoryEntry.user_id
    ).having(balance < 0).all()
    return [(user_id, int(value)) for user_id, value in rows]
