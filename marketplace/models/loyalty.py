# marketplace/models/loyalty.py
from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text, text
from sqlalchemy.sql import func

from marketplace.db.session import Base
from marketplace.models.base import generate_id

_EARNING_CONDITION = text("points_earned > 0")


class PointsHistoryEntry(Base):
    """
    Запись журнала баллов. Журнал только дополняется: записи не меняются и не удаляются.
    Баланс нигде не хранится - только сумма начислений минус сумма списаний.
    """
    __tablename__ = "points_history"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String, nullable=False, index=True)
    order_id = Column(String(36), nullable=True, index=True)
    seller_id = Column(String, nullable=True)

    points_earned = Column(Integer, nullable=False, default=0, server_default='0')
    points_spent = Column(Integer, nullable=False, default=0, server_default='0')
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("points_earned >= 0", name="ck_points_history_earned_non_negative"),
        CheckConstraint("points_spent >= 0", name="ck_points_history_spent_non_negative"),
        # Запись - либо начисление, либо списание, но не то и другое
        CheckConstraint("(points_earned > 0) <> (points_spent > 0)", name="ck_points_history_single_direction"),
        # Не больше одного начисления на заказ
        Index(
            "uq_points_history_earning_order",
            "order_id",
            unique=True,
            postgresql_where=_EARNING_CONDITION,
            sqlite_where=_EARNING_CONDITION,
        ),
    )
