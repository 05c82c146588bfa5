# marketplace/schemas/admin.py
from datetime import datetime
from typing import List

from pydantic import BaseModel


class NegativeBalance(BaseModel):
    user_id: str
    balance: int


class ReconciliationReport(BaseModel):
    started_at: datetime
    expired_orders_cancelled: int = 0
    expired_offers_cancelled: int = 0
    orphaned_offers_cancelled: int = 0
    couriers_recorded: int = 0
    deliveries_replayed: int = 0
    couriers_released: int = 0
    earnings_restored: int = 0
    # Только для отчета: отрицательный баланс никогда не исправляется автоматически
    negative_balances: List[NegativeBalance] = []
