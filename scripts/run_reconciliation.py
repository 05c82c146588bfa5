# scripts/run_reconciliation.py
import logging
import sys
import os

# Хак для корректной работы импортов
sys.path.append(os.getcwd())

from marketplace.core.logging_config import setup_logging
from marketplace.dependencies import get_db_context, get_event_bus
from marketplace.services.reconciliation import run_reconciliation

logger = logging.getLogger(__name__)


def main():
    """
    Ручной запуск сверки без Redis-блокировки (например, после восстановления БД).
    Не запускайте одновременно с работающим планировщиком.
    """
    setup_logging()
    print("--- Manual Reconciliation ---")

    with get_db_context() as db:
        report = run_reconciliation(db, get_event_bus())

    print(report.model_dump_json(indent=2))
    if report.negative_balances:
        print(f"\nWARNING: {len(report.negative_balances)} users have a negative points balance.")
        sys.exit(1)
    print("Done.")


if __name__ == "__main__":
    main()
