# marketplace/core/exceptions.py
"""
Доменные ошибки жизненного цикла заказа, доставки и баллов.

Сервисы бросают их до любой записи в БД; роутеры ничего не ловят,
преобразование в HTTP-ответ делает обработчик, зарегистрированный в main.py.
"""
from fastapi import status

STALE_STATE_DETAIL = "This order/delivery was just updated, please refresh."


class LifecycleError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "Request could not be processed."

    def __init__(self, message: str | None = None):
        # message - для логов, detail - то, что увидит пользователь
        self.message = message or self.detail
        super().__init__(self.message)


class InvalidTransition(LifecycleError):
    """Запрошенный переход недопустим из текущего статуса. Клиенту стоит перечитать состояние."""
    status_code = status.HTTP_409_CONFLICT
    detail = STALE_STATE_DETAIL


class ConflictingOffer(LifecycleError):
    """У заказа уже есть активная доставка с другим курьером."""
    status_code = status.HTTP_409_CONFLICT
    detail = STALE_STATE_DETAIL


class NotAuthorized(LifecycleError):
    # Причину отказа наружу не отдаем
    status_code = status.HTTP_403_FORBIDDEN
    detail = "You do not have permission to perform this action."


class InsufficientBalance(LifecycleError):
    status_code = status.HTTP_409_CONFLICT
    detail = "You don't have enough points."


class NotFound(LifecycleError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Resource not found."


class InvalidInput(LifecycleError):
    status_code = 422
    detail = "Amounts must be non-negative integers."

    def __init__(self, message: str | None = None):
        super().__init__(message)
        if message:
            self.detail = message


class DuplicateEntry(LifecycleError):
    """Сработала защита идемпотентности. Вызывающий код трактует это как успех."""
    status_code = status.HTTP_200_OK


class ConfigUnavailable(LifecycleError):
    """У продавца нет активной программы лояльности. Списание баллов просто равно нулю."""
    status_code = status.HTTP_200_OK


def require_non_negative_int(value, field_name: str) -> int:
    """Проверка денежных сумм и баллов на границе сервисов."""
    # bool - подкласс int, его тоже отсекаем
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidInput(f"{field_name} must be a non-negative integer, got {value!r}")
    return value
