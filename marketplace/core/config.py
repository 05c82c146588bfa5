# marketplace/core/config.py

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Настройки базы данных
    DATABASE_USER: str
    DATABASE_PASSWORD: str
    DATABASE_HOST: str
    DATABASE_PORT: int
    DATABASE_NAME: str

    REDIS_HOST: str
    REDIS_PORT: int

    # Токены выдает внешний провайдер идентификации, мы только проверяем подпись
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # Сколько живет неоплаченный заказ с оплатой переводом
    ORDER_PAYMENT_WINDOW_MINUTES: int = 60
    # Сколько курьер может думать над предложением доставки
    DELIVERY_OFFER_TTL_MINUTES: int = 15
    RECONCILIATION_INTERVAL_MINUTES: int = 10
    LOG_LEVEL: str = "INFO"
    SCHEDULER_TIMEZONE: str = "America/Santiago"

    # Внешний диспетчер уведомлений. Пусто - только логируем события.
    NOTIFICATION_WEBHOOK_URL: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    CORS_ORIGINS_STR: str = Field(default="http://localhost:3000,http://localhost:5173", alias="CORS_ORIGINS")

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS_STR.split(',') if origin.strip()]

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}"

    @property
    def DATABASE_URL(self) -> str:
        return f"postgresql+psycopg2://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"

    model_config = SettingsConfigDict(env_file=".env", populate_by_name=True)

settings = Settings()
