# marketplace/core/redis.py
import redis.asyncio as redis
from marketplace.core.config import settings

# decode_responses=True автоматически декодирует ответы из байтов в строки.
# Нужен только для межворкерных блокировок: старт планировщика и сверка.
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
