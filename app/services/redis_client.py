"""
Redis клиент для потоков событий и блокировок консьюмеров.
"""
import redis.asyncio as redis
from app.core.config import get_settings

redis_client = None

async def get_redis_client():
    """Получить общий Redis клиент (ленивая инициализация)"""
    global redis_client
    if redis_client is None:
        settings = get_settings()
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
    return redis_client

async def close_redis_client():
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
