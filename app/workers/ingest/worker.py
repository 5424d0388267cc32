import asyncio
import logging
import time
import uuid
from typing import Dict, Optional

import redis.asyncio as aioredis
from tortoise.exceptions import DBConnectionError

from app.core.config import get_settings
from app.services.event_stream import (
    STREAM_PATTERN,
    delete_stream_if_empty,
    lock_key,
    session_id_from_key,
    stream_key,
)
from app.services.monolog_aggregator import MonologAggregator

logger = logging.getLogger(__name__)

READ_BATCH = 100
READ_BLOCK_MS = 1000


class SessionConsumer:
    """Единственный читатель stream одной сессии: события применяются строго по порядку"""

    def __init__(self, session_id: str, redis, aggregator: MonologAggregator, idle_timeout: float):
        self.session_id = session_id
        self.redis = redis
        self.aggregator = aggregator
        self.idle_timeout = idle_timeout
        self.stream = stream_key(session_id)
        self.last_id = "0-0"
        self.last_active = time.time()
        self.running = True
        self.consumer_id = str(uuid.uuid4())[:8]

    async def run(self):
        logger.info(f"[CONSUMER {self.session_id}:{self.consumer_id}] started")
        try:
            while self.running:
                # Читаем с последней обработанной записи: после рестарта
                # обработка продолжится с необработанного хвоста
                msgs = await self.redis.xread(
                    streams={self.stream: self.last_id},
                    count=READ_BATCH,
                    block=READ_BLOCK_MS,
                )
                await self.redis.expire(lock_key(self.session_id), int(self.idle_timeout) + 1)

                if not msgs:
                    if time.time() - self.last_active > self.idle_timeout:
                        logger.info(f"[CONSUMER {self.session_id}:{self.consumer_id}] auto stop (idle)")
                        await delete_stream_if_empty(self.redis, self.session_id)
                        break
                    continue

                _, entries = msgs[0]
                for entry_id, data in entries:
                    self.last_active = time.time()
                    await self.process_entry(entry_id, data)
                    self.last_id = entry_id
        except asyncio.CancelledError:
            logger.info(f"[CONSUMER {self.session_id}:{self.consumer_id}] cancelled by worker")
        finally:
            logger.info(f"[CONSUMER {self.session_id}:{self.consumer_id}] stopped")

    async def process_entry(self, entry_id: str, data: dict) -> None:
        """
        Применяет одну запись stream и удаляет ее.

        Ошибка одного события не останавливает поток; недоступность БД
        пробрасывается, запись остается в stream.
        """
        payload = data.get("event", data)
        try:
            await self.aggregator.handle_payload(payload)
        except DBConnectionError:
            raise
        except Exception as e:
            logger.exception(f"[CONSUMER {self.session_id}] ошибка обработки {entry_id}: {e}")
        await self.redis.xdel(self.stream, entry_id)


async def acquire_lock(redis, session_id: str, ttl: float) -> bool:
    """Пытаемся получить эксклюзивный lock на сессию."""
    return bool(await redis.set(lock_key(session_id), "1", ex=int(ttl) + 1, nx=True))


async def release_lock(redis, session_id: str):
    await redis.delete(lock_key(session_id))


async def reap_finished(redis, consumers: Dict[str, SessionConsumer], tasks: Dict[str, asyncio.Task]) -> None:
    """Освобождает завершившихся консьюмеров; ошибка БД останавливает воркер"""
    for session_id, task in list(tasks.items()):
        if not task.done():
            continue
        await release_lock(redis, session_id)
        consumers.pop(session_id, None)
        tasks.pop(session_id, None)

        error = None if task.cancelled() else task.exception()
        if isinstance(error, DBConnectionError):
            logger.error(f"[WORKER] база данных недоступна, консьюмер {session_id} остановлен: {error}")
            raise error
        if error is not None:
            logger.error(f"[WORKER] консьюмер {session_id} завершился с ошибкой: {error}")


async def worker_loop(
    redis=None,
    aggregator: Optional[MonologAggregator] = None,
    stop_event: Optional[asyncio.Event] = None,
):
    settings = get_settings()
    redis = redis or aioredis.from_url(settings.redis_url, decode_responses=True)
    aggregator = aggregator or MonologAggregator()
    stop_event = stop_event or asyncio.Event()

    consumers: Dict[str, SessionConsumer] = {}
    tasks: Dict[str, asyncio.Task] = {}

    try:
        while not stop_event.is_set():
            await reap_finished(redis, consumers, tasks)

            # если есть место - берем новые сессии
            if len(consumers) < settings.ingest_max_active_sessions:
                keys = await redis.keys(STREAM_PATTERN)
                for key in keys:
                    session_id = session_id_from_key(key)
                    if session_id is None or session_id in tasks:
                        continue
                    # пустой stream не занимает слот консьюмера
                    if not await redis.xlen(key):
                        continue
                    if not await acquire_lock(redis, session_id, settings.ingest_session_idle_timeout):
                        continue

                    consumer = SessionConsumer(
                        session_id, redis, aggregator, settings.ingest_session_idle_timeout
                    )
                    consumers[session_id] = consumer
                    tasks[session_id] = asyncio.create_task(consumer.run())

                    if len(consumers) >= settings.ingest_max_active_sessions:
                        break

            await asyncio.sleep(settings.ingest_check_interval)
    finally:
        for consumer in consumers.values():
            consumer.running = False
        # даем консьюмерам дочитать текущую пачку
        pending = [task for task in tasks.values() if not task.done()]
        if pending:
            await asyncio.wait(pending, timeout=READ_BLOCK_MS / 1000 + 4)
        for session_id, task in tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await asyncio.wait_for(task, timeout=5.0)
                except (asyncio.CancelledError, asyncio.TimeoutError):
                    pass
            await release_lock(redis, session_id)
        logger.info("[WORKER] остановлен")
