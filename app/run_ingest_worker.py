#!/usr/bin/env python3
"""
Скрипт для запуска Ingest Worker
Читает потоки событий сессий из Redis и собирает из них монологи

Usage:
    python app/run_ingest_worker.py

Требования:
    - Redis должен быть доступен
    - PostgreSQL со схемой, созданной миграциями aerich
"""

import asyncio
import logging
import sys
import os

# Добавляем корневую директорию в путь для импортов
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import get_settings
from app.core.db import init_db, close_db
from app.core.logging_config import setup_logging
from app.workers.ingest.worker import worker_loop


async def run():
    await init_db()
    try:
        await worker_loop()
    finally:
        await close_db()


def main():
    """Основная функция запуска Ingest Worker"""
    settings = get_settings()
    setup_logging(settings.log_level)

    logger = logging.getLogger("app.run_ingest_worker")
    logger.info("=" * 50)
    logger.info("Monolog Ingest Worker Starting...")
    logger.info("=" * 50)
    logger.info(f"Redis URL: {settings.redis_url}")
    logger.info(f"Максимум активных сессий: {settings.ingest_max_active_sessions}")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Получен сигнал прерывания (Ctrl+C)")
    except Exception as e:
        logger.error(f"Критическая ошибка в Ingest Worker: {e}")
        raise
    finally:
        logger.info("Ingest Worker остановлен")


if __name__ == "__main__":
    main()
