#!/usr/bin/env python3
"""
Скрипт для запуска конвейера эмбеддингов

Usage:
    python app/run_embedding_worker.py

Требования:
    - PostgreSQL с расширением pgvector
    - OpenAI API ключ должен быть настроен в .env
"""

import asyncio
import logging
import signal
import sys
import os

# Добавляем корневую директорию в путь для импортов
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import get_settings
from app.core.db import init_db, close_db
from app.core.logging_config import setup_logging
from app.services.embedding_service import OpenAIEmbeddingService
from app.workers.embedding.pipeline import EmbeddingPipeline


async def run():
    # Без OPENAI_API_KEY процесс падает сразу, а не на первом проходе
    pipeline = EmbeddingPipeline(embedding_service=OpenAIEmbeddingService())
    await init_db()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pipeline.stop)
        except NotImplementedError:
            # Windows: остается KeyboardInterrupt
            pass

    try:
        await pipeline.run()
    finally:
        await close_db()


def main():
    settings = get_settings()
    setup_logging(settings.log_level)

    logger = logging.getLogger("app.run_embedding_worker")
    logger.info("=" * 50)
    logger.info("Monolog Embedding Worker Starting...")
    logger.info("=" * 50)
    logger.info(f"Модель: {settings.embedding_model} ({settings.embedding_dimensions} измерений)")

    if not settings.embedding_enabled:
        logger.warning("EMBEDDING_ENABLED=false: проходы будут пустыми")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Получен сигнал прерывания (Ctrl+C)")
    finally:
        logger.info("Embedding Worker остановлен")


if __name__ == "__main__":
    main()
