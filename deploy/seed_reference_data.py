"""
Заполнение справочников: провайдеры и режимы.

Usage:
    python deploy/seed_reference_data.py

Запускать после `aerich upgrade`. Повторный запуск ничего не дублирует.
"""
from tortoise import Tortoise
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
sys.path.insert(0, str(Path(__file__).parent.parent))


async def seed_reference_data():
    from app.core.db import TORTOISE_ORM
    from app.repositories.reference_repository import ReferenceRepository

    await Tortoise.init(config=TORTOISE_ORM)
    try:
        await ReferenceRepository().seed()
    finally:
        await Tortoise.close_connections()


if __name__ == "__main__":
    import asyncio
    from app.core.logging_config import setup_logging

    setup_logging()
    asyncio.run(seed_reference_data())
