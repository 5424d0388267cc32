from tortoise import Tortoise
from app.core.config import get_settings

# Получаем настройки
settings = get_settings()

MODEL_MODULES = [
    "app.models.session",
    "app.models.monolog",
    "app.models.reference",
    "app.models.error_log",
]

TORTOISE_ORM = {
    "connections": {"default": settings.postgres_dsn},
    "apps": {
        "models": {
            "models": [*MODEL_MODULES, "aerich.models"],
            "default_connection": "default",
        }
    },
}

async def init_db() -> None:
    await Tortoise.init(config=TORTOISE_ORM)
    # Схему создают миграции aerich (vector, частичные индексы, CHECK)


async def close_db() -> None:
    await Tortoise.close_connections()
