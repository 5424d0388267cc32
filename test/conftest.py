import pytest
import pytest_asyncio
import os
import sys
from tortoise import Tortoise

# Добавляем корневую директорию проекта в путь Python
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.core.config import reset_settings
from app.core.db import MODEL_MODULES
from app.core.logging_config import setup_test_logging


# Пометки для группировки тестов
def pytest_configure(config):
    """Регистрируем кастомные маркеры"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may be slow)"
    )
    config.addinivalue_line(
        "markers", "requires_api_key: marks tests that require real API keys"
    )
    config.addinivalue_line(
        "markers", "database: marks tests that use database"
    )
    setup_test_logging("DEBUG")


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Настройки читаются заново в каждом тесте, без внешних ключей"""
    monkeypatch.setenv("OPENAI_API_KEY", "")
    reset_settings()
    yield
    reset_settings()


@pytest_asyncio.fixture
async def db():
    """In-memory SQLite со схемой и заполненными справочниками"""
    from app.repositories.reference_repository import ReferenceRepository

    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": MODEL_MODULES})
    await Tortoise.generate_schemas()
    await ReferenceRepository().seed()
    try:
        yield
    finally:
        await Tortoise.close_connections()


@pytest_asyncio.fixture
async def refs(db):
    """ID справочных записей для прямого создания монологов"""
    from app.repositories.reference_repository import ReferenceRepository

    repo = ReferenceRepository()
    return {
        "user": await repo.resolve_participant("user-default"),
        "model": await repo.resolve_participant("claude-sonnet-4"),
        "human_input": await repo.get_provider_id("HumanInput"),
        "anthropic": await repo.get_provider_id("anthropic"),
        "build": await repo.get_mode_id(None),
    }


@pytest_asyncio.fixture
async def session_ref(db):
    from app.repositories.session_repository import SessionRepository

    return await SessionRepository().create_session("ses_test", title="Test session")
